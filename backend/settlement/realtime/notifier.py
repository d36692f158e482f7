"""
Realtime Notifier.

Publishes transaction and balance events to account and community rooms.
Events are at-most-once with no backlog: a client that connects later does
not receive earlier events.
"""

import logging
from typing import Any, Dict, Iterable, Optional

from settlement.core.constants import RealtimeEvents
from settlement.db.models import SettlementTransaction

from .connections import ConnectionManager

logger = logging.getLogger(__name__)


def transaction_payload(record: SettlementTransaction) -> Dict[str, Any]:
    """Transaction as sent to clients, with counterpart display names."""
    return {
        "id": record.id,
        "type": record.type.value,
        "amount": record.amount,
        "description": record.description,
        "status": record.status.value,
        "txHash": record.tx_hash,
        "fromUserId": record.from_account_id,
        "toUserId": record.to_account_id,
        "productId": record.product_id,
        "communityId": record.community_id,
        "createdAt": record.created_at.isoformat() if record.created_at else None,
        "fromUserName": record.from_account_name,
        "toUserName": record.to_account_name,
    }


class RealtimeNotifier:
    """Typed events over a ConnectionManager."""

    def __init__(self, manager: ConnectionManager):
        self.manager = manager

    async def transaction_update(
        self, account_id: str, transaction: Dict[str, Any], update_type: str
    ) -> None:
        await self.manager.emit(
            RealtimeEvents.account_room(account_id),
            RealtimeEvents.TRANSACTION_UPDATE,
            {"transaction": transaction, "type": update_type},
        )

    async def transaction_to_community(
        self, community_id: str, transaction: Dict[str, Any], update_type: str
    ) -> None:
        await self.manager.emit(
            RealtimeEvents.community_room(community_id),
            RealtimeEvents.TRANSACTION_UPDATE,
            {"transaction": transaction, "type": update_type},
        )

    async def balance_update(self, account_id: str, balance: int) -> None:
        await self.manager.emit(
            RealtimeEvents.account_room(account_id),
            RealtimeEvents.BALANCE_UPDATE,
            {"balance": balance},
        )

    async def publish_transaction(
        self,
        record: SettlementTransaction,
        update_type: str,
        account_ids: Optional[Iterable[Optional[str]]] = None,
    ) -> None:
        """
        Send a transaction event to each party's room and the community room.

        Args:
            record: Transaction with counterpart accounts loaded
            update_type: ``created``, ``completed`` or ``failed``
            account_ids: Rooms to notify, defaulting to both parties
        """
        payload = transaction_payload(record)
        if account_ids is None:
            account_ids = (record.from_account_id, record.to_account_id)

        for account_id in dict.fromkeys(a for a in account_ids if a):
            await self.transaction_update(account_id, payload, update_type)
        if record.community_id:
            await self.transaction_to_community(record.community_id, payload, update_type)
