"""
Ledger effects and read views.

:func:`apply_settlement` is the single place a confirmed chain operation is
mirrored into cached balances. The live flows and the reconciler both go
through it, and the status guard in the repository makes a second
application for the same record fail instead of double-counting.
"""

from typing import Any, Dict, List, Optional, Tuple

from settlement.db.models import (
    Account,
    AccountRole,
    SettlementTransaction,
    TransactionStatus,
    TransactionType,
)
from settlement.db.repositories import LedgerRepository
from settlement.realtime.notifier import transaction_payload

from .balances import (
    BalanceEntry,
    community_balance_view,
    derive_provider_balance,
    derive_provider_balances,
    provider_balances_by_community,
)


async def apply_settlement(
    repo: LedgerRepository,
    record: SettlementTransaction,
    tx_hash: str,
) -> Tuple[SettlementTransaction, Dict[str, int]]:
    """
    Complete a pending record and apply its balance effect.

    Effects by type: ``receive`` credits the recipient; ``burn`` debits the
    holder unless it is a provider; ``send`` and ``purchase`` debit the
    sender and credit the recipient. Debits are floored at zero.

    Returns:
        The completed record and the new cached balance of every account
        whose balance changed

    Raises:
        ValidationError: If the record is no longer pending
    """
    record = await repo.transition(record.id, TransactionStatus.COMPLETED, tx_hash=tx_hash)
    amount = record.amount
    balances: Dict[str, int] = {}

    if record.type == TransactionType.RECEIVE:
        balances[record.to_account_id] = await repo.credit(record.to_account_id, amount)
    elif record.type == TransactionType.BURN:
        holder = await repo.get_account(record.from_account_id)
        if not holder.is_provider:
            balances[holder.id] = await repo.debit(holder.id, amount, strict=False)
    elif record.type in (TransactionType.SEND, TransactionType.PURCHASE):
        balances[record.from_account_id] = await repo.debit(record.from_account_id, amount, strict=False)
        balances[record.to_account_id] = await repo.credit(record.to_account_id, amount)

    return record, balances


class LedgerViews:
    """Balance and history views over the ledger."""

    def __init__(self, repo: LedgerRepository):
        self.repo = repo

    async def community_balances(self, community_id: str) -> List[BalanceEntry]:
        """Positive holders of a community, providers at their derived balance."""
        members = await self.repo.community_members(community_id)
        records = await self.repo.community_settlements(community_id)

        product_ids = {
            r.product_id for r in records
            if r.type == TransactionType.PURCHASE and r.product_id
        }
        owners = await self.repo.product_owners(sorted(product_ids))
        provider_balances = derive_provider_balances(records, owners, community_id)

        member_ids = {m.id for m in members}
        outside = [
            account for account in await self.repo.get_accounts(
                [pid for pid in provider_balances if pid not in member_ids]
            )
            if account.is_provider
        ]
        return community_balance_view(members, provider_balances, outside)

    async def community_stats(self, community_id: str) -> Dict[str, int]:
        """
        Membership counts, tokens held and tokens burned in a community.

        Circulation is the sum of the balance view burn-all works from;
        only completed burns count as burned.
        """
        members = await self.repo.community_members(community_id)
        holders = await self.community_balances(community_id)
        records = await self.repo.community_settlements(community_id)
        return {
            "totalUsers": sum(1 for m in members if m.role == AccountRole.USER),
            "totalProviders": sum(1 for m in members if m.role == AccountRole.PROVIDER),
            "tokenCirculation": sum(entry.balance for entry in holders),
            "tokensBurned": sum(
                r.amount for r in records
                if r.type == TransactionType.BURN and r.status == TransactionStatus.COMPLETED
            ),
        }

    async def provider_balance(self, provider: Account, community_id: Optional[str]) -> int:
        product_ids = await self.repo.provider_product_ids(provider.id)
        records = await self.repo.provider_history(provider.id, product_ids, community_id)
        return derive_provider_balance(provider.id, product_ids, records, community_id)

    async def holder_balance(self, account: Account, community_id: Optional[str]) -> int:
        """Balance a burn or spend is checked against."""
        if account.is_provider:
            return await self.provider_balance(account, community_id)
        return await self.repo.read_balance(account.id)

    async def provider_balances_by_community(self, provider: Account) -> List[Dict[str, Any]]:
        product_ids = await self.repo.provider_product_ids(provider.id)
        records = await self.repo.provider_history(provider.id, product_ids)
        return provider_balances_by_community(
            provider.id,
            product_ids,
            records,
            await self.repo.community_names(),
        )

    async def account_history(self, account_id: str, skip: int = 0, limit: int = 50) -> List[Dict[str, Any]]:
        return [transaction_payload(r) for r in await self.repo.account_history(account_id, skip, limit)]

    async def community_history(self, community_id: str, skip: int = 0, limit: int = 50) -> List[Dict[str, Any]]:
        return [transaction_payload(r) for r in await self.repo.community_history(community_id, skip, limit)]
