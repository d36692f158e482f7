"""
Realtime authentication protocol.

A socket is bound to the account of the HTTP session it was opened with.
Without a session the server sends ``auth-required`` and closes. The client
then sends ``authenticate`` naming the account it believes it is, and
optionally its community. A missing or different account id closes the
socket; on a match it joins the account room and the community room and
receives ``authenticated``.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from starlette.websockets import WebSocketDisconnect

from settlement.core.constants import RealtimeEvents
from settlement.db.models import Account

from .connections import ConnectionManager

logger = logging.getLogger(__name__)

AccountLoader = Callable[[str], Awaitable[Optional[Account]]]

# Close codes in the application range
CLOSE_AUTH_REQUIRED = 4401
CLOSE_FORBIDDEN = 4403
CLOSE_NOT_FOUND = 4404


class RealtimeHandshake:
    """Runs one socket from accept to disconnect."""

    def __init__(self, manager: ConnectionManager, load_account: AccountLoader):
        self.manager = manager
        self.load_account = load_account

    async def _reject(self, websocket: Any, event: str, message: str, code: int) -> None:
        await websocket.send_json({"event": event, "data": {"message": message}})
        await websocket.close(code=code)

    async def authenticate(
        self, websocket: Any, session_account_id: str, data: Dict[str, Any]
    ) -> Optional[Account]:
        """
        Check an ``authenticate`` message against the session.

        Returns:
            The account on success; None after the socket was rejected
        """
        claimed = data.get("accountId") or data.get("userId")
        if claimed != session_account_id:
            logger.warning(f"Realtime identity mismatch for session {session_account_id}")
            await self._reject(websocket, RealtimeEvents.ERROR, "Identity mismatch", CLOSE_FORBIDDEN)
            return None

        account = await self.load_account(session_account_id)
        if account is None:
            await self._reject(websocket, RealtimeEvents.ERROR, "Account not found", CLOSE_NOT_FOUND)
            return None

        community_id = data.get("communityId")
        if community_id and community_id != account.community_id:
            logger.warning(f"Realtime community mismatch for account {account.id}")
            await self._reject(websocket, RealtimeEvents.ERROR, "Community mismatch", CLOSE_FORBIDDEN)
            return None

        self.manager.join(websocket, RealtimeEvents.account_room(account.id))
        if account.community_id:
            self.manager.join(websocket, RealtimeEvents.community_room(account.community_id))

        await websocket.send_json({
            "event": RealtimeEvents.AUTHENTICATED,
            "data": {"success": True, "accountId": account.id},
        })
        logger.info(f"Realtime client authenticated for account {account.id}")
        return account

    async def run(self, websocket: Any, session_account_id: Optional[str]) -> None:
        """
        Serve an accepted socket until it disconnects.

        Args:
            websocket: Accepted socket with ``send_json``, ``receive_json``
                and ``close``
            session_account_id: Account bound to the HTTP session, if any
        """
        if not session_account_id:
            await self._reject(
                websocket,
                RealtimeEvents.AUTH_REQUIRED,
                "Authentication required",
                CLOSE_AUTH_REQUIRED,
            )
            return

        try:
            while True:
                message = await websocket.receive_json()
                if not isinstance(message, dict):
                    continue
                if message.get("event") != RealtimeEvents.AUTHENTICATE:
                    continue
                account = await self.authenticate(
                    websocket, session_account_id, message.get("data") or {}
                )
                if account is None:
                    return
        except WebSocketDisconnect:
            logger.debug(f"Realtime client for {session_account_id} disconnected")
        finally:
            self.manager.disconnect(websocket)
