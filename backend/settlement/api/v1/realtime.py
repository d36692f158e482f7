"""
Realtime WebSocket endpoint.
"""
import logging
from typing import Optional

from fastapi import APIRouter, WebSocket

from settlement.api.deps import AppServices
from settlement.core.exceptions import AuthenticationError
from settlement.core.security import decode_session_token
from settlement.db.models import Account
from settlement.db.repositories import LedgerRepository
from settlement.realtime.handshake import RealtimeHandshake

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/realtime")


def _session_account_id(websocket: WebSocket, services: AppServices) -> Optional[str]:
    security = services.config.security
    token = websocket.cookies.get(security.session_cookie_name) or websocket.query_params.get("token")
    if not token:
        return None
    try:
        return decode_session_token(token, security)
    except AuthenticationError:
        logger.info("Realtime connection presented an invalid session")
        return None


@router.websocket("/ws")
async def realtime_socket(websocket: WebSocket) -> None:
    """
    Transaction and balance events for the session's account and community.
    """
    services: AppServices = websocket.app.state.services

    async def load_account(account_id: str) -> Optional[Account]:
        async with services.session_factory() as session:
            return await LedgerRepository(session).accounts.get(account_id)

    await websocket.accept()
    handshake = RealtimeHandshake(services.connections, load_account)
    await handshake.run(websocket, _session_account_id(websocket, services))
