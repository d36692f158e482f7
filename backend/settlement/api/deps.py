"""
Common FastAPI dependencies used across the API.
"""
from dataclasses import dataclass
from typing import AsyncGenerator, Optional

from fastapi import Depends, Query, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from settlement.chain.gateway import ChainGateway
from settlement.core.config import Config
from settlement.core.exceptions import AuthenticationError
from settlement.core.metrics import SettlementMetrics
from settlement.core.security import KeyVault, decode_session_token
from settlement.db.models import Account
from settlement.db.repositories import LedgerRepository
from settlement.realtime.connections import ConnectionManager
from settlement.realtime.notifier import RealtimeNotifier
from settlement.services.orchestrator import SettlementOrchestrator
from settlement.signing.queue import KeyedSerializer

# Bearer scheme; cookie and query-string sessions are also accepted
http_bearer = HTTPBearer(auto_error=False)


@dataclass
class AppServices:
    """Process-wide collaborators, built once in the application lifespan."""
    config: Config
    session_factory: async_sessionmaker
    vault: KeyVault
    gateway: ChainGateway
    serializer: KeyedSerializer
    connections: ConnectionManager
    notifier: RealtimeNotifier
    metrics: SettlementMetrics


def get_services(request: Request) -> AppServices:
    return request.app.state.services


async def get_db(
    services: AppServices = Depends(get_services),
) -> AsyncGenerator[AsyncSession, None]:
    """
    Database session for one request.

    Flows commit at their own checkpoints; anything left uncommitted when
    the request fails is rolled back.
    """
    async with services.session_factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


def session_token_from(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials],
    query_token: Optional[str],
    cookie_name: str,
) -> Optional[str]:
    if credentials and credentials.scheme.lower() == "bearer":
        return credentials.credentials
    return request.cookies.get(cookie_name) or query_token


async def get_session_account_id(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
    token: Optional[str] = Query(None, include_in_schema=False),
    services: AppServices = Depends(get_services),
) -> str:
    """
    Account id bound to the caller's session.

    Raises 401 if no valid session is presented.
    """
    security = services.config.security
    session_token = session_token_from(request, credentials, token, security.session_cookie_name)
    if not session_token:
        raise AuthenticationError("Not authenticated")
    return decode_session_token(session_token, security)


async def get_current_account(
    account_id: str = Depends(get_session_account_id),
    db: AsyncSession = Depends(get_db),
) -> Account:
    account = await LedgerRepository(db).accounts.get(account_id)
    if account is None:
        raise AuthenticationError("Session account no longer exists")
    return account


def get_orchestrator(
    db: AsyncSession = Depends(get_db),
    services: AppServices = Depends(get_services),
) -> SettlementOrchestrator:
    return SettlementOrchestrator(
        session=db,
        gateway=services.gateway,
        vault=services.vault,
        notifier=services.notifier,
        config=services.config.settlement,
        serializer=services.serializer,
        metrics=services.metrics,
    )
