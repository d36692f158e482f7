"""
Application factory.

Run with ``uvicorn settlement.main:create_app --factory``.
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI
from sqlalchemy.ext.asyncio import async_sessionmaker

from settlement.api.deps import AppServices
from settlement.api.errors import register_exception_handlers
from settlement.api.middleware import setup_middleware
from settlement.api.router import router as api_router
from settlement.chain.gateway import ChainGateway
from settlement.chain.profiles import seed_chain_profiles
from settlement.core.config import Config, load_config
from settlement.core.logging_config import setup_logging
from settlement.core.metrics import SettlementMetrics
from settlement.core.security import KeyVault
from settlement.db.session import close_engine, create_all, init_db
from settlement.realtime.connections import ConnectionManager
from settlement.realtime.notifier import RealtimeNotifier
from settlement.services.reconciliation import ReconciliationWorker, policy_from_name
from settlement.signing.queue import KeyedSerializer

logger = logging.getLogger(__name__)


def build_services(
    config: Config,
    session_factory: async_sessionmaker,
    gateway: Optional[ChainGateway] = None,
    vault: Optional[KeyVault] = None,
) -> AppServices:
    """Wire the process-wide collaborators."""
    connections = ConnectionManager()
    return AppServices(
        config=config,
        session_factory=session_factory,
        vault=vault or KeyVault(config.security.wallet_encryption_key),
        gateway=gateway or ChainGateway(
            receipt_timeout=config.chain.receipt_timeout,
            request_timeout=config.chain.request_timeout,
            max_deadline_horizon=config.settlement.max_deadline_horizon,
        ),
        serializer=KeyedSerializer(),
        connections=connections,
        notifier=RealtimeNotifier(connections),
        metrics=SettlementMetrics(),
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    config: Config = app.state.config
    setup_logging(config.logging)

    owns_services = getattr(app.state, "services", None) is None
    if owns_services:
        session_factory = init_db(config.database)
        await create_all()
        app.state.services = build_services(config, session_factory)

    services: AppServices = app.state.services

    async with services.session_factory() as session:
        if await seed_chain_profiles(session, config.chain, services.vault):
            await session.commit()

    worker = None
    if config.settlement.reconciler_enabled:
        worker = ReconciliationWorker(
            services.session_factory,
            services.gateway,
            services.vault,
            services.notifier,
            interval=config.settlement.reconciler_interval,
            policy=policy_from_name(config.settlement.reconciler_policy),
            metrics=services.metrics,
        )
        worker.start()

    logger.info(f"{config.api.title} started ({config.environment.value})")
    try:
        yield
    finally:
        if worker is not None:
            await worker.stop()
        await services.connections.close_all()
        await services.gateway.close()
        if owns_services:
            await close_engine()
        logger.info(f"{config.api.title} stopped")


def create_app(config: Optional[Config] = None, services: Optional[AppServices] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        config: Configuration, defaulting to the environment plus the
            YAML file named by ``CONFIG_FILE``
        services: Pre-built collaborators; when given, startup does not
            create its own engine
    """
    config = config or load_config(os.getenv("CONFIG_FILE"))

    app = FastAPI(
        title=config.api.title,
        version=config.api.version,
        description=config.api.description,
        debug=config.api.debug,
        docs_url=None if config.is_production() else "/docs",
        redoc_url=None if config.is_production() else "/redoc",
        lifespan=lifespan,
    )
    app.state.config = config
    if services is not None:
        app.state.services = services

    setup_middleware(app)
    register_exception_handlers(app)
    app.include_router(api_router, prefix=config.api.prefix)
    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("settlement.main:create_app", factory=True, host="0.0.0.0", port=8000)
