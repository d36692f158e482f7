"""
API Version 1 Router
"""
from fastapi import APIRouter

from . import (
    blockchain,
    chain_profiles,
    marketplace,
    realtime,
    tokens,
    transactions,
    wallets,
)

router = APIRouter(prefix="/v1")

# Include all routers
router.include_router(tokens.router, tags=["tokens"])
router.include_router(marketplace.router, tags=["marketplace"])
router.include_router(wallets.router, tags=["wallets"])
router.include_router(blockchain.router, tags=["blockchain"])
router.include_router(chain_profiles.router, tags=["chain-profiles"])
router.include_router(transactions.router, tags=["transactions"])
router.include_router(realtime.router, tags=["realtime"])
