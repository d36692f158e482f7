"""
Chain access: contract bindings, the Chain Gateway and chain profiles.
"""

from .amounts import format_amount, parse_amount
from .gateway import (
    ChainGateway,
    PermitTransferResult,
    ReceiptCheck,
    TokenCreation,
    TokenInfo,
    TxResult,
)
from .profiles import ChainProfileConfig, ChainProfileRegistry, seed_chain_profiles

__all__ = [
    "format_amount",
    "parse_amount",
    "ChainGateway",
    "PermitTransferResult",
    "ReceiptCheck",
    "TokenCreation",
    "TokenInfo",
    "TxResult",
    "ChainProfileConfig",
    "ChainProfileRegistry",
    "seed_chain_profiles",
]
