"""
Database models.
"""

from .account import Account, AccountRole
from .community import ChainProfile, Community
from .wallet import CustodialWallet, WalletType, resolve_wallet_type
from .product import Product, ProductCommunity
from .transaction import (
    NonceKind,
    SettlementTransaction,
    TransactionStatus,
    TransactionType,
)

__all__ = [
    "Account",
    "AccountRole",
    "ChainProfile",
    "Community",
    "CustodialWallet",
    "WalletType",
    "resolve_wallet_type",
    "Product",
    "ProductCommunity",
    "NonceKind",
    "SettlementTransaction",
    "TransactionStatus",
    "TransactionType",
]
