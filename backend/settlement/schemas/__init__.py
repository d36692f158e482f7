"""
Request and response schemas.
"""

from .settlement import (
    BurnAllResponse,
    BurnRequest,
    BurnResponse,
    ChainProfileSwitchRequest,
    DistributeRequest,
    DistributeResponse,
    Distribution,
    PurchaseRequest,
    PurchaseResponse,
    RelayRequest,
    SignRequest,
    TransferRequest,
    TransferResponse,
)
from .wallets import (
    KeystoreExportRequest,
    WalletGenerateRequest,
    WalletImportRequest,
    WalletResponse,
)

__all__ = [
    "BurnAllResponse",
    "BurnRequest",
    "BurnResponse",
    "ChainProfileSwitchRequest",
    "DistributeRequest",
    "DistributeResponse",
    "Distribution",
    "KeystoreExportRequest",
    "PurchaseRequest",
    "PurchaseResponse",
    "RelayRequest",
    "SignRequest",
    "TransferRequest",
    "TransferResponse",
    "WalletGenerateRequest",
    "WalletImportRequest",
    "WalletResponse",
]
