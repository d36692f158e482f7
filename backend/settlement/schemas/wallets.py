"""
Pydantic schemas for custodial wallet endpoints.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from settlement.db.models import WalletType


class WalletGenerateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    label: str = Field("Wallet", min_length=1, max_length=100)
    wallet_type: Optional[str] = Field(None, alias="walletType")


class WalletImportRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    label: str = Field("Imported wallet", min_length=1, max_length=100)
    private_key: str = Field(..., alias="privateKey", min_length=64, max_length=66, repr=False)
    wallet_type: Optional[str] = Field(None, alias="walletType")


class WalletResponse(BaseModel):
    """Wallet as returned to its owner; the encrypted key never leaves the server."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    label: str
    address: str
    wallet_type: WalletType
    is_default: bool
    created_at: Optional[datetime] = None


class KeystoreExportRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    keystore_password: str = Field(..., alias="keystorePassword", min_length=8, repr=False)
