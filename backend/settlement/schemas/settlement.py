"""
Pydantic schemas for settlement requests and responses.

Request bodies use the camelCase names clients send; responses are built by
the orchestrator already in that shape.
"""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class CamelModel(BaseModel):
    """Accepts both field names and their camelCase aliases."""
    model_config = ConfigDict(populate_by_name=True)


# ==================== REQUEST SCHEMAS ====================

class Distribution(CamelModel):
    email: str = Field(..., min_length=3, max_length=320, description="Recipient email")
    amount: int = Field(..., gt=0, description="Whole tokens to mint")

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.strip().lower()


class DistributeRequest(CamelModel):
    distributions: List[Distribution] = Field(..., min_length=1)


class BurnRequest(CamelModel):
    amount: int = Field(..., gt=0)
    description: Optional[str] = Field(None, max_length=500)
    target_user_id: Optional[str] = Field(None, alias="targetUserId")


class TransferRequest(CamelModel):
    recipient_id: str = Field(..., alias="recipientId")
    amount: int = Field(..., gt=0)
    note: Optional[str] = Field(None, max_length=500)


class PurchaseRequest(CamelModel):
    product_id: str = Field(..., alias="productId")


class SignRequest(CamelModel):
    """Sign a mint (``to``) or burn (``from``) authorization with one of the caller's wallets."""
    wallet_id: str = Field(..., alias="walletId")
    to: Optional[str] = None
    from_: Optional[str] = Field(None, alias="from")
    amount: str = Field(..., description="Human amount, e.g. \"10\" or \"1.5\"")
    deadline_minutes: int = Field(30, gt=0, alias="deadlineMinutes")
    token_address: Optional[str] = Field(None, alias="tokenAddress")


class RelayRequest(CamelModel):
    """An externally signed mint (``to``) or burn (``from``) authorization."""
    signer: str
    to: Optional[str] = None
    from_: Optional[str] = Field(None, alias="from")
    amount: str
    deadline: int
    v: int
    r: str = Field(..., pattern=r"^0x[0-9a-fA-F]{64}$")
    s: str = Field(..., pattern=r"^0x[0-9a-fA-F]{64}$")
    token_address: Optional[str] = Field(None, alias="tokenAddress")


class ChainProfileSwitchRequest(CamelModel):
    chain_profile_id: str = Field(..., alias="chainProfileId")


# ==================== RESPONSE SCHEMAS ====================

class DistributedEntry(CamelModel):
    email: str
    amount: int
    user_name: str = Field(..., alias="userName")
    tx_hash: Optional[str] = Field(None, alias="txHash")


class DistributeError(CamelModel):
    email: str
    error: str


class DistributeResponse(CamelModel):
    distributed: List[DistributedEntry]
    errors: List[DistributeError]


class BurnResponse(CamelModel):
    success: bool
    burned: int
    tx_hash: Optional[str] = Field(None, alias="txHash")


class BurnAllResult(CamelModel):
    name: str
    amount: int
    tx_hash: Optional[str] = Field(None, alias="txHash")


class BurnAllError(CamelModel):
    name: str
    error: str


class BurnAllResponse(CamelModel):
    total_burned: int = Field(..., alias="totalBurned")
    users_affected: int = Field(..., alias="usersAffected")
    results: List[BurnAllResult]
    errors: List[BurnAllError]


class TransferResponse(CamelModel):
    success: bool
    transferred: int
    tx_hash: Optional[str] = Field(None, alias="txHash")
    to: str


class PurchaseResponse(CamelModel):
    success: bool
    new_balance: int = Field(..., alias="newBalance")
    product: str
    tx_hash: Optional[str] = Field(None, alias="txHash")
