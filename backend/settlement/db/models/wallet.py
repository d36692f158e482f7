"""
Custodial wallet model.
"""

from enum import Enum

from sqlalchemy import Boolean, Column, Enum as SQLEnum, ForeignKey, String, Text
from sqlalchemy.orm import relationship

from settlement.db.base import Base, IdMixin, TimestampMixin, enum_values
from settlement.db.models.account import AccountRole


class WalletType(str, Enum):
    """Types of custodial wallets."""
    ADMIN = "admin"
    COORDINATOR = "coordinator"
    USER = "user"


# Wallet types each role may create
ALLOWED_WALLET_TYPES = {
    AccountRole.COORDINATOR: {WalletType.COORDINATOR, WalletType.USER},
    AccountRole.PROVIDER: {WalletType.USER},
    AccountRole.USER: {WalletType.USER},
}


def resolve_wallet_type(role: AccountRole, requested) -> WalletType:
    """Requested wallet type if the role allows it, otherwise ``user``."""
    try:
        wallet_type = WalletType(requested)
    except ValueError:
        return WalletType.USER
    if wallet_type in ALLOWED_WALLET_TYPES.get(role, set()):
        return wallet_type
    return WalletType.USER


class CustodialWallet(Base, IdMixin, TimestampMixin):
    """
    Keypair held on behalf of an account.

    Exactly one wallet per account is the default; it signs every
    settlement for that account. The private key is stored only in the
    Key Vault's ``iv:authTag:ciphertext`` form.
    """

    __tablename__ = "custodial_wallets"

    account_id = Column(String(36), ForeignKey("accounts.id"), nullable=False, index=True)
    label = Column(String(200), nullable=False)
    address = Column(String(42), nullable=False)
    encrypted_private_key = Column(Text, nullable=False)
    wallet_type = Column(
        SQLEnum(WalletType, values_callable=enum_values, name="wallet_type"),
        nullable=False,
        default=WalletType.USER,
    )
    is_default = Column(Boolean, nullable=False, default=False)

    account = relationship("Account", back_populates="wallets")

    def to_public_dict(self) -> dict:
        """Wallet data without the encrypted key."""
        return self.to_dict(exclude=["encrypted_private_key"])

    def __repr__(self) -> str:
        return f"<CustodialWallet {self.address} default={self.is_default}>"
