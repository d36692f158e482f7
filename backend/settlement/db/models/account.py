"""
Account model and roles.
"""

from enum import Enum

from sqlalchemy import (
    Column,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    String,
)
from sqlalchemy.orm import relationship

from settlement.db.base import Base, IdMixin, TimestampMixin, enum_values


class AccountRole(str, Enum):
    """Roles that gate settlement operations."""
    COORDINATOR = "coordinator"
    PROVIDER = "provider"
    USER = "user"


class Account(Base, IdMixin, TimestampMixin):
    """
    Ledger account.

    ``token_balance`` is the cached off-chain balance. It is mutated only
    after a confirmed chain operation. Provider balances are derived from
    the transaction log instead (see services.balances).
    """

    __tablename__ = "accounts"

    email = Column(String(320), nullable=False, unique=True, index=True)
    name = Column(String(200), nullable=False)
    role = Column(
        SQLEnum(AccountRole, values_callable=enum_values, name="account_role"),
        nullable=False,
        default=AccountRole.USER,
    )
    eth_address = Column(String(42), nullable=False)
    token_balance = Column(Integer, nullable=False, default=0)
    community_id = Column(String(36), ForeignKey("communities.id"), nullable=True, index=True)

    community = relationship("Community", back_populates="accounts")
    wallets = relationship(
        "CustodialWallet",
        back_populates="account",
        cascade="all, delete-orphan",
    )

    @property
    def is_coordinator(self) -> bool:
        return self.role == AccountRole.COORDINATOR

    @property
    def is_provider(self) -> bool:
        return self.role == AccountRole.PROVIDER

    def to_public_dict(self) -> dict:
        return self.to_dict()

    def __repr__(self) -> str:
        return f"<Account {self.email} role={self.role.value if self.role else None}>"
