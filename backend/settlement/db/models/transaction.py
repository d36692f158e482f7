"""
transaction.py - Settlement transaction model

A SettlementTransaction is the append-only audit record of one settlement.
It is written as a ``pending`` intent before any chain call, stamped with
the chain hash once the call is broadcast, and moved exactly once to
``completed`` or ``failed``.
"""

from enum import Enum
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    Column,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from settlement.core.constants import NonceKind
from settlement.db.base import Base, IdMixin, TimestampMixin, enum_values


class TransactionType(str, Enum):
    """Settlement operation kinds."""
    RECEIVE = "receive"      # Mint received from a coordinator distribution
    SEND = "send"            # Peer transfer
    PURCHASE = "purchase"    # Marketplace purchase
    BURN = "burn"            # Burn


class TransactionStatus(str, Enum):
    """Settlement status; transitions are one-way out of PENDING."""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


ALLOWED_TRANSITIONS = {
    TransactionStatus.PENDING: {TransactionStatus.COMPLETED, TransactionStatus.FAILED},
    TransactionStatus.COMPLETED: set(),
    TransactionStatus.FAILED: set(),
}


class SettlementTransaction(Base, IdMixin, TimestampMixin):
    """
    Settlement transaction record.

    Attributes:
        type: Operation kind
        amount: Human (unscaled) token amount
        status: pending, completed or failed
        tx_hash: Chain transaction hash, set when the call is broadcast
        from_account_id / to_account_id: Source and destination accounts
        product_id: Purchased product, for marketplace purchases
        community_id: Community whose token settles the operation
        signer_address / nonce_kind / nonce / deadline / amount_wei:
            Authorization intent, recorded so reconciliation can re-check
            chain state after a crash
        error_message: Last chain error observed for this record
    """

    __tablename__ = "settlement_transactions"
    __table_args__ = (
        CheckConstraint("amount > 0", name="check_positive_amount"),
        CheckConstraint(
            "status != 'completed' OR tx_hash IS NOT NULL",
            name="check_completed_has_hash",
        ),
        Index("ix_settlement_community_status", "community_id", "status"),
    )

    type = Column(
        SQLEnum(TransactionType, values_callable=enum_values, name="transaction_type"),
        nullable=False,
    )
    amount = Column(Integer, nullable=False)
    description = Column(Text, nullable=True)
    status = Column(
        SQLEnum(TransactionStatus, values_callable=enum_values, name="transaction_status"),
        nullable=False,
        default=TransactionStatus.PENDING,
        index=True,
    )
    tx_hash = Column(String(66), nullable=True)
    from_account_id = Column(String(36), ForeignKey("accounts.id"), nullable=True, index=True)
    to_account_id = Column(String(36), ForeignKey("accounts.id"), nullable=True, index=True)
    product_id = Column(String(36), ForeignKey("products.id"), nullable=True)
    community_id = Column(String(36), ForeignKey("communities.id"), nullable=True)

    # Authorization intent
    signer_address = Column(String(42), nullable=True)
    nonce_kind = Column(
        SQLEnum(NonceKind, values_callable=enum_values, name="nonce_kind"),
        nullable=True,
    )
    nonce = Column(String(80), nullable=True)
    deadline = Column(Integer, nullable=True)
    amount_wei = Column(String(80), nullable=True)
    error_message = Column(Text, nullable=True)

    from_account = relationship("Account", foreign_keys=[from_account_id], lazy="selectin")
    to_account = relationship("Account", foreign_keys=[to_account_id], lazy="selectin")

    @property
    def is_pending(self) -> bool:
        return self.status == TransactionStatus.PENDING

    @property
    def from_account_name(self) -> Optional[str]:
        return self.from_account.name if self.from_account else None

    @property
    def to_account_name(self) -> Optional[str]:
        return self.to_account.name if self.to_account else None

    def can_transition_to(self, status: TransactionStatus) -> bool:
        return status in ALLOWED_TRANSITIONS[self.status]

    def __repr__(self) -> str:
        return f"<SettlementTransaction {self.id} {self.type.value} {self.status.value}>"
