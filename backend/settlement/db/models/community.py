"""
Community and chain profile models.
"""

from sqlalchemy import Boolean, Column, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from settlement.db.base import Base, IdMixin, TimestampMixin


class ChainProfile(Base, IdMixin, TimestampMixin):
    """
    Description of a target chain.

    Attributes:
        name: Display name (e.g. "Sepolia Testnet")
        chain_id: EIP-155 chain id
        rpc_url: JSON-RPC endpoint
        explorer_url: Block explorer base URL
        factory_address: Token factory contract address
        admin_encrypted_key: Relay wallet key, encrypted by the Key Vault
        is_active: Whether communities may switch to this profile
    """

    __tablename__ = "chain_profiles"

    name = Column(String(200), nullable=False)
    chain_id = Column(Integer, nullable=False)
    rpc_url = Column(Text, nullable=False)
    explorer_url = Column(Text, nullable=False)
    factory_address = Column(String(42), nullable=False)
    admin_encrypted_key = Column(Text, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    def to_public_dict(self) -> dict:
        """Profile data without the encrypted admin key."""
        return self.to_dict(exclude=["admin_encrypted_key"])

    def __repr__(self) -> str:
        return f"<ChainProfile {self.name} chain_id={self.chain_id}>"


class Community(Base, IdMixin, TimestampMixin):
    """
    Community owning at most one deployed token.

    ``token_address`` is cleared on reset or chain switch; a new token must
    then be deployed on the referenced chain profile.
    """

    __tablename__ = "communities"

    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    token_address = Column(String(42), nullable=True)
    chain_profile_id = Column(String(36), ForeignKey("chain_profiles.id"), nullable=True)

    chain_profile = relationship("ChainProfile", lazy="selectin")
    accounts = relationship("Account", back_populates="community")

    def __repr__(self) -> str:
        return f"<Community {self.name} token={self.token_address}>"
