"""
Marketplace product models.
"""

from sqlalchemy import Boolean, Column, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from settlement.db.base import Base, IdMixin, TimestampMixin


class Product(Base, IdMixin, TimestampMixin):
    """Product sold by a provider for community tokens."""

    __tablename__ = "products"

    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Integer, nullable=False)
    category = Column(String(100), nullable=False)
    provider_id = Column(String(36), ForeignKey("accounts.id"), nullable=False, index=True)
    community_id = Column(String(36), ForeignKey("communities.id"), nullable=True)
    is_available = Column(Boolean, nullable=False, default=True)

    provider = relationship("Account", lazy="selectin")

    def __repr__(self) -> str:
        return f"<Product {self.name} price={self.price}>"


class ProductCommunity(Base, IdMixin, TimestampMixin):
    """Communities a product is offered in."""

    __tablename__ = "product_communities"
    __table_args__ = (
        UniqueConstraint("product_id", "community_id", name="uq_product_community"),
    )

    product_id = Column(
        String(36), ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True
    )
    community_id = Column(
        String(36), ForeignKey("communities.id", ondelete="CASCADE"), nullable=False, index=True
    )
