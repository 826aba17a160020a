"""
Recorded sales.

Models:
- Sale (one checkout, immutable once committed)
- SaleItem (one product line; keeps the unit price charged at the time)
"""

import uuid

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, Numeric, Uuid
from sqlalchemy.orm import relationship

from core.money import PRICE_PRECISION, PRICE_SCALE

from .database import Base


class Sale(Base):
    __tablename__ = "sales"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    created_at = Column(DateTime(timezone=True), nullable=False, index=True)

    items = relationship(
        "SaleItem",
        back_populates="sale",
        cascade="all, delete-orphan",
        order_by="SaleItem.position",
        lazy="selectin",
    )

    @property
    def to_schema(self):
        return {
            "id": self.id,
            "created_at": self.created_at,
            "items": [it.to_schema for it in (self.items or [])],
        }


class SaleItem(Base):
    __tablename__ = "sale_items"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_sale_items_quantity_positive"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    sale_id = Column(Uuid(as_uuid=True), ForeignKey("sales.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False)

    # No FK: deleting a product must not touch past sales
    product_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(PRICE_PRECISION, PRICE_SCALE), nullable=False)

    sale = relationship("Sale", back_populates="items")

    @property
    def to_schema(self):
        return {
            "position": self.position,
            "product_id": self.product_id,
            "quantity": int(self.quantity),
            "unit_price": float(self.unit_price) if self.unit_price is not None else None,
        }
