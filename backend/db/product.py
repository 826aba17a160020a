import uuid
from sqlalchemy import CheckConstraint, Column, Integer, Numeric, String, Uuid

from core.money import PRICE_PRECISION, PRICE_SCALE

from .database import Base


class Product(Base):
    __tablename__ = "products"
    __table_args__ = (
        CheckConstraint("price >= 0", name="ck_products_price_non_negative"),
        CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String, nullable=False, index=True)
    price = Column(Numeric(PRICE_PRECISION, PRICE_SCALE), nullable=False, default=0)
    stock = Column(Integer, nullable=False, default=0)

    @property
    def to_schema(self):
        return {
            "id": self.id,
            "name": self.name,
            "price": float(self.price) if self.price is not None else 0.0,
            "stock": int(self.stock or 0),
        }
