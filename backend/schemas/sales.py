from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import AliasChoices, BaseModel, Field

from services.sales import SaleLineItem


class SaleItemCreate(BaseModel):
    # Older clients post `_id` and `price`
    product_id: UUID = Field(validation_alias=AliasChoices("productId", "product_id", "_id"))
    quantity: int
    unit_price: Optional[float] = Field(
        default=None,
        validation_alias=AliasChoices("unitPrice", "unit_price", "price"),
    )

    def to_line_item(self) -> SaleLineItem:
        return SaleLineItem(product_id=self.product_id, quantity=self.quantity, unit_price=self.unit_price)


class SaleCreate(BaseModel):
    # Emptiness and quantities are checked by the coordinator
    items: List[SaleItemCreate]


class SaleItemRead(BaseModel):
    position: int
    product_id: UUID
    quantity: int
    unit_price: Optional[float] = None


class SaleRead(BaseModel):
    id: UUID
    created_at: datetime
    items: List[SaleItemRead]


class SaleRecorded(BaseModel):
    message: str = "Sale recorded"
    sale_id: UUID
