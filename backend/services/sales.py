"""
Sale recording.

A sale touches one row per product plus the sale itself, and all of it
commits together or not at all:

1. validate the line items (no store access on failure)
2. open a store transaction and row-lock every referenced product
3. walk the items in the given order, checking each against the stock
   still left after the earlier items (a product listed twice is two
   decrements against the same stock)
4. apply the decrements, add the Sale, commit

Any failure in 2-4, a timeout, or cancellation aborts the transaction
before the error reaches the caller.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Sequence
from uuid import UUID

import structlog

from core.errors import InsufficientStock, InvalidRequest, PosError, ProductNotFound, TransactionTimeout
from core.money import parse_count, parse_price
from db.sale import Sale, SaleItem
from db.store import InventoryStore

logger = structlog.get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class SaleLineItem:
    product_id: UUID
    quantity: int
    # None: charge the product's price as read inside the transaction
    unit_price: Optional[Decimal] = None


def validate_line_items(items: Sequence[SaleLineItem]) -> List[SaleLineItem]:
    if not items:
        raise InvalidRequest("Invalid sale items: at least one item is required")

    out: List[SaleLineItem] = []
    for idx, item in enumerate(items):
        if not isinstance(item, SaleLineItem):
            raise InvalidRequest(f"Invalid sale item at position {idx}")
        if not isinstance(item.product_id, UUID):
            raise InvalidRequest(f"items[{idx}].product_id must be a UUID")
        qty = parse_count(item.quantity, f"items[{idx}].quantity", minimum=1)

        price = item.unit_price
        if price is not None:
            price = parse_price(price, f"items[{idx}].unit_price")
        out.append(SaleLineItem(product_id=item.product_id, quantity=qty, unit_price=price))
    return out


class SaleCoordinator:
    """Records sales against an `InventoryStore`.

    Holds no state between calls beyond the store handle, the optional
    per-sale timeout (seconds) and the clock used to stamp new sales.
    """

    def __init__(
        self,
        store: InventoryStore,
        timeout: Optional[float] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.timeout = timeout if timeout and timeout > 0 else None
        self.clock = clock

    async def record_sale(self, items: Sequence[SaleLineItem], created_at: Optional[datetime] = None) -> Sale:
        lines = validate_line_items(items)
        try:
            if self.timeout is None:
                sale = await self._record(lines, created_at)
            else:
                try:
                    sale = await asyncio.wait_for(self._record(lines, created_at), timeout=self.timeout)
                except asyncio.TimeoutError:
                    raise TransactionTimeout(f"Sale did not complete within {self.timeout:g}s")
        except PosError as e:
            logger.info("sale.rejected", error=e.code, detail=e.message, items=len(lines))
            raise

        logger.info("sale.recorded", sale_id=str(sale.id), items=len(lines))
        return sale

    async def _record(self, lines: List[SaleLineItem], created_at: Optional[datetime]) -> Sale:
        async with self.store.transaction() as tx:
            products = await tx.lock_products(line.product_id for line in lines)

            remaining: Dict[UUID, int] = {}
            for line in lines:
                product = products.get(line.product_id)
                if product is None:
                    raise ProductNotFound(line.product_id)
                available = remaining.get(line.product_id, int(product.stock or 0))
                if line.quantity > available:
                    raise InsufficientStock(line.product_id, line.quantity, available, name=product.name)
                remaining[line.product_id] = available - line.quantity

            for product_id, stock in remaining.items():
                products[product_id].stock = stock

            sale = Sale(
                created_at=created_at or self.clock(),
                items=[
                    SaleItem(
                        position=idx,
                        product_id=line.product_id,
                        quantity=line.quantity,
                        unit_price=line.unit_price if line.unit_price is not None else products[line.product_id].price,
                    )
                    for idx, line in enumerate(lines)
                ],
            )
            tx.add_sale(sale)
            await tx.commit()
        return sale
