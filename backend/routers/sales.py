from fastapi import APIRouter, Depends, Query, status
from typing import List
from uuid import UUID

from core.dependencies import get_sale_coordinator, get_store
from db.store import InventoryStore
from schemas.sales import SaleCreate, SaleRead, SaleRecorded
from services.sales import SaleCoordinator

router = APIRouter()


@router.post("", response_model=SaleRecorded, status_code=status.HTTP_201_CREATED)
async def record_sale(
    payload: SaleCreate,
    sales: SaleCoordinator = Depends(get_sale_coordinator),
):
    """
    Record a sale and take its quantities out of stock.

    All-or-nothing: an unknown product or a line exceeding stock rejects the
    whole sale and leaves every product untouched.
    """
    sale = await sales.record_sale([it.to_line_item() for it in payload.items])
    return SaleRecorded(sale_id=sale.id)


@router.get("", response_model=List[SaleRead])
async def list_sales(
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    store: InventoryStore = Depends(get_store),
):
    sales = await store.list_sales(limit=limit, offset=offset)
    return [SaleRead(**s.to_schema) for s in sales]


@router.get("/{sale_id}", response_model=SaleRead)
async def get_sale(sale_id: UUID, store: InventoryStore = Depends(get_store)):
    sale = await store.get_sale(sale_id)
    return SaleRead(**sale.to_schema)
