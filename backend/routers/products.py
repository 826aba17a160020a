from fastapi import APIRouter, Depends, status
from typing import Dict, List
from uuid import UUID

from core.dependencies import get_store
from db.store import InventoryStore
from schemas.products import ProductCreate, ProductRead, ProductUpdate

router = APIRouter()


@router.get("", response_model=List[ProductRead])
async def list_products(store: InventoryStore = Depends(get_store)):
    products = await store.list_products()
    return [ProductRead(**p.to_schema) for p in products]


@router.get("/{product_id}", response_model=ProductRead)
async def get_product(product_id: UUID, store: InventoryStore = Depends(get_store)):
    product = await store.get_product(product_id)
    return ProductRead(**product.to_schema)


@router.post("", response_model=ProductRead, status_code=status.HTTP_201_CREATED)
async def create_product(payload: ProductCreate, store: InventoryStore = Depends(get_store)):
    product = await store.create_product(payload.model_dump())
    return ProductRead(**product.to_schema)


@router.put("/{product_id}", response_model=ProductRead)
async def update_product(
    product_id: UUID,
    payload: ProductUpdate,
    store: InventoryStore = Depends(get_store),
):
    """Partial update: only the fields present in the body are changed."""
    data = payload.model_dump(exclude_unset=True)
    product = await store.update_product(product_id, data)
    return ProductRead(**product.to_schema)


@router.delete("/{product_id}", response_model=Dict)
async def delete_product(product_id: UUID, store: InventoryStore = Depends(get_store)):
    await store.delete_product(product_id)
    return {"message": "Product deleted"}
