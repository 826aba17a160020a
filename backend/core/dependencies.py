from fastapi import Request

from db.store import InventoryStore
from services.sales import SaleCoordinator


def get_store(request: Request) -> InventoryStore:
    return request.app.state.store


def get_sale_coordinator(request: Request) -> SaleCoordinator:
    return request.app.state.sales
