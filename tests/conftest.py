import pytest
from fastapi.testclient import TestClient

from core.config import Settings
from db.store import InventoryStore


@pytest.fixture()
def settings(tmp_path):
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'pos.db'}",
        database_echo=False,
        cors_origins="*",
        sale_timeout_seconds=10,
        log_level="WARNING",
    )


@pytest.fixture()
async def store(settings):
    store = InventoryStore.from_settings(settings)
    await store.create_all()
    yield store
    await store.dispose()


@pytest.fixture()
async def make_product(store):
    """Helper: create a product and return it."""

    async def _make(name="Espresso", price=2.5, stock=10):
        return await store.create_product({"name": name, "price": price, "stock": stock})

    return _make


@pytest.fixture()
def client(settings):
    from main import create_app

    with TestClient(create_app(settings)) as c:
        yield c
