"""Sale recording against a real (SQLite) store: atomicity, validation, concurrency."""

import asyncio
import uuid
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from core.errors import InsufficientStock, InvalidRequest, ProductNotFound, TransactionTimeout
from db.sale import Sale
from db.store import StoreTransaction
from services.sales import SaleCoordinator, SaleLineItem


class UntouchableStore:
    """Fails the test if the coordinator opens a transaction."""

    def transaction(self):
        raise AssertionError("store must not be accessed")


async def _stock(store, product_id):
    return (await store.get_product(product_id)).stock


class TestRecordSale:
    async def test_decrements_each_product_and_creates_one_sale(self, store, make_product):
        espresso = await make_product("Espresso", 2.5, 10)
        croissant = await make_product("Croissant", 2.1, 4)
        coordinator = SaleCoordinator(store)

        sale = await coordinator.record_sale(
            [
                SaleLineItem(espresso.id, 3, Decimal("2.50")),
                SaleLineItem(croissant.id, 4, Decimal("2.10")),
            ]
        )

        assert await _stock(store, espresso.id) == 7
        assert await _stock(store, croissant.id) == 0

        sales = await store.list_sales()
        assert len(sales) == 1
        stored = await store.get_sale(sale.id)
        assert [(it.product_id, it.quantity) for it in stored.items] == [
            (espresso.id, 3),
            (croissant.id, 4),
        ]
        assert [it.unit_price for it in stored.items] == [Decimal("2.50"), Decimal("2.10")]

    async def test_missing_unit_price_uses_current_product_price(self, store, make_product):
        muffin = await make_product("Muffin", 2.8, 5)
        sale = await SaleCoordinator(store).record_sale([SaleLineItem(muffin.id, 1)])

        stored = await store.get_sale(sale.id)
        assert stored.items[0].unit_price == Decimal("2.80")

    async def test_unit_price_is_not_affected_by_later_price_changes(self, store, make_product):
        water = await make_product("Water", 1.0, 5)
        sale = await SaleCoordinator(store).record_sale([SaleLineItem(water.id, 2, Decimal("0.90"))])

        await store.update_product(water.id, {"price": 1.5})

        stored = await store.get_sale(sale.id)
        assert stored.items[0].unit_price == Decimal("0.90")

    async def test_created_at_comes_from_clock(self, store, make_product):
        fixed = datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc)
        product = await make_product(stock=3)
        sale = await SaleCoordinator(store, clock=lambda: fixed).record_sale([SaleLineItem(product.id, 1)])
        assert sale.created_at == fixed

    async def test_explicit_created_at_wins_over_clock(self, store, make_product):
        fixed = datetime(2024, 5, 1, tzinfo=timezone.utc)
        product = await make_product(stock=3)
        coordinator = SaleCoordinator(store, clock=lambda: datetime(1999, 1, 1, tzinfo=timezone.utc))
        sale = await coordinator.record_sale([SaleLineItem(product.id, 1)], created_at=fixed)
        assert sale.created_at == fixed

    async def test_same_input_twice_records_two_sales(self, store, make_product):
        product = await make_product(stock=10)
        coordinator = SaleCoordinator(store)
        items = [SaleLineItem(product.id, 3)]

        first = await coordinator.record_sale(items)
        second = await coordinator.record_sale(items)

        assert first.id != second.id
        assert len(await store.list_sales()) == 2
        assert await _stock(store, product.id) == 4


class TestRollback:
    async def test_insufficient_stock_leaves_everything_untouched(self, store, make_product):
        plenty = await make_product("Plenty", 1, 5)
        scarce = await make_product("Scarce", 1, 1)

        with pytest.raises(InsufficientStock) as exc_info:
            await SaleCoordinator(store).record_sale(
                [SaleLineItem(plenty.id, 2), SaleLineItem(scarce.id, 3)]
            )

        err = exc_info.value
        assert err.product_id == scarce.id
        assert err.requested == 3
        assert err.available == 1
        assert await _stock(store, plenty.id) == 5
        assert await _stock(store, scarce.id) == 1
        assert await store.list_sales() == []

    async def test_unknown_product_after_valid_items_rolls_back(self, store, make_product):
        first = await make_product("First", 1, 5)
        second = await make_product("Second", 1, 5)
        missing = uuid.uuid4()

        with pytest.raises(ProductNotFound) as exc_info:
            await SaleCoordinator(store).record_sale(
                [SaleLineItem(first.id, 1), SaleLineItem(second.id, 2), SaleLineItem(missing, 1)]
            )

        assert exc_info.value.product_id == missing
        assert await _stock(store, first.id) == 5
        assert await _stock(store, second.id) == 5
        assert await store.list_sales() == []

    async def test_first_invalid_item_in_list_order_is_reported(self, store, make_product):
        scarce = await make_product("Scarce", 1, 0)
        missing = uuid.uuid4()

        with pytest.raises(ProductNotFound):
            await SaleCoordinator(store).record_sale([SaleLineItem(missing, 1), SaleLineItem(scarce.id, 1)])
        with pytest.raises(InsufficientStock):
            await SaleCoordinator(store).record_sale([SaleLineItem(scarce.id, 1), SaleLineItem(missing, 1)])


class TestDuplicateProducts:
    async def test_repeated_product_is_decremented_twice(self, store, make_product):
        product = await make_product(stock=5)
        sale = await SaleCoordinator(store).record_sale(
            [SaleLineItem(product.id, 3), SaleLineItem(product.id, 2)]
        )
        assert len(sale.items) == 2
        assert await _stock(store, product.id) == 0

    async def test_repeated_product_checks_summed_demand(self, store, make_product):
        product = await make_product(stock=5)
        with pytest.raises(InsufficientStock) as exc_info:
            await SaleCoordinator(store).record_sale(
                [SaleLineItem(product.id, 3), SaleLineItem(product.id, 3)]
            )
        assert exc_info.value.requested == 3
        assert exc_info.value.available == 2
        assert await _stock(store, product.id) == 5


class TestValidation:
    async def test_empty_items_rejected_without_store_access(self):
        with pytest.raises(InvalidRequest):
            await SaleCoordinator(UntouchableStore()).record_sale([])

    @pytest.mark.parametrize("quantity", [0, -1, 1.5, True, "2", 2**31, 2**70])
    async def test_bad_quantity_rejected(self, quantity):
        with pytest.raises(InvalidRequest):
            await SaleCoordinator(UntouchableStore()).record_sale([SaleLineItem(uuid.uuid4(), quantity)])

    async def test_negative_unit_price_rejected(self):
        with pytest.raises(InvalidRequest):
            await SaleCoordinator(UntouchableStore()).record_sale(
                [SaleLineItem(uuid.uuid4(), 1, Decimal("-0.01"))]
            )

    @pytest.mark.parametrize("unit_price", [Decimal("0.999"), Decimal("1.005"), Decimal("10000000000"), Decimal("NaN")])
    async def test_unit_price_that_cannot_be_stored_exactly_is_rejected(self, unit_price):
        with pytest.raises(InvalidRequest):
            await SaleCoordinator(UntouchableStore()).record_sale([SaleLineItem(uuid.uuid4(), 1, unit_price)])

    async def test_charged_unit_price_is_stored_exactly(self, store, make_product):
        product = await make_product(stock=3)
        sale = await SaleCoordinator(store).record_sale([SaleLineItem(product.id, 1, Decimal("0.99"))])
        assert (await store.get_sale(sale.id)).items[0].unit_price == Decimal("0.99")

    async def test_untyped_items_rejected(self):
        with pytest.raises(InvalidRequest):
            await SaleCoordinator(UntouchableStore()).record_sale([{"productId": str(uuid.uuid4()), "quantity": 1}])

    async def test_one_bad_line_rejects_whole_request(self):
        with pytest.raises(InvalidRequest):
            await SaleCoordinator(UntouchableStore()).record_sale(
                [SaleLineItem(uuid.uuid4(), 1), SaleLineItem(uuid.uuid4(), 0)]
            )


class TestConcurrency:
    async def test_two_sales_cannot_both_take_the_last_units(self, store, make_product):
        product = await make_product(stock=5)
        coordinator = SaleCoordinator(store)

        results = await asyncio.gather(
            coordinator.record_sale([SaleLineItem(product.id, 5)]),
            coordinator.record_sale([SaleLineItem(product.id, 5)]),
            return_exceptions=True,
        )

        succeeded = [r for r in results if isinstance(r, Sale)]
        failed = [r for r in results if isinstance(r, BaseException)]
        assert len(succeeded) == 1
        assert len(failed) == 1
        assert isinstance(failed[0], InsufficientStock)
        assert failed[0].available == 0
        assert await _stock(store, product.id) == 0
        assert len(await store.list_sales()) == 1


class TestTimeoutAndCancellation:
    @pytest.fixture()
    def slow_locks(self, monkeypatch):
        original = StoreTransaction.lock_products

        async def slow_lock_products(self, product_ids):
            products = await original(self, product_ids)
            await asyncio.sleep(5)
            return products

        monkeypatch.setattr(StoreTransaction, "lock_products", slow_lock_products)
        return monkeypatch

    async def test_timeout_aborts_the_transaction(self, store, make_product, slow_locks):
        product = await make_product(stock=5)
        coordinator = SaleCoordinator(store, timeout=0.2)

        with pytest.raises(TransactionTimeout):
            await coordinator.record_sale([SaleLineItem(product.id, 2)])

        slow_locks.undo()
        assert await _stock(store, product.id) == 5
        assert await store.list_sales() == []
        # the lock taken by the aborted transaction is gone
        await coordinator.record_sale([SaleLineItem(product.id, 2)])
        assert await _stock(store, product.id) == 3

    async def test_cancelled_sale_is_aborted(self, store, make_product, slow_locks):
        product = await make_product(stock=5)
        task = asyncio.create_task(SaleCoordinator(store).record_sale([SaleLineItem(product.id, 2)]))
        await asyncio.sleep(0.2)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        slow_locks.undo()
        assert await _stock(store, product.id) == 5
        assert await store.list_sales() == []

    def test_non_positive_timeout_disables_it(self):
        assert SaleCoordinator(UntouchableStore(), timeout=0).timeout is None
        assert SaleCoordinator(UntouchableStore(), timeout=1.5).timeout == 1.5
