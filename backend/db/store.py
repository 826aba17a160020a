"""
Inventory store: products and recorded sales over an async SQLAlchemy engine.

Catalog calls run in their own short transaction. Multi-row work (recording a
sale) goes through `InventoryStore.transaction()`, which hands out a
`StoreTransaction`; nothing issued against it is visible to other
transactions until `commit()`, and everything is discarded on `abort()`,
on an exception (cancellation included), or when the block exits without
a commit.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from decimal import Decimal
from typing import Any, AsyncIterator, Dict, Iterable, List, Mapping, Optional
from uuid import UUID

import structlog
from sqlalchemy import select
from sqlalchemy.exc import DBAPIError, IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from core.config import Settings
from core.errors import (
    InvalidRequest,
    ProductNotFound,
    SaleNotFound,
    StoreError,
    StoreUnavailable,
    TransactionConflict,
    TransactionTimeout,
)
from core.money import parse_count, parse_price
from db.database import build_engine, create_db_and_tables
from db.product import Product
from db.sale import Sale

logger = structlog.get_logger(__name__)

PRODUCT_FIELDS = ("name", "price", "stock")

# serialization_failure, deadlock_detected, lock_not_available
_CONFLICT_SQLSTATES = {"40001", "40P01", "55P03"}
# query_canceled (statement_timeout), idle_in_transaction_session_timeout
_TIMEOUT_SQLSTATES = {"57014", "25P03"}


def translate_store_error(exc: BaseException) -> StoreError:
    """Map a driver/SQLAlchemy failure onto the store abort taxonomy."""
    if isinstance(exc, StoreError):
        return exc
    if isinstance(exc, IntegrityError):
        return TransactionConflict(f"Integrity violation: {exc.orig}")
    if isinstance(exc, DBAPIError):
        orig = exc.orig
        sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
        if sqlstate in _CONFLICT_SQLSTATES:
            return TransactionConflict(f"Transaction conflict: {orig}")
        if sqlstate in _TIMEOUT_SQLSTATES:
            return TransactionTimeout(f"Transaction timed out: {orig}")
        text = str(orig).lower()
        if "database is locked" in text or "deadlock" in text:
            return TransactionConflict(f"Transaction conflict: {orig}")
    return StoreUnavailable(f"Store unavailable: {exc}")


def _clean_product_fields(fields: Mapping[str, Any], partial: bool) -> Dict[str, Any]:
    unknown = set(fields) - set(PRODUCT_FIELDS)
    if unknown:
        raise InvalidRequest(f"Unknown product fields: {', '.join(sorted(unknown))}")

    out: Dict[str, Any] = {}
    if "name" in fields:
        name = fields["name"]
        if not isinstance(name, str) or not name.strip():
            raise InvalidRequest("name is required")
        out["name"] = name.strip()
    elif not partial:
        raise InvalidRequest("name is required")

    if fields.get("price") is not None:
        out["price"] = parse_price(fields["price"])
    elif not partial:
        out["price"] = Decimal("0")

    if fields.get("stock") is not None:
        out["stock"] = parse_count(fields["stock"], "stock")
    elif not partial:
        out["stock"] = 0

    return out


class StoreTransaction:
    """Handle for one isolated unit of work against the store."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.committed = False
        self.aborted = False

    @property
    def closed(self) -> bool:
        return self.committed or self.aborted

    async def get_product(self, product_id: UUID) -> Optional[Product]:
        res = await self.session.execute(
            select(Product).where(Product.id == product_id).with_for_update()
        )
        return res.scalar_one_or_none()

    async def lock_products(self, product_ids: Iterable[UUID]) -> Dict[UUID, Product]:
        """Fetch and row-lock every existing product among `product_ids`.

        Rows are locked in id order so two transactions over overlapping
        products cannot deadlock each other. Missing ids are simply absent
        from the result.
        """
        ids = sorted(set(product_ids), key=str)
        if not ids:
            return {}
        res = await self.session.execute(
            select(Product).where(Product.id.in_(ids)).order_by(Product.id).with_for_update()
        )
        return {p.id: p for p in res.scalars().all()}

    def add_sale(self, sale: Sale) -> None:
        self.session.add(sale)

    async def commit(self) -> None:
        if self.closed:
            raise RuntimeError("transaction already finished")
        await self.session.commit()
        self.committed = True

    async def abort(self) -> None:
        if self.closed:
            return
        self.aborted = True
        try:
            await self.session.rollback()
        except (SQLAlchemyError, OSError) as e:
            # The connection is gone; the server discards the open transaction with it.
            logger.warning("store.rollback_failed", error=repr(e))


class InventoryStore:
    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self.session_maker = async_sessionmaker(engine, expire_on_commit=False)

    @classmethod
    def from_settings(cls, settings: Settings) -> "InventoryStore":
        return cls(build_engine(settings))

    async def create_all(self) -> None:
        try:
            await create_db_and_tables(self.engine)
        except (SQLAlchemyError, OSError) as e:
            raise translate_store_error(e) from e
        logger.info("store.ready", url=self.engine.url.render_as_string(hide_password=True))

    async def dispose(self) -> None:
        await self.engine.dispose()
        logger.info("store.closed")

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        async with self.session_maker() as session:
            try:
                yield session
            except (SQLAlchemyError, OSError) as e:
                raise translate_store_error(e) from e
            except OverflowError as e:
                raise InvalidRequest(f"Value out of range: {e}") from e

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[StoreTransaction]:
        session = self.session_maker()
        tx = StoreTransaction(session)
        try:
            yield tx
        except (SQLAlchemyError, OSError) as e:
            await tx.abort()
            raise translate_store_error(e) from e
        except BaseException:
            await tx.abort()
            raise
        else:
            if not tx.committed:
                await tx.abort()
        finally:
            await session.close()

    # --- products ---

    async def get_product(self, product_id: UUID) -> Product:
        async with self._session() as db:
            product = await db.get(Product, product_id)
        if product is None:
            raise ProductNotFound(product_id)
        return product

    async def list_products(self) -> List[Product]:
        async with self._session() as db:
            res = await db.execute(select(Product).order_by(Product.name.asc(), Product.id))
            return list(res.scalars().all())

    async def create_product(self, fields: Mapping[str, Any]) -> Product:
        data = _clean_product_fields(fields, partial=False)
        async with self._session() as db:
            product = Product(**data)
            db.add(product)
            await db.commit()
        logger.info("product.created", product_id=str(product.id), name=product.name, stock=product.stock)
        return product

    async def update_product(self, product_id: UUID, fields: Mapping[str, Any]) -> Product:
        data = _clean_product_fields(fields, partial=True)
        async with self._session() as db:
            product = await db.get(Product, product_id, with_for_update=True)
            if product is None:
                raise ProductNotFound(product_id)
            for key, value in data.items():
                setattr(product, key, value)
            await db.commit()
        logger.info("product.updated", product_id=str(product_id), fields=sorted(data))
        return product

    async def delete_product(self, product_id: UUID) -> None:
        async with self._session() as db:
            product = await db.get(Product, product_id)
            if product is None:
                raise ProductNotFound(product_id)
            await db.delete(product)
            await db.commit()
        logger.info("product.deleted", product_id=str(product_id))

    # --- sales ---

    async def get_sale(self, sale_id: UUID) -> Sale:
        async with self._session() as db:
            sale = await db.get(Sale, sale_id)
        if sale is None:
            raise SaleNotFound(sale_id)
        return sale

    async def list_sales(self, limit: int = 100, offset: int = 0) -> List[Sale]:
        async with self._session() as db:
            res = await db.execute(
                select(Sale).order_by(Sale.created_at.desc(), Sale.id).limit(limit).offset(offset)
            )
            return list(res.scalars().all())
