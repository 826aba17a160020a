from contextlib import asynccontextmanager
from typing import Optional

import structlog
import uvicorn
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from core.config import Settings, get_settings
from core.errors import PosError, StoreError
from core.logging import configure_logging
from db.store import InventoryStore
from routers.products import router as products_router
from routers.sales import router as sales_router
from services.sales import SaleCoordinator

logger = structlog.get_logger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        store = InventoryStore.from_settings(settings)
        await store.create_all()
        app.state.store = store
        app.state.sales = SaleCoordinator(store, timeout=settings.sale_timeout_seconds)
        try:
            yield
        finally:
            await store.dispose()

    app = FastAPI(
        title="POS Stock API",
        description="Product catalog and sales that atomically take stock",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(PosError)
    async def pos_error_handler(request: Request, exc: PosError):
        if isinstance(exc, StoreError):
            logger.warning("store.aborted", error=exc.code, detail=exc.message, path=request.url.path)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={"error": "invalid_request", "detail": jsonable_encoder(exc.errors())},
        )

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception("request.failed", method=request.method, path=request.url.path, error=repr(exc))
        return JSONResponse(
            status_code=500,
            content={"error": "internal_error", "detail": "Internal server error"},
        )

    @app.get("/health", tags=["health"])
    async def health():
        return {"status": "ok"}

    app.include_router(products_router, prefix="/products", tags=["products"])
    app.include_router(sales_router, prefix="/sales", tags=["sales"])

    return app


app = create_app()

if __name__ == "__main__":
    settings = get_settings()
    uvicorn.run("main:app", host=settings.host, port=settings.port, reload=True)
