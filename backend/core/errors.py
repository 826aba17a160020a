from typing import Any, Dict, Optional
from uuid import UUID


class PosError(Exception):
    """Base error for catalog and sale operations.

    `code` is the machine-readable name surfaced to API clients,
    `status_code` the HTTP status it maps to.
    """

    code = "error"
    status_code = 500

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.__class__.__name__
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "detail": self.message}


class SaleError(PosError):
    """Sale rejected because of its input or the current stock; retrying it unchanged fails again."""

    status_code = 400


class InvalidRequest(SaleError):
    code = "invalid_request"
    status_code = 400


class ProductNotFound(SaleError):
    code = "product_not_found"
    status_code = 404

    def __init__(self, product_id: UUID):
        self.product_id = product_id
        super().__init__(f"Product not found: {product_id}")

    def to_dict(self) -> Dict[str, Any]:
        out = super().to_dict()
        out["product_id"] = str(self.product_id)
        return out


class SaleNotFound(PosError):
    code = "sale_not_found"
    status_code = 404

    def __init__(self, sale_id: UUID):
        self.sale_id = sale_id
        super().__init__(f"Sale not found: {sale_id}")

    def to_dict(self) -> Dict[str, Any]:
        out = super().to_dict()
        out["sale_id"] = str(self.sale_id)
        return out


class InsufficientStock(SaleError):
    code = "insufficient_stock"
    status_code = 409

    def __init__(self, product_id: UUID, requested: int, available: int, name: Optional[str] = None):
        self.product_id = product_id
        self.requested = int(requested)
        self.available = int(available)
        self.name = name
        label = name or str(product_id)
        super().__init__(
            f"Insufficient stock for {label}. Available={self.available} requested={self.requested}"
        )

    def to_dict(self) -> Dict[str, Any]:
        out = super().to_dict()
        out.update(
            {
                "product_id": str(self.product_id),
                "requested": self.requested,
                "available": self.available,
            }
        )
        return out


class StoreError(PosError):
    """Store-level abort. The whole operation may be retried by the caller."""

    status_code = 503


class TransactionConflict(StoreError):
    code = "transaction_conflict"
    status_code = 409


class TransactionTimeout(StoreError):
    code = "transaction_timeout"


class StoreUnavailable(StoreError):
    code = "store_unavailable"
