from decimal import Decimal, InvalidOperation
from typing import Any

from core.errors import InvalidRequest

# Column shapes: prices are Numeric(PRICE_PRECISION, PRICE_SCALE), stock and quantities are 32-bit
PRICE_PRECISION = 12
PRICE_SCALE = 2
MAX_PRICE = Decimal(10) ** (PRICE_PRECISION - PRICE_SCALE) - Decimal(1).scaleb(-PRICE_SCALE)
MAX_INT32 = 2**31 - 1


def parse_price(value: Any, field: str = "price") -> Decimal:
    """Parse a non-negative price that the price columns store without rounding."""
    if isinstance(value, bool):
        raise InvalidRequest(f"{field} must be a number")
    try:
        price = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise InvalidRequest(f"{field} must be a number")
    if not price.is_finite() or price < 0:
        raise InvalidRequest(f"{field} must be >= 0")
    if price > MAX_PRICE:
        raise InvalidRequest(f"{field} must be <= {MAX_PRICE}")
    if price != price.quantize(Decimal(1).scaleb(-PRICE_SCALE)):
        raise InvalidRequest(f"{field} must have at most {PRICE_SCALE} decimal places")
    return price


def parse_count(value: Any, field: str, minimum: int = 0) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidRequest(f"{field} must be an integer")
    if value < minimum:
        raise InvalidRequest(f"{field} must be >= {minimum}")
    if value > MAX_INT32:
        raise InvalidRequest(f"{field} must be <= {MAX_INT32}")
    return value
