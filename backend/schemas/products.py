from pydantic import BaseModel, field_validator
from typing import Optional
from uuid import UUID


class ProductRead(BaseModel):
    id: UUID
    name: str
    price: float
    stock: int


class ProductCreate(BaseModel):
    name: str
    price: float = 0.0
    stock: int = 0

    @field_validator("name")
    @classmethod
    def _strip_required(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("name is required")
        return v

    @field_validator("price", "stock")
    @classmethod
    def _non_negative(cls, v):
        if v < 0:
            raise ValueError("must be >= 0")
        return v


class ProductUpdate(BaseModel):
    name: Optional[str] = None
    price: Optional[float] = None
    stock: Optional[int] = None

    @field_validator("name")
    @classmethod
    def _strip_optional(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        if not v:
            raise ValueError("cannot be empty")
        return v

    @field_validator("price", "stock")
    @classmethod
    def _non_negative(cls, v):
        if v is not None and v < 0:
            raise ValueError("must be >= 0")
        return v
