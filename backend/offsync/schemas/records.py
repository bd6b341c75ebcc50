"""Typed payloads for the well-known record kinds.

Each kind has a *Create* model (required fields enforced) and an *Update*
model (every field optional, only explicitly sent fields are written).
Unknown keys are ignored so clients may send denormalised extras.  Record
kinds without a typed model use :class:`OtherPayload`, a plain mapping.
"""

from typing import Any
from typing import Dict
from typing import Optional
from typing import Type

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
from pydantic import RootModel


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)


# ---------------------------------------------------------------------------
# users
# ---------------------------------------------------------------------------


class UserCreatePayload(_Payload):
    email: str = Field(min_length=3)
    name: Optional[str] = None
    is_active: bool = True


class UserUpdatePayload(_Payload):
    email: Optional[str] = Field(default=None, min_length=3)
    name: Optional[str] = None
    is_active: Optional[bool] = None


# ---------------------------------------------------------------------------
# products
# ---------------------------------------------------------------------------


class ProductCreatePayload(_Payload):
    name: str = Field(min_length=1)
    description: Optional[str] = None
    price: float = Field(ge=0)
    sku: Optional[str] = None
    stock: int = Field(default=0, ge=0)
    is_active: bool = True
    category_id: Optional[int] = None


class ProductUpdatePayload(_Payload):
    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    price: Optional[float] = Field(default=None, ge=0)
    sku: Optional[str] = None
    stock: Optional[int] = Field(default=None, ge=0)
    is_active: Optional[bool] = None
    category_id: Optional[int] = None


# ---------------------------------------------------------------------------
# orders
# ---------------------------------------------------------------------------


class OrderCreatePayload(_Payload):
    order_number: str = Field(min_length=1)
    customer_id: int
    total_amount: float = Field(ge=0)
    status: str = "pending"
    notes: Optional[str] = None


class OrderUpdatePayload(_Payload):
    order_number: Optional[str] = Field(default=None, min_length=1)
    customer_id: Optional[int] = None
    total_amount: Optional[float] = Field(default=None, ge=0)
    status: Optional[str] = None
    notes: Optional[str] = None


# ---------------------------------------------------------------------------
# everything else
# ---------------------------------------------------------------------------


class OtherPayload(RootModel[Dict[str, Any]]):
    """Schemaless payload for generic record kinds."""


PAYLOAD_SCHEMAS: Dict[str, tuple[Type[_Payload], Type[_Payload]]] = {
    "users": (UserCreatePayload, UserUpdatePayload),
    "products": (ProductCreatePayload, ProductUpdatePayload),
    "orders": (OrderCreatePayload, OrderUpdatePayload),
}


def writable_fields(table_name: str) -> tuple[str, ...]:
    """Column names a client may write for a well-known kind, in declaration order."""
    create_model, _ = PAYLOAD_SCHEMAS[table_name]
    return tuple(create_model.model_fields)


__all__ = [
    "UserCreatePayload",
    "UserUpdatePayload",
    "ProductCreatePayload",
    "ProductUpdatePayload",
    "OrderCreatePayload",
    "OrderUpdatePayload",
    "OtherPayload",
    "PAYLOAD_SCHEMAS",
    "writable_fields",
]
