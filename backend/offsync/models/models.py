"""Record tables the sync engine writes to.

``users``, ``products`` and ``orders`` have typed columns.  Any other record
kind lands in ``generic_records``: one row per ``(table_name, record_id)``
with the client payload stored verbatim in a JSON column.
"""

from sqlalchemy import JSON
from sqlalchemy import Boolean
from sqlalchemy import Column
from sqlalchemy import DateTime
from sqlalchemy import Float
from sqlalchemy import Integer
from sqlalchemy import String
from sqlalchemy import Text
from sqlalchemy import UniqueConstraint
from sqlalchemy.ext.mutable import MutableDict

from offsync.database import Base
from offsync.utils.time import utc_now_naive

# ---------------------------------------------------------------------------
# Shared timestamp columns
# ---------------------------------------------------------------------------
#
# ``updated_at`` is stamped by the gateway's prepare stage on every write
# (no ORM onupdate hook) so selective sync compares against the same clock
# the gateway uses.


def _created_at():
    return Column(DateTime, nullable=False, default=utc_now_naive)


def _updated_at():
    return Column(DateTime, nullable=False, default=utc_now_naive, index=True)


class User(Base):
    """Application user record (synchronisable like any other kind)."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, nullable=False, index=True)
    name = Column(String, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = _created_at()
    updated_at = _updated_at()


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Float, nullable=False)
    sku = Column(String, unique=True, nullable=True)
    stock = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    category_id = Column(Integer, nullable=True, index=True)

    created_at = _created_at()
    updated_at = _updated_at()


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    order_number = Column(String, unique=True, nullable=False)
    customer_id = Column(Integer, nullable=False, index=True)
    total_amount = Column(Float, nullable=False)
    status = Column(String, nullable=False, default="pending")
    notes = Column(Text, nullable=True)

    created_at = _created_at()
    updated_at = _updated_at()


class GenericRecord(Base):
    """Schemaless side table backing every record kind without a typed model."""

    __tablename__ = "generic_records"
    __table_args__ = (UniqueConstraint("table_name", "record_id", name="uq_generic_records_table_record"),)

    id = Column(Integer, primary_key=True, index=True)
    table_name = Column(String(63), nullable=False, index=True)
    record_id = Column(String, nullable=False)
    data = Column(MutableDict.as_mutable(JSON), nullable=False, default=dict)

    created_at = _created_at()
    updated_at = _updated_at()


# Record kind -> typed model.  Kept next to the models so adding a kind is a
# one-file change (plus its payload schemas).
RECORD_MODELS = {
    "users": User,
    "products": Product,
    "orders": Order,
}


__all__ = ["User", "Product", "Order", "GenericRecord", "RECORD_MODELS"]
