"""Timezone helpers – provide a single UTC *now()* and normalisation helpers.

Database columns store naive UTC datetimes.  Timestamps arriving from clients
(``since`` for selective sync) may carry any offset, so they are normalised
with :pyfunc:`to_naive_utc` before they hit a query.
"""

from datetime import datetime
from datetime import timezone


def utc_now() -> datetime:  # noqa: D401 – simple utility
    """Return *aware* current time in UTC."""

    return datetime.now(timezone.utc)


def utc_now_naive() -> datetime:  # noqa: D401 – simple utility
    """Return *naive* current time in UTC for database compatibility."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Convert *value* to naive UTC.

    Naive inputs are assumed to already be UTC and are returned unchanged.
    """
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


__all__ = ["utc_now", "utc_now_naive", "to_naive_utc"]
