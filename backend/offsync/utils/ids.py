"""Identifier helpers for operations and sync sessions.

Both identifiers share the layout ``YYYYMMDDhhmmss-<suffix>``: a UTC
timestamp prefix keeps them roughly sortable, the random suffix keeps them
unique when many are minted within the same second.
"""

import secrets
import string
from datetime import datetime

from offsync.utils.time import utc_now

_ALPHABET = string.ascii_letters + string.digits

OPERATION_SUFFIX_LENGTH = 8
SYNC_TOKEN_SUFFIX_LENGTH = 16


def random_suffix(length: int) -> str:
    """Return *length* characters drawn from the OS CSPRNG."""
    if length <= 0:
        raise ValueError("length must be positive")
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))


def _stamp(now: datetime | None) -> str:
    return (now or utc_now()).strftime("%Y%m%d%H%M%S")


def generate_operation_id(now: datetime | None = None) -> str:
    return f"{_stamp(now)}-{random_suffix(OPERATION_SUFFIX_LENGTH)}"


def generate_sync_token(now: datetime | None = None) -> str:
    return f"{_stamp(now)}-{random_suffix(SYNC_TOKEN_SUFFIX_LENGTH)}"


__all__ = ["generate_operation_id", "generate_sync_token", "random_suffix"]
