# ---------------------------------------------------------------------------
# NOTE: This module is imported pretty much everywhere so we avoid any
# heavyweight dependencies or side-effects here.
# ---------------------------------------------------------------------------

from typing import Final

# Base API prefix (all HTTP routes are served under /api/*)
API_PREFIX: Final[str] = "/api"

# WebSocket endpoint – mounted under API_PREFIX
WS_ENDPOINT: Final[str] = "/ws"

# Router prefixes (relative to API_PREFIX)
SYNC_PREFIX: Final[str] = "/v1/sync"

# Record kinds with a typed schema and table.  Anything else goes through the
# generic side table.
WELL_KNOWN_KINDS: Final[tuple[str, ...]] = ("users", "products", "orders")

# Push topics
SYSTEM_TOPIC: Final[str] = "system"


def user_topic(user_id: int) -> str:  # noqa: D401 – tiny helper
    """Return the personal topic every session of *user_id* is subscribed to."""

    return f"user:{user_id}"


def get_full_path(relative_path: str) -> str:  # noqa: D401 – tiny helper
    """Return absolute API path by joining *relative_path* onto API_PREFIX."""

    return f"{API_PREFIX}{relative_path}"


__all__ = [
    "API_PREFIX",
    "WS_ENDPOINT",
    "SYNC_PREFIX",
    "WELL_KNOWN_KINDS",
    "SYSTEM_TOPIC",
    "user_topic",
    "get_full_path",
]
