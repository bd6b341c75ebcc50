"""Centralised configuration helper.

This module eliminates scattered ``os.getenv`` calls by exposing a single
process-wide :class:`Settings` instance (retrieved via :func:`get_settings`).
Values come from the environment, optionally seeded from a ``.env`` file at the
repository root via *python-dotenv*.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

# ``_REPO_ROOT`` points to the top-level repository directory (one level
# above the "backend" folder).  This file lives at
# ``backend/offsync/config/__init__.py``.

_REPO_ROOT = Path(__file__).resolve().parents[3]


def _truthy(value: str | None) -> bool:  # noqa: D401 – small helper
    """Return *True* when *value* looks like an affirmative string."""

    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}") from exc


@dataclass
class Settings:  # noqa: D401 – simple data container
    """Lightweight settings container populated from environment variables."""

    # Runtime flags -----------------------------------------------------
    testing: bool
    auth_disabled: bool

    # Database ---------------------------------------------------------
    database_url: str

    # Misc -------------------------------------------------------------
    log_level: str
    environment: Any
    allowed_cors_origins: str

    # Operation queue ---------------------------------------------------
    sync_max_retries: int
    sync_batch_limit: int  # 0 = drain everything pending

    # Retry loop --------------------------------------------------------
    sync_retry_interval_seconds: int
    sync_retry_base_delay_seconds: int
    sync_processing_lease_seconds: int  # processing ops older than this are reclaimed

    # Ephemeral key-value store ----------------------------------------
    push_retention_seconds: int
    kv_max_entries: int

    # Helper for tests to override values at runtime -------------------
    def override(self, **kwargs: Any) -> None:  # pragma: no cover – test util
        for key, value in kwargs.items():
            if not hasattr(self, key):  # pragma: no cover – safety
                raise AttributeError(f"Settings has no attribute '{key}'")
            setattr(self, key, value)


# ---------------------------------------------------------------------------
# Accessor – values are re-read on every call so tests that tweak the
# environment see their changes.
# ---------------------------------------------------------------------------


def _load_settings() -> Settings:  # noqa: D401 – helper
    """Populate :class:`Settings` from environment variables."""

    node_env = os.getenv("NODE_ENV", "development")
    env_path = _REPO_ROOT / (".env.test" if node_env == "test" else ".env")
    if not env_path.exists():
        env_path = _REPO_ROOT / ".env"

    if env_path.exists():
        # Never let the .env file clobber variables the process already has
        # (the test-suite sets TESTING before importing anything).
        load_dotenv(env_path, override=False)

    testing = _truthy(os.getenv("TESTING"))

    return Settings(
        testing=testing,
        auth_disabled=_truthy(os.getenv("AUTH_DISABLED")) or testing,
        database_url=os.getenv("DATABASE_URL", ""),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        environment=os.getenv("ENVIRONMENT"),
        allowed_cors_origins=os.getenv("ALLOWED_CORS_ORIGINS", ""),
        sync_max_retries=_int("SYNC_MAX_RETRIES", 5),
        sync_batch_limit=_int("SYNC_BATCH_LIMIT", 0),
        sync_retry_interval_seconds=_int("SYNC_RETRY_INTERVAL_SECONDS", 300),
        sync_retry_base_delay_seconds=_int("SYNC_RETRY_BASE_DELAY_SECONDS", 60),
        sync_processing_lease_seconds=_int("SYNC_PROCESSING_LEASE_SECONDS", 300),
        push_retention_seconds=_int("PUSH_RETENTION_SECONDS", 24 * 60 * 60),
        kv_max_entries=_int("KV_MAX_ENTRIES", 10_000),
    )


# ------------------------------------------------------------------
# Runtime validation – fail fast when required configuration is missing.
# ------------------------------------------------------------------


def _validate_required(settings: Settings) -> None:  # noqa: D401 – helper
    """Abort startup when mandatory configuration is missing.

    Only production deployments are checked; development and test runs fall
    back to a local SQLite file or an in-memory database respectively.
    """

    if settings.testing:
        return

    missing_vars = []

    if settings.environment == "production" and not settings.database_url:
        missing_vars.append("DATABASE_URL")

    if settings.sync_max_retries < 0:
        missing_vars.append("SYNC_MAX_RETRIES (must be >= 0)")

    if settings.sync_retry_interval_seconds <= 0:
        missing_vars.append("SYNC_RETRY_INTERVAL_SECONDS (must be > 0)")

    if missing_vars:
        error_msg = (
            f"CRITICAL: Missing or invalid environment variables: {', '.join(missing_vars)}\n"
            f"Set these in your .env file or deployment environment.\n"
            f"Current DATABASE_URL: '{settings.database_url}'"
        )
        raise RuntimeError(error_msg)


def get_settings() -> Settings:  # noqa: D401 – public accessor
    """Return :class:`Settings` instance loaded from environment."""

    settings = _load_settings()
    _validate_required(settings)
    return settings


__all__ = [
    "Settings",
    "get_settings",
]
