import logging
import os
from contextlib import contextmanager
from typing import Any
from typing import Iterator

import dotenv
from sqlalchemy import Engine
from sqlalchemy import create_engine
from sqlalchemy.orm import Session
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import sessionmaker

from offsync.config import get_settings

logger = logging.getLogger(__name__)

_settings = get_settings()

dotenv.load_dotenv()


# Create Base class
Base = declarative_base()


def make_engine(db_url: str, **kwargs) -> Engine:
    """Create a SQLAlchemy engine with the given URL and options.

    Args:
        db_url: Database connection URL
        **kwargs: Additional arguments for create_engine

    Returns:
        A SQLAlchemy Engine instance
    """
    connect_args = kwargs.pop("connect_args", {})
    if "sqlite" in db_url:
        if "check_same_thread" not in connect_args:
            connect_args["check_same_thread"] = False
        connect_args.setdefault("timeout", 30)

    # Long-lived deployments recycle pooled connections
    if "sqlite" not in db_url:
        kwargs.setdefault("pool_pre_ping", True)
        kwargs.setdefault("pool_recycle", 300)

    return create_engine(db_url, connect_args=connect_args, **kwargs)


def make_sessionmaker(engine: Engine) -> sessionmaker:
    """Create a sessionmaker bound to the given engine.

    ``expire_on_commit=False`` keeps attributes accessible after a commit so
    rows returned from a ``db_session()`` block can still be read once the
    session is closed (the engine hands ORM rows back to routers and tests).
    """
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        bind=engine,
    )


def _resolve_db_url() -> str:
    # Tests patch the session factory anyway, so an in-memory database is
    # enough when TESTING is set.  Development falls back to a local file.
    if _settings.database_url:
        return _settings.database_url
    if _settings.testing:
        return "sqlite:///:memory:"
    return "sqlite:///./offsync.db"


# Default engine and sessionmaker instances for app usage.  Tests overwrite
# ``offsync.database.default_session_factory`` with their own factory.
default_engine = make_engine(_resolve_db_url())
default_session_factory = make_sessionmaker(default_engine)


def get_session_factory() -> sessionmaker:
    """Return the default session factory for the application."""

    return default_session_factory


def get_db(session_factory: Any = None) -> Iterator[Session]:
    """Dependency provider for database sessions.

    Args:
        session_factory: Optional custom session factory

    Yields:
        SQLAlchemy Session object
    """
    factory = session_factory or get_session_factory()
    db = factory()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def db_session(session_factory: Any = None) -> Iterator[Session]:
    """Single way to manage database sessions in services and background tasks.

    1. Auto-commit on success
    2. Auto-rollback on error
    3. Always close session

    Usage:
        with db_session() as db:
            queue.enqueue(db, user_id, op)
            # Automatic commit + close

    Args:
        session_factory: Optional custom session factory

    Yields:
        SQLAlchemy Session object with automatic lifecycle management
    """
    factory = session_factory or get_session_factory()
    session = factory()

    try:
        yield session
        session.commit()
        logger.debug("Database session committed successfully")

    except Exception as e:
        session.rollback()
        logger.debug(f"Database session rolled back due to error: {e}")
        raise

    finally:
        session.close()


def initialize_database(engine: Engine = None) -> None:
    """Create every table registered on ``Base`` using the given engine.

    Production deployments run the Alembic migrations instead; this helper
    serves development servers and the test-suite.
    """
    # Import all models so they are registered with Base
    from offsync.models import models  # noqa: F401
    from offsync.models import sync  # noqa: F401

    target_engine = engine or default_engine

    if os.getenv("NODE_ENV") == "test":
        table_names = [table.name for table in Base.metadata.tables.values()]
        logger.debug(f"Creating tables: {sorted(table_names)}")

    Base.metadata.create_all(bind=target_engine)
