import os

# Must be set before anything reads the settings (skips background services,
# enables the dev identity and unbounded WebSocket queues).
os.environ["TESTING"] = "1"

from datetime import datetime  # noqa: E402
from typing import Any  # noqa: E402
from typing import Dict  # noqa: E402
from typing import List  # noqa: E402

import dotenv  # noqa: E402
import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

import offsync.database as _db_mod  # noqa: E402
from offsync.config import get_settings  # noqa: E402
from offsync.database import Base  # noqa: E402
from offsync.database import get_db  # noqa: E402
from offsync.database import make_engine  # noqa: E402
from offsync.database import make_sessionmaker  # noqa: E402
from offsync.events import EventType  # noqa: E402
from offsync.events import event_bus  # noqa: E402
from offsync.models.enums import ModifiedBy  # noqa: E402
from offsync.models.models import Product  # noqa: E402
from offsync.models.sync import DataVersion  # noqa: E402
from offsync.services.kv_store import KeyValueStore  # noqa: E402
from offsync.services.sync_engine import SyncEngine  # noqa: E402
from offsync.services.sync_engine import get_sync_engine  # noqa: E402
from offsync.services.user_locks import UserLockManager  # noqa: E402
from offsync.utils.json_helpers import digest  # noqa: E402
from offsync.utils.json_helpers import version_checksum  # noqa: E402
from offsync.utils.time import utc_now_naive  # noqa: E402
from offsync.websocket.manager import topic_manager  # noqa: E402

dotenv.load_dotenv()


# In-memory SQLite shared by every session through a StaticPool
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

test_engine = make_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = make_sessionmaker(test_engine)

# Services that open their own sessions (db_session() without a factory)
_db_mod.default_session_factory = TestingSessionLocal

# Import app after engine setup is in place
from offsync.main import app  # noqa: E402


@pytest.fixture(scope="session", autouse=True)
def cleanup_global_resources():
    """topic_manager subscribes to event_bus at import time; undo that at the end."""
    yield

    topic_manager.active_connections.clear()
    topic_manager.topic_subscriptions.clear()
    topic_manager.client_topics.clear()

    event_bus.unsubscribe(EventType.SYNC_COMPLETED, topic_manager._handle_user_event)
    event_bus.unsubscribe(EventType.OPERATION_QUEUED, topic_manager._handle_user_event)
    event_bus.unsubscribe(EventType.PRESENCE_UPDATED, topic_manager._handle_broadcast_event)


@pytest.fixture
def db_session():
    """
    Creates a fresh database for each test, then tears it down after the test is done.
    """
    Base.metadata.create_all(bind=test_engine)

    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def test_session_factory(db_session):
    """Session factory bound to the test database (tables created by db_session)."""
    return TestingSessionLocal


@pytest.fixture
def make_sync_engine(test_session_factory):
    """Build a SyncEngine on the test database with isolated KV store and locks.

    Keyword arguments override settings, e.g. ``make_sync_engine(sync_retry_base_delay_seconds=0)``.
    """

    def _make(**overrides) -> SyncEngine:
        settings = get_settings()
        settings.override(**overrides)
        return SyncEngine(
            session_factory=test_session_factory,
            settings=settings,
            kv_store=KeyValueStore(),
            locks=UserLockManager(),
        )

    return _make


@pytest.fixture
def sync_engine(make_sync_engine):
    return make_sync_engine()


@pytest.fixture
def client(db_session, sync_engine):
    """
    Create a FastAPI TestClient with the test database and engine.
    """

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_sync_engine] = lambda: sync_engine

    client = TestClient(app, backend="asyncio")
    yield client

    app.dependency_overrides = {}


@pytest.fixture
def captured_events():
    """Record every notifier event published on the bus during the test."""
    events: List[Dict[str, Any]] = []

    async def _capture(data: Dict[str, Any]) -> None:
        events.append(data)

    event_types = (EventType.SYNC_COMPLETED, EventType.OPERATION_QUEUED, EventType.PRESENCE_UPDATED)
    for event_type in event_types:
        event_bus.subscribe(event_type, _capture)
    yield events
    for event_type in event_types:
        event_bus.unsubscribe(event_type, _capture)


@pytest.fixture
def seed_product(db_session):
    """Insert a product plus a server-written version entry, committed.

    Usage:
        seed_product(5, name="Srv", price=9, user_id=7)
    """

    def _seed(
        product_id: int,
        *,
        name: str = "Product",
        price: float = 1.0,
        user_id: int = 7,
        version: int = 1,
        modified_by: ModifiedBy = ModifiedBy.SERVER,
        updated_at: datetime | None = None,
        with_version: bool = True,
        **fields,
    ) -> Product:
        now = updated_at or utc_now_naive()
        product = Product(id=product_id, name=name, price=price, created_at=now, updated_at=now, **fields)
        db_session.add(product)
        if with_version:
            db_session.add(
                DataVersion(
                    user_id=user_id,
                    table_name="products",
                    record_id=str(product_id),
                    version=version,
                    last_modified_by=modified_by,
                    last_modified_at=now,
                    checksum=version_checksum("products", str(product_id), version, ModifiedBy(modified_by).value),
                    content_checksum=digest({"name": name, "price": price}),
                )
            )
        db_session.commit()
        return product

    return _seed
