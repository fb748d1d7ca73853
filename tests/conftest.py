# tests/conftest.py
"""
Pytest configuration and fixtures.

- In-memory SQLite shared through StaticPool, schema rebuilt for every test.
- One Session per test; the API client is wired to that same session, so
  assertions see exactly what the endpoints committed.
- Actor fixtures (Actor objects for service calls, header dicts for HTTP calls).
- Factories for orders / products that go through the real services.
"""

from __future__ import annotations

import os
from collections.abc import Callable, Iterator
from typing import Any, Optional

# ======================================================================================
# 0) Environment bootstrap (before any app import)
# ======================================================================================
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("SMS_PROVIDER", "twilio")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.db import enable_sqlite_savepoints, get_db
from app.core.security import Actor, ActorRole
from app.models import Base
from app.models.order import Order, OrderProduct, ProductStatus
from app.services.margin_config import invalidate_margin_cache, update_margin_defaults
from app.services.order_service import add_order_product, create_order

# ======================================================================================
# 1) Engine / session
# ======================================================================================
engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
enable_sqlite_savepoints(engine)
TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture(autouse=True)
def _fresh_margin_cache() -> Iterator[None]:
    """Margin defaults are cached per process; every test starts cold."""
    invalidate_margin_cache()
    yield
    invalidate_margin_cache()


@pytest.fixture
def db_session() -> Iterator[Session]:
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(db_session: Session) -> Iterator[TestClient]:
    from app.main import app

    def _override_get_db() -> Iterator[Session]:
        yield db_session

    app.dependency_overrides[get_db] = _override_get_db
    try:
        with TestClient(app) as c:
            yield c
    finally:
        app.dependency_overrides.clear()


# ======================================================================================
# 2) Actors
# ======================================================================================
SUPER_ADMIN = Actor(id="sa-1", name="Sam Super", role=ActorRole.SUPER_ADMIN)
ADMIN = Actor(id="admin-1", name="Ada Admin", role=ActorRole.ADMIN)
MANUFACTURER = Actor(id="mfr-1", name="Acme Factory", role=ActorRole.MANUFACTURER)
CLIENT = Actor(id="client-1", name="Casey Client", role=ActorRole.CLIENT)


def actor_headers(actor: Actor) -> dict[str, str]:
    return {"X-Actor-Id": actor.id, "X-Actor-Name": actor.name, "X-Actor-Role": actor.role.value}


@pytest.fixture
def super_admin() -> Actor:
    return SUPER_ADMIN


@pytest.fixture
def admin() -> Actor:
    return ADMIN


@pytest.fixture
def manufacturer() -> Actor:
    return MANUFACTURER


@pytest.fixture
def client_actor() -> Actor:
    return CLIENT


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return actor_headers(ADMIN)


@pytest.fixture
def super_admin_headers() -> dict[str, str]:
    return actor_headers(SUPER_ADMIN)


@pytest.fixture
def manufacturer_headers() -> dict[str, str]:
    return actor_headers(MANUFACTURER)


@pytest.fixture
def client_headers() -> dict[str, str]:
    return actor_headers(CLIENT)


# ======================================================================================
# 3) Factories
# ======================================================================================
@pytest.fixture
def make_order(db_session: Session) -> Callable[..., Order]:
    def _make(**kw: Any) -> Order:
        data = dict(
            client_id=CLIENT.id,
            client_name="Casey Client",
            client_email="casey@example.com",
            client_phone="5551234567",
            manufacturer_id=MANUFACTURER.id,
            manufacturer_name="Acme Factory",
            name="Spring merch",
        )
        data.update(kw)
        return create_order(db_session, ADMIN, **data)

    return _make


@pytest.fixture
def make_product(db_session: Session) -> Callable[..., OrderProduct]:
    counter = {"n": 0}

    def _make(
        order: Order,
        *,
        price: Any = "4.00",
        quantity: int = 1000,
        category: str = "standard",
        status: Optional[ProductStatus] = None,
        **fields: Any,
    ) -> OrderProduct:
        counter["n"] += 1
        product = add_order_product(
            db_session,
            ADMIN,
            order.id,
            catalog_product_id=fields.pop("catalog_product_id", f"CAT-{counter['n']:03d}"),
            product_name=fields.pop("product_name", f"Product {counter['n']}"),
            product_category=category,
            items=[{"variant_combo": "M / Black", "quantity": quantity}],
            product_price=price,
            **fields,
        )
        if status is not None:
            product.product_status = status
            db_session.commit()
            db_session.refresh(product)
        return product

    return _make


@pytest.fixture
def set_defaults(db_session: Session) -> Callable[..., Any]:
    """Persist global margin defaults through the real update path."""

    def _set(**values: Any):
        return update_margin_defaults(db_session, SUPER_ADMIN, values)

    return _set


# ======================================================================================
# 4) Log capture
# ======================================================================================
class LogRecorder:
    """Stands in for a module's structlog logger and keeps (level, event, fields)."""

    def __init__(self) -> None:
        self.records: list[tuple[str, str, dict[str, Any]]] = []

    def __getattr__(self, level: str) -> Callable[..., None]:
        if level.startswith("_"):
            raise AttributeError(level)

        def _emit(event: str, *args: Any, **fields: Any) -> None:
            self.records.append((level, event, fields))

        return _emit

    def at(self, level: str) -> list[tuple[str, dict[str, Any]]]:
        return [(event, fields) for lvl, event, fields in self.records if lvl == level]


@pytest.fixture
def record_logs(monkeypatch: pytest.MonkeyPatch) -> Callable[[Any], LogRecorder]:
    """Replace `module.logger` with a LogRecorder for the duration of the test."""

    def _patch(module: Any) -> LogRecorder:
        recorder = LogRecorder()
        monkeypatch.setattr(module, "logger", recorder)
        return recorder

    return _patch
