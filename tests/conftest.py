"""
Pytest fixtures for the stockflow test suite.

Provides:
- A session-scoped engine and schema (SQLite file by default)
- Per-test sessions isolated by transaction rollback
- A session factory for threaded concurrency tests (real commits)
- Factories for products, batches, customers, suppliers and couriers

Environment Variables:
- DATABASE_URL: SQLAlchemy URL.  If not set, a temporary SQLite file is
  used.  Set it to a PostgreSQL URL to exercise row locks.
"""

import json
import logging
import os
import threading
from datetime import date, datetime, timezone
from decimal import Decimal
from io import StringIO
from typing import Generator
from uuid import UUID, uuid4

import pytest
from sqlalchemy import delete
from sqlalchemy.orm import Session

from stockflow_config.settings import StockflowConfig
from stockflow_kernel.db.base import Base
from stockflow_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from stockflow_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from stockflow_kernel.domain.clock import DeterministicClock
from stockflow_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from stockflow_kernel.models import (
    Courier,
    Customer,
    PriceListStatus,
    Product,
    Supplier,
    SupplierProductPrice,
)
from stockflow_kernel.services import ActivityLogService, BatchLedger, BatchMutator
from stockflow_modules.customer_orders import CustomerOrderService
from stockflow_modules.delivery import DeliveryService
from stockflow_modules.supplier_orders import SupplierOrderService

# Test actor ID for all test operations
TEST_ACTOR_ID = uuid4()


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture stockflow logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, ...):
            ...
            logs = captured_logs()
            assert any(r["message"] == "customer_order_prepared" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("stockflow")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "postgres: mark test as requiring PostgreSQL"
    )
    config.addinivalue_line(
        "markers", "slow_locks: mark test as potentially waiting for DB locks"
    )


# =============================================================================
# Session-scoped DB infrastructure (create engine + tables ONCE per suite)
# =============================================================================


@pytest.fixture(scope="session")
def database_url(tmp_path_factory) -> str:
    url = os.environ.get("DATABASE_URL")
    if url:
        return url
    path = tmp_path_factory.mktemp("stockflow") / "stockflow_test.db"
    return f"sqlite:///{path}"


@pytest.fixture(scope="session")
def db_engine(database_url):
    """Single engine for the entire test session."""
    eng = init_engine_from_url(
        database_url, echo=False,
        pool_size=20, max_overflow=10, pool_timeout=30,
    )
    yield eng
    reset_engine()


@pytest.fixture(scope="session")
def db_tables(db_engine):
    """Create all tables once per session, drop once at end.

    Immutability listeners are registered once and remain active.
    """
    drop_tables()
    create_tables()
    register_immutability_listeners()
    yield
    unregister_immutability_listeners()
    drop_tables()


def _delete_all_rows(engine) -> None:
    """Remove committed test data.  Core DELETE bypasses ORM listeners."""
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(delete(table))


# =============================================================================
# Per-test session with automatic rollback
# =============================================================================


@pytest.fixture(scope="function")
def session(db_tables, db_engine) -> Generator[Session, None, None]:
    """Provide a database session for testing.

    Opens a dedicated connection with an outer transaction and a session
    that joins it through a savepoint.  At teardown the outer transaction
    is rolled back, undoing all data changes made during the test.
    """
    conn = db_engine.connect()
    trans = conn.begin()
    sess = Session(bind=conn, join_transaction_mode="create_savepoint", expire_on_commit=False)
    yield sess
    try:
        sess.close()
    finally:
        try:
            trans.rollback()
        finally:
            conn.close()


# =============================================================================
# Concurrency testing fixtures (real commits + DELETE cleanup)
# =============================================================================


@pytest.fixture(scope="function")
def session_factory(db_engine, db_tables):
    """Provide a tracked session factory for creating sessions in concurrent threads.

    Each thread must create its own session from this factory.  On
    teardown all tracked sessions are rolled back and closed and every
    committed row is deleted.
    """
    factory = get_session_factory()
    created_sessions = []
    lock = threading.Lock()
    closed = False

    def tracked_factory() -> Session:
        nonlocal closed
        with lock:
            if closed:
                raise RuntimeError("session_factory closed (fixture teardown)")
            s = factory()
            created_sessions.append(s)
            return s

    yield tracked_factory

    with lock:
        closed = True

    for s in created_sessions:
        if s.is_active:
            s.rollback()
        s.close()

    _delete_all_rows(db_engine)


@pytest.fixture
def test_actor_id() -> UUID:
    """Provide a consistent test actor ID."""
    return TEST_ACTOR_ID


# Clock and config fixtures


@pytest.fixture
def deterministic_clock():
    """Clock pinned at 2024-01-01 12:00 UTC."""
    return DeterministicClock(datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def config() -> StockflowConfig:
    return StockflowConfig.with_defaults()


# Service fixtures


@pytest.fixture
def batch_ledger(session, deterministic_clock, config) -> BatchLedger:
    return BatchLedger(session, deterministic_clock, config)


@pytest.fixture
def batch_mutator(session, deterministic_clock) -> BatchMutator:
    return BatchMutator(session, deterministic_clock)


@pytest.fixture
def activity_log(session, deterministic_clock) -> ActivityLogService:
    return ActivityLogService(session, deterministic_clock)


@pytest.fixture
def customer_orders(session, deterministic_clock, config) -> CustomerOrderService:
    return CustomerOrderService(session, deterministic_clock, config)


@pytest.fixture
def supplier_orders(session, deterministic_clock, config) -> SupplierOrderService:
    return SupplierOrderService(session, deterministic_clock, config)


@pytest.fixture
def delivery(session, deterministic_clock, config) -> DeliveryService:
    return DeliveryService(session, deterministic_clock, config)


# =============================================================================
# Data factories
# =============================================================================


@pytest.fixture
def create_product(session):
    """Factory for products.  Stock is added separately through lots."""

    def _create(
        name: str = "Milk",
        quantity: int = 0,
        sell_price: Decimal = Decimal("2.50"),
        cost_price: Decimal = Decimal("1.50"),
        low_stock: int = 5,
        is_active: bool = True,
    ) -> Product:
        product = Product(
            name=name,
            quantity=quantity,
            sell_price=sell_price,
            cost_price=cost_price,
            low_stock=low_stock,
            is_active=is_active,
        )
        session.add(product)
        session.flush()
        return product

    return _create


@pytest.fixture
def create_batch(batch_ledger, deterministic_clock):
    """Factory for lots.  Advances the clock one second so receipts are ordered."""

    def _create(
        product: Product,
        quantity: int,
        prod_date: date | None = None,
        exp_date: date | None = None,
        **kwargs,
    ):
        deterministic_clock.tick()
        return batch_ledger.create_batch(product.id, quantity, prod_date, exp_date, **kwargs)

    return _create


@pytest.fixture
def create_customer(session):
    def _create(
        name: str = "Corner Shop",
        account_balance: Decimal = Decimal("0"),
        latitude: Decimal | None = Decimal("31.95"),
        longitude: Decimal | None = Decimal("35.91"),
    ) -> Customer:
        customer = Customer(
            name=name,
            account_balance=account_balance,
            latitude=latitude,
            longitude=longitude,
        )
        session.add(customer)
        session.flush()
        return customer

    return _create


@pytest.fixture
def create_supplier(session):
    def _create(name: str = "Dairy Co", is_active: bool = True, prices=None) -> Supplier:
        supplier = Supplier(name=name, is_active=is_active)
        session.add(supplier)
        session.flush()
        for product, price in (prices or {}).items():
            session.add(SupplierProductPrice(
                supplier_id=supplier.id,
                product_id=product.id,
                price=price,
                status=PriceListStatus.ACTIVE.value,
            ))
        session.flush()
        return supplier

    return _create


@pytest.fixture
def create_courier(session):
    def _create(name: str = "Sami") -> Courier:
        courier = Courier(name=name, is_available=True)
        session.add(courier)
        session.flush()
        return courier

    return _create
