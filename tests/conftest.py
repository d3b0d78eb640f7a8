"""
Pytest fixtures for the rental engine test suite.

Provides:
- A per-test SQLite file database (WAL, BEGIN IMMEDIATE) with all tables
- A session factory and a function-scoped session for service-level tests
- A DeterministicClock pinned to 2025-01-01T12:00Z
- Seeded vendors, customers, products and coupons (committed before the test)
- Callers for every role, a recording notifier and a fake payment gateway
- Captured structured JSON logs

Service tests work on the ``session`` fixture and never commit.  Engine and
concurrency tests go through ``rental_engine`` / ``session_factory`` and must
not request ``session`` as well: with BEGIN IMMEDIATE an open session holds
the write lock until the test ends.
"""

import json
import logging
from datetime import datetime, timezone
from decimal import Decimal
from io import StringIO
from types import SimpleNamespace
from uuid import uuid4

import pytest
from sqlalchemy.orm import sessionmaker

from rental_kernel.config import EngineConfig
from rental_kernel.db.engine import create_engine_from_url, create_tables
from rental_kernel.domain.authorization import Caller, Role
from rental_kernel.domain.clock import DeterministicClock
from rental_kernel.domain.dtos import OrderLineRequest, PaymentIntent
from rental_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from rental_kernel.models.coupon import Coupon
from rental_kernel.models.product import Product
from rental_services.engine import RentalEngine

TEST_ACTOR_ID = uuid4()
GATEWAY_SECRET = "test-gateway-secret"

NOW = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)
RENTAL_START = datetime(2025, 1, 5, 0, 0, tzinfo=timezone.utc)
RENTAL_END = datetime(2025, 1, 10, 0, 0, tzinfo=timezone.utc)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG, stream=StringIO())
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
    Capture rental_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, ...):
            ...
            assert any(r["message"] == "order_created" for r in captured_logs())
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("rental_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite:///{tmp_path / 'rental.db'}"


@pytest.fixture
def db_engine(database_url):
    engine = create_engine_from_url(database_url, pool_size=10, max_overflow=10)
    create_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, expire_on_commit=False)


@pytest.fixture
def session(session_factory, seed):
    """Function-scoped session; everything is rolled back afterwards."""
    s = session_factory()
    yield s
    s.rollback()
    s.close()


@pytest.fixture
def clock():
    return DeterministicClock(NOW)


# =============================================================================
# Seed data
# =============================================================================


def _product(vendor_id, name, base_price, stock_qty, deposit="0", is_active=True):
    return Product(
        vendor_id=vendor_id,
        name=name,
        base_price=Decimal(base_price),
        security_deposit=Decimal(deposit),
        stock_qty=stock_qty,
        is_active=is_active,
        created_by_id=TEST_ACTOR_ID,
    )


def _coupon(code, discount_type, value, **kwargs):
    return Coupon(
        code=code,
        discount_type=discount_type,
        discount_value=Decimal(value),
        valid_from=kwargs.pop("valid_from", datetime(2024, 1, 1, tzinfo=timezone.utc)),
        valid_until=kwargs.pop("valid_until", datetime(2026, 1, 1, tzinfo=timezone.utc)),
        created_by_id=TEST_ACTOR_ID,
        **kwargs,
    )


@pytest.fixture
def seed(session_factory):
    """
    Committed reference data.

    - camera: vendor A, 500/day, deposit 1000, stock 2
    - tripod: vendor A, 100/day, no deposit, stock 5
    - drone: vendor B, 800/day, stock 1
    - retired: vendor A, inactive
    - SAVE10: 10% off, min 1000, max 500
    - FLAT5000: fixed 5000 off (no cap)
    - ONCE: 5% off, usage limit 1
    - EXPIRED: validity ended in 2024
    """
    vendor_id = uuid4()
    other_vendor_id = uuid4()

    s = session_factory()
    camera = _product(vendor_id, "Camera", "500", 2, deposit="1000")
    tripod = _product(vendor_id, "Tripod", "100", 5)
    drone = _product(other_vendor_id, "Drone", "800", 1)
    retired = _product(vendor_id, "Retired lens", "50", 3, is_active=False)
    s.add_all([camera, tripod, drone, retired])
    s.add_all(
        [
            _coupon(
                "SAVE10",
                "percent",
                "10",
                min_order_amount=Decimal("1000"),
                max_discount=Decimal("500"),
            ),
            _coupon("FLAT5000", "fixed", "5000"),
            _coupon("ONCE", "percent", "5", usage_limit=1),
            _coupon(
                "EXPIRED",
                "percent",
                "10",
                valid_until=datetime(2024, 6, 1, tzinfo=timezone.utc),
            ),
        ]
    )
    s.commit()
    ids = SimpleNamespace(
        vendor_id=vendor_id,
        other_vendor_id=other_vendor_id,
        customer_id=uuid4(),
        other_customer_id=uuid4(),
        vendor_user_id=uuid4(),
        camera=camera.id,
        tripod=tripod.id,
        drone=drone.id,
        retired=retired.id,
    )
    s.close()
    return ids


# =============================================================================
# Callers
# =============================================================================


@pytest.fixture
def customer(seed):
    return Caller(seed.customer_id, Role.CUSTOMER)


@pytest.fixture
def other_customer(seed):
    return Caller(seed.other_customer_id, Role.CUSTOMER)


@pytest.fixture
def vendor(seed):
    return Caller(seed.vendor_user_id, Role.VENDOR, vendor_id=seed.vendor_id)


@pytest.fixture
def other_vendor(seed):
    return Caller(uuid4(), Role.VENDOR, vendor_id=seed.other_vendor_id)


@pytest.fixture
def admin():
    return Caller(uuid4(), Role.ADMIN)


@pytest.fixture
def line():
    """Build an OrderLineRequest over the default rental window."""

    def _line(product_id, quantity=1, start=RENTAL_START, end=RENTAL_END):
        return OrderLineRequest(
            product_id=product_id,
            quantity=quantity,
            start_date=start,
            end_date=end,
        )

    return _line


# =============================================================================
# Collaborators
# =============================================================================


class RecordingNotifier:
    """Notifier that records calls; ``fail = True`` makes every send raise."""

    def __init__(self):
        self.reminders = []
        self.late_alerts = []
        self.pickups = []
        self.fail = False

    def _check(self):
        if self.fail:
            raise ConnectionError("smtp unavailable")

    def send_return_reminder(self, order, due_at):
        self._check()
        self.reminders.append((order.id, due_at))

    def send_late_return_alert(self, order, delay_days, late_fee):
        self._check()
        self.late_alerts.append((order.id, delay_days, late_fee))

    def send_pickup_confirmation(self, order, pickup):
        self._check()
        self.pickups.append((order.id, pickup.id))


class FakeGateway:
    def __init__(self):
        self.intents = []

    def create_payment_intent(self, invoice, amount):
        intent = PaymentIntent(
            gateway_order_id=f"gw_{len(self.intents) + 1}",
            amount_minor=amount.minor_units,
            invoice_id=invoice.id,
            key_id="key_test",
        )
        self.intents.append(intent)
        return intent


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def engine_config(database_url):
    return EngineConfig(
        database_url=database_url,
        payment_gateway_secret=GATEWAY_SECRET,
        max_retry_attempts=20,
        retry_backoff_seconds=0.001,
    )


@pytest.fixture
def rental_engine(session_factory, seed, engine_config, clock, notifier, gateway):
    return RentalEngine(
        session_factory,
        config=engine_config,
        clock=clock,
        notifier=notifier,
        gateway=gateway,
    )

