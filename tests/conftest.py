# tests/conftest.py
"""
Pytest configuration and shared fixtures.

The environment is pinned before any ``artisan_market`` import so the engine
binds to a private in-memory SQLite database and no background scheduler
starts when the Flask app module is imported.
"""

import os

os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["APP_ENV"] = "test"
os.environ["SCHEDULERS_ENABLED"] = "false"
os.environ["FLASK_TESTING"] = "true"
os.environ["STRUCTURED_LOGS_ENABLED"] = "false"

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from artisan_market.database import Base, SessionLocal, engine
from artisan_market.identity import Identity
from artisan_market.models import FulfillmentType, Product, PromotionalPricing
from artisan_market.observability.metrics import reset_metrics
from artisan_market.services.admin_audit_log import AdminAuditLog, AuditSink
from artisan_market.services.promotional_feature_service import PromotionalFeatureService
from artisan_market.services.wallet_ledger import WalletLedger

SELLER_ID = 7
OTHER_SELLER_ID = 8
ADMIN_ID = 1


class FakeClock:
    """Deterministic clock; call it like ``datetime.now``."""

    def __init__(self, start):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **delta):
        self.now = self.now + timedelta(**delta)
        return self.now


class RecordingSink(AuditSink):
    def __init__(self):
        self.entries = []

    def write(self, entry):
        self.entries.append(entry)

    def actions(self):
        return [entry.action for entry in self.entries]


class FailingSink(AuditSink):
    def __init__(self):
        self.attempts = 0

    def write(self, entry):
        self.attempts += 1
        raise RuntimeError("audit store unavailable")


@pytest.fixture(autouse=True)
def fresh_schema():
    """Recreate every table and clear metrics so tests never share state."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    reset_metrics()
    yield
    reset_metrics()


@pytest.fixture
def db_session():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def seller():
    return Identity(user_id=SELLER_ID, role="seller")


@pytest.fixture
def other_seller():
    return Identity(user_id=OTHER_SELLER_ID, role="seller")


@pytest.fixture
def admin():
    return Identity(user_id=ADMIN_ID, role="admin")


@pytest.fixture
def audit_sink():
    return RecordingSink()


@pytest.fixture
def product(db_session):
    """A ready-to-ship product owned by ``SELLER_ID``."""
    item = Product(
        sellerID=SELLER_ID,
        name="Hand-thrown clay mug",
        fulfillment_type=FulfillmentType.READY_TO_SHIP,
        stock=12,
    )
    db_session.add(item)
    db_session.commit()
    return item


@pytest.fixture
def pricing(db_session):
    """
    Two catalog rows:
    * product_featured: 5 + 5/day after the first day (4 days -> 20)
    * product_sponsored: 25 covering 4 days + 5/day after (7 days -> 40)
    """
    rows = [
        PromotionalPricing(
            feature_type="product_featured",
            name="Featured Product",
            base_price=Decimal("5"),
            price_per_day=Decimal("5"),
            included_days=1,
            benefits=["Featured placement on homepage"],
        ),
        PromotionalPricing(
            feature_type="product_sponsored",
            name="Sponsored Product",
            base_price=Decimal("25"),
            price_per_day=Decimal("5"),
            included_days=4,
            benefits=["Sponsored placement in search results"],
        ),
    ]
    db_session.add_all(rows)
    db_session.commit()
    return rows


@pytest.fixture
def ledger(db_session):
    return WalletLedger(db_session)


@pytest.fixture
def feature_service(db_session, audit_sink, clock):
    return PromotionalFeatureService(
        db_session,
        audit_log=AdminAuditLog(db_session, sink=audit_sink),
        clock=clock,
    )
