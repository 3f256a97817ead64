"""
Pytest configuration and fixtures for the premium engine.

Every test gets its own SQLite file under tmp_path (threads in the
concurrency tests need to share it) and a clock that only moves when a
test says so.
"""
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy.orm import sessionmaker

import premium_engine.models  # noqa: F401  registers the tables on Base
from premium_engine.core.db import Base, create_db_engine
from premium_engine.models import Plan, User
from premium_engine.scripts.seed_plans import seed_plans
from premium_engine.services.admin import AdminOverride
from premium_engine.services.entitlements import EntitlementResolver
from premium_engine.services.ledger import SubscriptionLedger
from premium_engine.services.payments import PaymentRecorder
from premium_engine.services.sweeper import ExpirationSweeper
from premium_engine.services.usage import FeatureUsageTracker

T0 = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock(T0)


@pytest.fixture
def engine(tmp_path):
    engine = create_db_engine(f"sqlite:///{tmp_path / 'premium.db'}")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


@pytest.fixture
def plans(session_factory):
    """Basic / Gold / Platinum keyed by name, plus an inactive "Legacy" plan."""
    seeded = {p.name: p for p in seed_plans(session_factory)}
    with session_factory() as db:
        retired = Plan(
            code="LEGACY_1M",
            name="Legacy",
            price=Decimal("29.90"),
            currency="TRY",
            duration_days=30,
            features={"hide_ads": True},
            is_active=False,
            display_order=99,
        )
        db.add(retired)
        db.commit()
    seeded["Legacy"] = retired
    return seeded


@pytest.fixture
def make_user(session_factory):
    counter = {"n": 0}

    def _make(role: str = "user") -> User:
        counter["n"] += 1
        with session_factory() as db:
            user = User(email=f"user{counter['n']}@example.com", role=role)
            db.add(user)
            db.commit()
            return user

    return _make


@pytest.fixture
def user(make_user):
    return make_user()


@pytest.fixture
def payments(session_factory, clock):
    return PaymentRecorder(session_factory, clock)


@pytest.fixture
def ledger(session_factory, payments, clock):
    return SubscriptionLedger(session_factory, payments, clock)


@pytest.fixture
def usage(session_factory, clock):
    return FeatureUsageTracker(session_factory, clock)


@pytest.fixture
def resolver(session_factory, usage, clock):
    return EntitlementResolver(session_factory, usage, clock)


@pytest.fixture
def sweeper(session_factory, clock):
    return ExpirationSweeper(session_factory, clock)


@pytest.fixture
def admin(session_factory, ledger, clock):
    return AdminOverride(session_factory, ledger, clock)


@pytest.fixture
def load(session_factory):
    """Fresh copy of a row, read in its own session."""

    def _load(model, pk):
        with session_factory() as db:
            return db.get(model, pk)

    return _load
