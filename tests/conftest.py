"""Pytest configuration: in-memory ledger database and shared fixtures."""

import os

# Set test database URL BEFORE any imports from snt_ledger
# so the module-level engine and SessionLocal never touch a real database
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "test_bot_token")

from datetime import date, datetime, timezone  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from snt_ledger.models import Base  # noqa: E402
from snt_ledger.services import build_engine  # noqa: E402
from snt_ledger.services.clock import ManualClock  # noqa: E402
from snt_ledger.services.context import MutationContext  # noqa: E402
from snt_ledger.services.ledger_store import LedgerStore  # noqa: E402
from snt_ledger.services.locks import KeyedLocks  # noqa: E402
from snt_ledger.services.payment_service import PaymentService  # noqa: E402


@pytest.fixture
def engine():
    """Fresh in-memory database with all tables."""
    engine = build_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
    """Database session for a single test."""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def clock():
    return ManualClock(datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def store(db_session, clock):
    return LedgerStore(db_session, clock=clock, locks=KeyedLocks())


@pytest.fixture
def ctx():
    """Staff mutation context without a reason."""
    return MutationContext(actor_id="accountant-1")


@pytest.fixture
def ctx_reason():
    return MutationContext(actor_id="accountant-1", reason="Bank statement correction")


@pytest.fixture
def payments(store):
    return PaymentService(store)


@pytest.fixture
def plot(payments, ctx):
    """Plot 12 on Лесная street owned by Иванов."""
    return payments.create_plot(
        "12",
        ctx,
        street="Лесная",
        owner_name="Иванов Иван Иванович",
        phone="+7 916 123-45-67",
        telegram_chat_id="1001",
    )


@pytest.fixture
def jan_feb_charges(payments, plot, ctx):
    """Membership charges for plot 12: 3000 in 2025-01 and 4000 in 2025-02."""
    jan, _ = payments.create_charge(plot.id, "2025-01", "membership", "3000", ctx)
    feb, _ = payments.create_charge(plot.id, "2025-02", "membership", "4000", ctx)
    return jan, feb


@pytest.fixture
def pay(payments, ctx):
    """Record a payment already assigned to a plot."""

    def _pay(plot_id, amount, paid_at=date(2025, 2, 10), **kwargs):
        payment, _ = payments.record_payment(amount, paid_at, ctx, plot_id=plot_id, **kwargs)
        return payment

    return _pay


@pytest.fixture
def client(session_factory, clock):
    """API client bound to the test database and a manual-clock job runner."""
    from fastapi.testclient import TestClient

    from snt_ledger.api.app import app
    from snt_ledger.api.deps import get_runner
    from snt_ledger.jobs.runner import JobRunner
    from snt_ledger.services import get_db

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_runner] = lambda: JobRunner(session_factory, clock=clock)
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def staff():
    """Headers of an accountant allowed to mutate the ledger."""
    return {"X-Staff-Role": "accountant", "X-Actor-Id": "acc-1"}
