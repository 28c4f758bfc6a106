"""
Pytest fixtures for the marketplace lifecycle test suite.

Provides:
- Database sessions isolated per test by transaction rollback
- Lifecycle services wired to a deterministic clock, a recording notifier
  and a scriptable payment processor
- Entity factories (jobs, bids, orders)

Environment Variables:
- DATABASE_URL: database to run against.  Defaults to in-memory SQLite.
  Tests marked ``postgres`` are skipped unless this points at PostgreSQL.
"""

import json
import logging
import os
import threading
from decimal import Decimal
from io import StringIO
from typing import Generator
from uuid import UUID

import pytest
from sqlalchemy import text
from sqlalchemy.orm import Session

from market_config.schema import DisputesConfig, JobsConfig, PaymentsConfig
from market_kernel.db.base import Base
from market_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    is_postgres,
    reset_engine,
)
from market_kernel.db.integrity import (
    register_integrity_listeners,
    unregister_integrity_listeners,
)
from market_kernel.domain.clock import DeterministicClock
from market_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from market_modules.disputes.service import DisputeService
from market_modules.jobs.models import JobState, OrderStatus
from market_modules.jobs.orm import JobModel, OrderModel
from market_modules.jobs.service import JobLifecycleService
from market_modules.payments.aggregator import PaymentAggregator
from market_modules.payments.service import PaymentRequestService
from market_services.payment_processor import RefundResult

DEFAULT_DATABASE_URL = "sqlite://"

CUSTOMER_ID = UUID("11111111-1111-1111-1111-111111111111")
CONTRACTOR_ID = UUID("22222222-2222-2222-2222-222222222222")
OTHER_CONTRACTOR_ID = UUID("33333333-3333-3333-3333-333333333333")


def get_database_url() -> str:
    return os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "postgres: mark test as requiring PostgreSQL"
    )


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
    Capture market_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, job_service):
            job_service.list_job(job)
            logs = captured_logs()
            assert any(r["message"] == "state_transition" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("market_kernel")
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
# Session-scoped DB infrastructure (create engine + tables ONCE per suite)
# =============================================================================


@pytest.fixture(scope="session")
def db_engine():
    eng = init_engine_from_url(get_database_url(), echo=False, pool_size=30, max_overflow=20)
    yield eng
    reset_engine()


@pytest.fixture(scope="session")
def db_tables(db_engine):
    """Create all tables once per session, drop once at end.

    Integrity listeners are registered once and remain active.
    """
    drop_tables()
    create_tables()
    register_integrity_listeners()
    yield
    unregister_integrity_listeners()
    drop_tables()


def _truncate_all_tables(engine):
    """Delete every row; used after tests that perform real commits."""
    with engine.connect() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())
        conn.commit()


@pytest.fixture(scope="function")
def session(db_tables, db_engine) -> Generator[Session, None, None]:
    """Provide a database session for testing.

    The session joins an outer transaction on a dedicated connection.
    ``session.commit()`` inside the test releases a SAVEPOINT and
    ``session.rollback()`` returns to one; the outer transaction is
    rolled back at teardown, undoing every change made by the test.
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


@pytest.fixture(scope="function")
def pg_session_factory(db_engine, db_tables):
    """Session factory for tests that commit for real from several threads.

    Skipped unless the suite runs against PostgreSQL.  All tracked sessions
    are closed and every table emptied at teardown.
    """
    if not is_postgres():
        pytest.skip("requires PostgreSQL (set DATABASE_URL)")

    factory = get_session_factory()
    created_sessions = []
    lock = threading.Lock()

    def tracked_factory():
        with lock:
            s = factory()
            created_sessions.append(s)
            return s

    yield tracked_factory

    for s in created_sessions:
        if s.is_active:
            s.rollback()
        s.close()
    _truncate_all_tables(db_engine)


# =============================================================================
# Collaborators
# =============================================================================


class RecordingNotifier:
    """Notifier that keeps every notification handed to it."""

    def __init__(self):
        self.sent = []

    def notify(self, notification):
        self.sent.append(notification)

    def events(self) -> list[tuple[str, str]]:
        return [(n.event, n.role) for n in self.sent]


class FakePaymentProcessor:
    """Payment processor whose refund outcome and item status tests script."""

    def __init__(self):
        self.refund_outcomes: list = []
        self.refund_calls: list[UUID] = []
        self.status: str | None = None
        self.status_calls = 0

    def refund(self, job):
        self.refund_calls.append(job.id)
        if self.refund_outcomes:
            outcome = self.refund_outcomes.pop(0)
        else:
            outcome = RefundResult(success=True, reference="re_test")
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def item_status(self, payment_request):
        self.status_calls += 1
        return self.status


@pytest.fixture
def deterministic_clock():
    """Provide a deterministic clock for testing."""
    return DeterministicClock()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def processor():
    return FakePaymentProcessor()


@pytest.fixture
def outcome_records():
    """List collecting the state transition records of every fire()."""
    return []


# Service fixtures


@pytest.fixture
def job_service(session, deterministic_clock, processor, notifier, outcome_records):
    return JobLifecycleService(
        session,
        clock=deterministic_clock,
        config=JobsConfig(platform_fee_percent=Decimal("15")),
        processor=processor,
        notifier=notifier,
        outcome_sink=outcome_records.append,
    )


@pytest.fixture
def payment_service(session, deterministic_clock, processor, notifier, outcome_records):
    return PaymentRequestService(
        session,
        clock=deterministic_clock,
        config=PaymentsConfig(),
        processor=processor,
        notifier=notifier,
        outcome_sink=outcome_records.append,
    )


@pytest.fixture
def aggregator(payment_service):
    return PaymentAggregator(payment_service)


@pytest.fixture
def dispute_service(session, deterministic_clock, processor, notifier):
    return DisputeService(
        session,
        clock=deterministic_clock,
        config=DisputesConfig(resolution_window_hours=72),
        processor=processor,
        notifier=notifier,
    )


# =============================================================================
# Entity factories
# =============================================================================


@pytest.fixture
def make_job(session, job_service):
    """Factory: a job for CUSTOMER_ID moved directly into ``state``.

    ``contractor_payment_amount`` and ``contractor_id`` are written
    straight to the row; use the service events to exercise the hooks.
    """

    def _make(
        state: JobState = JobState.DRAFTED,
        contractor_id: UUID | None = None,
        contractor_payment_amount: Decimal | None = None,
        title: str = "Mow the lawn",
    ) -> JobModel:
        job = job_service.create_job(customer_id=CUSTOMER_ID, title=title)
        job.state = state.value
        job.contractor_id = contractor_id
        job.contractor_payment_amount = contractor_payment_amount
        session.flush()
        session.commit()
        return job

    return _make


@pytest.fixture
def make_order(session):
    def _make(
        status: OrderStatus = OrderStatus.COMPLETED,
        contractor_id: UUID | None = CONTRACTOR_ID,
        total_cost: Decimal = Decimal("80.00"),
        contractor_payment_amount: Decimal = Decimal("68.00"),
    ) -> OrderModel:
        order = OrderModel(
            customer_id=CUSTOMER_ID,
            contractor_id=contractor_id,
            status=status.value,
            total_cost=total_cost,
            contractor_payment_amount=contractor_payment_amount,
        )
        session.add(order)
        session.flush()
        session.commit()
        return order

    return _make


@pytest.fixture
def listed_job(job_service):
    """A job listed for bidding (state ``created``)."""
    job = job_service.create_job(customer_id=CUSTOMER_ID, title="Paint the fence")
    job_service.list_job(job).raise_for_error()
    return job


@pytest.fixture
def accepted_job(job_service, listed_job):
    """A listed job with CONTRACTOR_ID's 100.00 bid accepted."""
    bid = job_service.place_bid(listed_job.id, CONTRACTOR_ID, Decimal("100.00"))
    job_service.accept(listed_job, bid).raise_for_error()
    return listed_job


def count_rows(session, table: str) -> int:
    return session.execute(text(f"SELECT COUNT(*) FROM {table}")).scalar_one()


@pytest.fixture
def customer_id() -> UUID:
    return CUSTOMER_ID


@pytest.fixture
def contractor_id() -> UUID:
    return CONTRACTOR_ID


@pytest.fixture
def other_contractor_id() -> UUID:
    return OTHER_CONTRACTOR_ID


@pytest.fixture
def row_count(session):
    """Factory: number of rows currently in ``table``."""

    def _count(table: str) -> int:
        return count_rows(session, table)

    return _count
