"""
Pytest fixtures for the receivables test suite.

Provides:
- An in-memory SQLite database per test (StaticPool, one shared connection)
- A session factory, deterministic clock and default configuration
- Seed helpers for invoices and payments
- Structured log capture

The production engine (``init_engine_from_url``) targets PostgreSQL; tests
build their own engine so the suite runs without a database server.
"""

import json
import logging
from datetime import UTC, date, datetime
from decimal import Decimal
from io import StringIO
from types import SimpleNamespace
from uuid import UUID, uuid4

import pytest
from sqlalchemy import create_engine, func, inspect, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import receivables_kernel.models  # noqa: F401  registers tables on Base.metadata
from receivables_config.schema import PaymentValidationRules, TenantCalendars, WorkflowSettings
from receivables_kernel.db.base import Base
from receivables_kernel.db.engine import transaction_scope
from receivables_kernel.db.immutability import register_immutability_listeners
from receivables_kernel.domain.clock import DeterministicClock
from receivables_kernel.domain.receivables import Actor, InvoiceStatus, PaymentMethod, PaymentState
from receivables_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from receivables_kernel.models.invoice import InvoiceModel
from receivables_kernel.models.payment import PaymentModel
from receivables_services.invoice_service import InvoiceService
from receivables_services.payment_recording import PaymentRecordingService
from receivables_services.payment_workflow import PaymentWorkflowService

# Monday 2025-03-10, 10:00 in Dubai: a working day, outside quiet periods.
TEST_NOW = datetime(2025, 3, 10, 6, 0, 0, tzinfo=UTC)
TEST_TODAY = date(2025, 3, 10)

SEED_ACTOR_ID = uuid4()


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
    Capture receivables logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, workflow):
            workflow.process_single(...)
            logs = captured_logs()
            assert any(r["message"] == "payment_workflow_applied" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("receivables")
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


@pytest.fixture(autouse=True, scope="session")
def _immutability_listeners():
    register_immutability_listeners()
    yield


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def session(session_factory):
    """A plain session for direct model tests.  Rolled back at teardown."""
    s = session_factory()
    yield s
    s.rollback()
    s.close()


# =============================================================================
# Time, configuration, identities
# =============================================================================


@pytest.fixture
def clock():
    return DeterministicClock(TEST_NOW)


@pytest.fixture
def settings():
    return WorkflowSettings()


@pytest.fixture
def calendars():
    return TenantCalendars()


@pytest.fixture
def payment_rules():
    return PaymentValidationRules()


@pytest.fixture
def tenant_id() -> UUID:
    return uuid4()


@pytest.fixture
def other_tenant_id() -> UUID:
    return uuid4()


@pytest.fixture
def actor(tenant_id) -> Actor:
    return Actor(actor_id=uuid4(), tenant_id=tenant_id)


@pytest.fixture
def admin_actor(tenant_id) -> Actor:
    return Actor(actor_id=uuid4(), tenant_id=tenant_id, roles=frozenset({"admin"}))


@pytest.fixture
def foreign_actor(other_tenant_id) -> Actor:
    return Actor(actor_id=uuid4(), tenant_id=other_tenant_id)


# =============================================================================
# Services
# =============================================================================


@pytest.fixture
def workflow(session_factory, clock, settings, calendars):
    return PaymentWorkflowService(
        session_factory, clock=clock, settings=settings, calendars=calendars
    )


@pytest.fixture
def invoice_service(workflow):
    return InvoiceService(workflow)


@pytest.fixture
def recording(workflow, payment_rules):
    return PaymentRecordingService(workflow, payment_rules)


# =============================================================================
# Seed helpers
# =============================================================================


@pytest.fixture
def seed_invoice(session_factory, tenant_id):
    """
    Insert an invoice directly and return its id.

    Usage::

        invoice_id = seed_invoice(total="5000.00", status=InvoiceStatus.SENT)
    """
    counter = {"n": 0}

    def _seed(
        total: str = "5000.00",
        status: InvoiceStatus = InvoiceStatus.SENT,
        due_date: date = date(2025, 3, 31),
        tenant: UUID | None = None,
        currency: str = "AED",
        number: str | None = None,
        trn_number: str | None = None,
        is_disputed: bool = False,
    ) -> UUID:
        counter["n"] += 1
        with transaction_scope(session_factory) as s:
            invoice = InvoiceModel(
                tenant_id=tenant or tenant_id,
                invoice_number=number or f"INV-{counter['n']:04d}",
                customer_name="Al Noor Trading LLC",
                total_amount=Decimal(total),
                currency=currency,
                due_date=due_date,
                status=InvoiceStatus(status).value,
                is_disputed=is_disputed,
                trn_number=trn_number,
                version=1,
                created_by_id=SEED_ACTOR_ID,
            )
            s.add(invoice)
            s.flush()
            return invoice.id

    return _seed


@pytest.fixture
def seed_payment(session_factory):
    """Insert a payment directly (no workflow evaluation) and return its id."""

    def _seed(
        invoice_id: UUID,
        amount: str,
        state: PaymentState = PaymentState.ACTIVE,
        method: PaymentMethod = PaymentMethod.BANK_TRANSFER,
        reference: str | None = "TRX-001",
        payment_date: date = date(2025, 3, 9),
    ) -> UUID:
        with transaction_scope(session_factory) as s:
            payment = PaymentModel(
                invoice_id=invoice_id,
                amount=Decimal(amount),
                payment_date=payment_date,
                method=PaymentMethod(method).value,
                reference=reference,
                state=PaymentState(state).value,
                created_by_id=SEED_ACTOR_ID,
            )
            s.add(payment)
            s.flush()
            return payment.id

    return _seed


def _row_values(obj) -> SimpleNamespace:
    return SimpleNamespace(**{
        attr.key: getattr(obj, attr.key) for attr in inspect(type(obj)).column_attrs
    })


@pytest.fixture
def fetch_row(session_factory):
    """Read one row by primary key into a detached SimpleNamespace (or None)."""

    def _fetch(model, row_id: UUID):
        s = session_factory()
        try:
            obj = s.get(model, row_id)
            return _row_values(obj) if obj is not None else None
        finally:
            s.rollback()
            s.close()

    return _fetch


@pytest.fixture
def count_rows(session_factory):
    def _count(model, **filters) -> int:
        s = session_factory()
        try:
            stmt = select(func.count()).select_from(model)
            for name, value in filters.items():
                stmt = stmt.where(getattr(model, name) == value)
            return s.execute(stmt).scalar_one()
        finally:
            s.rollback()
            s.close()

    return _count
