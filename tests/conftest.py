"""
Pytest fixtures for the compliance engine test suite.

Provides:
- A per-test SQLite database file (or DATABASE_URL when set)
- Deterministic clock, default configuration and in-memory collaborators
- Orchestrator and reconciliation service fixtures wired to one session
- Log capture as parsed JSON dicts

Environment Variables:
- DATABASE_URL: optional PostgreSQL URL.  Tables are dropped after each test.
"""

import json
import logging
import os
from datetime import date
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from compliance_config.schema import ComplianceConfig
from compliance_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    is_postgres,
    reset_engine,
)
from compliance_kernel.domain.clock import DeterministicClock
from compliance_kernel.domain.dtos import (
    SourceLedgerRecord,
    SourceRecordType,
    TaxFigures,
)
from compliance_kernel.domain.period_key import PeriodKey
from compliance_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from compliance_kernel.services.event_publisher import RecordingEventPublisher
from compliance_kernel.services.source_ledger import InMemorySourceLedgerReader
from compliance_kernel.services.step_ledger_service import StepLedgerService
from compliance_services.filing_workflow import FilingWorkflowOrchestrator
from compliance_services.reconciliation_service import ReconciliationService

# Test actor ID for all test operations
TEST_ACTOR_ID = uuid4()

ADMIN_ROLE = "admin"


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
    Capture compliance_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, orchestrator):
            orchestrator.create_filing(...)
            logs = captured_logs()
            assert any(r["message"] == "filing_created" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("compliance_kernel")
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
def engine(tmp_path):
    """Fresh schema per test."""
    url = os.environ.get("DATABASE_URL") or f"sqlite:///{tmp_path / 'compliance.db'}"
    eng = init_engine_from_url(url, pool_timeout=10)
    create_tables()
    yield eng
    if is_postgres():
        drop_tables()
    reset_engine()


@pytest.fixture
def session_factory(engine):
    return get_session_factory()


@pytest.fixture
def session(session_factory):
    s = session_factory()
    yield s
    s.rollback()
    s.close()


# =============================================================================
# Domain fixtures
# =============================================================================


@pytest.fixture
def test_actor_id():
    return TEST_ACTOR_ID


@pytest.fixture
def deterministic_clock():
    """Clock fixed at 2024-05-01 12:00 UTC."""
    return DeterministicClock()


@pytest.fixture
def config():
    return ComplianceConfig.with_defaults()


@pytest.fixture
def period_key():
    return PeriodKey.for_period("C001", "2024-05")


@pytest.fixture
def tax_figures():
    return TaxFigures(
        tax_paid=Decimal("18000.00"),
        central=Decimal("9000.00"),
        state=Decimal("9000.00"),
    )


@pytest.fixture
def publisher(deterministic_clock):
    return RecordingEventPublisher(clock=deterministic_clock)


@pytest.fixture
def source_ledger():
    return InMemorySourceLedgerReader()


def purchase(number: str, central: str, state: str = "0", integrated: str = "0") -> SourceLedgerRecord:
    """Build a purchase source record."""
    return SourceLedgerRecord(
        document_number=number,
        record_type=SourceRecordType.PURCHASE,
        central_tax=Decimal(central),
        state_tax=Decimal(state),
        integrated_tax=Decimal(integrated),
    )


def sale(number: str, central: str) -> SourceLedgerRecord:
    return SourceLedgerRecord(
        document_number=number,
        record_type=SourceRecordType.SALE,
        central_tax=Decimal(central),
    )


# =============================================================================
# Service fixtures
# =============================================================================


@pytest.fixture
def orchestrator(session, config, publisher, deterministic_clock):
    return FilingWorkflowOrchestrator(
        session=session,
        config=config,
        publisher=publisher,
        clock=deterministic_clock,
    )


@pytest.fixture
def step_ledger(session, deterministic_clock):
    return StepLedgerService(session, deterministic_clock)


@pytest.fixture
def reconciliation_service(session, config, source_ledger, publisher, deterministic_clock):
    return ReconciliationService(
        session=session,
        config=config,
        reader=source_ledger,
        publisher=publisher,
        clock=deterministic_clock,
    )


@pytest.fixture
def draft_filing(orchestrator, period_key, test_actor_id):
    """A filing in draft for C001 / 2024-05 (due A 2024-06-11, B 2024-06-20)."""
    return orchestrator.create_filing(period_key, test_actor_id)


@pytest.fixture
def filed_filing(orchestrator, draft_filing, tax_figures, test_actor_id, deterministic_clock):
    """Both sub-returns filed on time."""
    deterministic_clock.set_date(date(2024, 6, 10))
    orchestrator.file_sub_return_a(draft_filing.id, "ARN-A-000001", date(2024, 6, 10), test_actor_id)
    deterministic_clock.set_date(date(2024, 6, 18))
    return orchestrator.file_sub_return_b(
        draft_filing.id, "ARN-B-000001", date(2024, 6, 18), tax_figures, test_actor_id
    )


@pytest.fixture
def locked_filing(orchestrator, filed_filing, test_actor_id):
    return orchestrator.lock(filed_filing.id, test_actor_id, reason="period closed")
