"""
Pytest fixtures for the booking-form workflow test suite.

Provides:
- Structured logging setup and a ``captured_logs`` fixture
- SQLite-backed ledger sessions (in-memory, or file-backed for threads)
- Deterministic clock
- Recording fakes for the domain data provider, user directory and
  notification transport
- A fully wired ``BookingFormWorkflow``
"""

import json
import logging
import threading
from datetime import datetime, timezone
from decimal import Decimal
from io import StringIO

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from booking_config.schema import DocumentSettings, WorkflowConfig
from booking_kernel.db.base import Base
from booking_kernel.db.engine import build_engine
from booking_kernel.domain.clock import DeterministicClock
from booking_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from booking_kernel.services.ledger_service import LedgerService
from booking_workflow.adapters.storage import InMemoryArtifactStore
from booking_workflow.domain.types import (
    DeliveryResult,
    DirectoryUser,
    OutboundMessage,
    SubjectData,
)
from booking_workflow.orchestrator import BookingFormWorkflow

import booking_kernel.models  # noqa: F401

APPROVAL_TIME = datetime(2024, 3, 1, 10, 0, 0, tzinfo=timezone.utc)
APPROVER_ID = "user-approver"
OPERATIONS_MAILBOX = "operations@example.com"


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
    Capture booking_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, workflow):
            workflow.sweep()
            logs = captured_logs()
            assert any(r["message"] == "sweep_finished" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("booking_kernel")
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
# Database fixtures
# =============================================================================


@pytest.fixture
def engine():
    """In-memory SQLite shared by every session of one test."""
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def file_session_factory(tmp_path):
    """File-backed SQLite for tests that use real threads."""
    eng = build_engine(f"sqlite:///{tmp_path / 'ledger.db'}")
    Base.metadata.create_all(eng)
    yield sessionmaker(bind=eng, expire_on_commit=False)
    eng.dispose()


@pytest.fixture
def unprovisioned_session_factory():
    """A reachable database with no ledger table."""
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    yield sessionmaker(bind=eng, expire_on_commit=False)
    eng.dispose()


# =============================================================================
# Clock fixtures
# =============================================================================


@pytest.fixture
def deterministic_clock():
    return DeterministicClock(APPROVAL_TIME)


@pytest.fixture
def ledger(session_factory, deterministic_clock):
    return LedgerService(session_factory, clock=deterministic_clock)


# =============================================================================
# Collaborator fakes
# =============================================================================


def make_subject(subject_id: str = "INV-1", **overrides) -> SubjectData:
    fields = dict(
        subject_id=subject_id,
        contractor_name="Jane Smith",
        company_name="Acme Ltd",
        service_description="Camera operator",
        service_days_count=2,
        service_days="4, 5",
        service_rate_per_day=Decimal("250"),
        service_month="March 2024",
        additional_cost=Decimal("0"),
        additional_cost_reason="",
        booked_by="Sam Booker",
        department_name="News",
        department_2="Digital",
        approver_user_id=APPROVER_ID,
    )
    fields.update(overrides)
    return SubjectData(**fields)


class InMemoryDomainData:
    """DomainDataProvider backed by a dict."""

    def __init__(self, *subjects: SubjectData):
        self.subjects = {s.subject_id: s for s in subjects}
        self.calls: list[str] = []

    def load_subject(self, subject_id: str) -> SubjectData | None:
        self.calls.append(subject_id)
        return self.subjects.get(subject_id)


class InMemoryDirectory:
    """UserDirectory backed by a dict."""

    def __init__(self, *users: DirectoryUser):
        self.users = {u.user_id: u for u in users}

    def resolve(self, user_id: str) -> DirectoryUser | None:
        return self.users.get(user_id)


class RecordingTransport:
    """NotificationTransport that records every message.

    ``fail_for`` addresses get a failed result; ``raise_for`` addresses
    make ``send`` raise.
    """

    def __init__(self):
        self.sent: list[OutboundMessage] = []
        self.fail_for: dict[str, str] = {}
        self.raise_for: set[str] = set()
        self._lock = threading.Lock()

    def send(self, message: OutboundMessage) -> DeliveryResult:
        if message.to in self.raise_for:
            raise ConnectionError(f"relay refused {message.to}")
        if message.to in self.fail_for:
            return DeliveryResult(success=False, error=self.fail_for[message.to])
        with self._lock:
            self.sent.append(message)
            return DeliveryResult(success=True, message_id=f"msg-{len(self.sent)}")

    def sent_to(self, address: str) -> list[OutboundMessage]:
        return [m for m in self.sent if m.to == address]


class FailingArtifactStore(InMemoryArtifactStore):
    """ArtifactStore whose writes always fail."""

    def put(self, path: str, data: bytes) -> None:
        from booking_kernel.exceptions import ArtifactStoreError

        raise ArtifactStoreError(path, "bucket unavailable")


@pytest.fixture
def approver() -> DirectoryUser:
    return DirectoryUser(APPROVER_ID, "Alex Approver", "alex@example.com")


@pytest.fixture
def provider() -> InMemoryDomainData:
    return InMemoryDomainData(make_subject())


@pytest.fixture
def directory(approver) -> InMemoryDirectory:
    return InMemoryDirectory(approver)


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def store() -> InMemoryArtifactStore:
    return InMemoryArtifactStore()


@pytest.fixture
def config() -> WorkflowConfig:
    return WorkflowConfig(
        operations_mailbox=OPERATIONS_MAILBOX,
        sender_address="noreply@example.com",
        app_url="https://app.example.com",
        retry_failed=True,
        document=DocumentSettings(
            billing_address=("Example Media UK", "200 Example Road"),
            notice_text="Invoices are settled on the last day of the following month.",
        ),
    )


@pytest.fixture
def make_workflow(config, ledger, provider, directory, store, transport, deterministic_clock):
    """Factory for a workflow with some collaborators swapped out."""

    def _make(**overrides) -> BookingFormWorkflow:
        parts = dict(
            config=config,
            ledger=ledger,
            provider=provider,
            directory=directory,
            store=store,
            transport=transport,
            clock=deterministic_clock,
        )
        parts.update(overrides)
        return BookingFormWorkflow(**parts)

    return _make


@pytest.fixture
def workflow(make_workflow):
    return make_workflow()
