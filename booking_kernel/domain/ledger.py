"""
booking_kernel.domain.ledger -- Pure types for the idempotency ledger.

ZERO I/O.  Frozen dataclasses with enum status fields.

Invariants enforced:
    - At most one ``completed`` entry per ``idempotency_key`` (backed by the
      UNIQUE constraint on the ORM model).
    - Status edges: pending -> processing -> {completed, failed};
      failed -> processing on retry; no processing -> pending.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from uuid import UUID


class LedgerStatus(str, Enum):
    """Lifecycle status of one workflow attempt."""

    PENDING = "pending"  # Created, no worker has claimed it
    PROCESSING = "processing"  # Claimed by exactly one worker
    COMPLETED = "completed"  # Both recipients delivered
    FAILED = "failed"  # At least one step failed; may be revisited


ALLOWED_TRANSITIONS: dict[LedgerStatus, frozenset[LedgerStatus]] = {
    LedgerStatus.PENDING: frozenset({LedgerStatus.PROCESSING, LedgerStatus.COMPLETED}),
    LedgerStatus.PROCESSING: frozenset({LedgerStatus.COMPLETED, LedgerStatus.FAILED}),
    LedgerStatus.FAILED: frozenset({LedgerStatus.PROCESSING, LedgerStatus.COMPLETED}),
    LedgerStatus.COMPLETED: frozenset(),
}


def can_transition(current: LedgerStatus, target: LedgerStatus) -> bool:
    """Return True if ``current -> target`` is a legal ledger edge.

    ``pending|failed -> completed`` is only taken by the manual resend path.
    """
    return target in ALLOWED_TRANSITIONS[current]


def build_idempotency_key(subject_id: str, triggered_at: datetime) -> str:
    """Deterministic key ``{subject_id}_{ISO-8601 UTC, millisecond precision}``.

    >>> build_idempotency_key("INV-1", datetime(2024, 3, 1, 10, tzinfo=timezone.utc))
    'INV-1_2024-03-01T10:00:00.000Z'
    """
    return f"{subject_id}_{format_iso_millis(triggered_at)}"


def format_iso_millis(value: datetime) -> str:
    """Format ``value`` as ``YYYY-MM-DDTHH:MM:SS.mmmZ`` in UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


@dataclass(frozen=True)
class LedgerEntry:
    """Immutable snapshot of one ledger row."""

    id: UUID
    subject_id: str
    actor_id: str
    triggered_at: datetime
    idempotency_key: str
    status: LedgerStatus
    recipient_a_sent_at: datetime | None = None
    recipient_b_sent_at: datetime | None = None
    error_detail: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    claimed_at: datetime | None = None
    attempt_count: int = 0
    artifact_path: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (LedgerStatus.COMPLETED, LedgerStatus.FAILED)
