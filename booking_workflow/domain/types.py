"""
booking_workflow.domain.types -- Pure frozen dataclasses for the workflow.

ZERO I/O.  Records are built once at the trigger/sweeper/resend boundary
and never passed around as untyped mappings.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

PLACEHOLDER = "—"


class Recipient(str, Enum):
    """The two fixed notification channels."""

    APPROVER = "recipient_a"
    OPERATIONS = "recipient_b"

    @property
    def label(self) -> str:
        return "Recipient A" if self is Recipient.APPROVER else "Recipient B"


# =============================================================================
# Inputs from external collaborators
# =============================================================================


@dataclass(frozen=True)
class SubjectData:
    """Raw fields for one approved contractor invoice, as the domain stores them."""

    subject_id: str
    contractor_name: str | None = None
    company_name: str | None = None
    service_description: str | None = None
    service_days_count: int | None = None
    service_days: str | None = None
    service_rate_per_day: Decimal | None = None
    service_month: str | None = None
    additional_cost: Decimal | None = None
    additional_cost_reason: str | None = None
    booked_by: str | None = None
    department_name: str | None = None
    department_2: str | None = None
    approver_user_id: str | None = None


@dataclass(frozen=True)
class DirectoryUser:
    """A user resolved from the user directory."""

    user_id: str
    display_name: str
    email: str = ""


# =============================================================================
# Workflow snapshot
# =============================================================================


@dataclass(frozen=True)
class WorkflowRecord:
    """Flat snapshot rendered into the booking form and notifications."""

    name: str
    service_description: str
    amount: Decimal
    department: str
    department_2: str
    number_of_days: int
    month: str
    days: str
    service_rate_per_day: Decimal
    additional_cost: Decimal
    additional_cost_reason: str
    approver_name: str
    booked_by: str
    approval_date: str


@dataclass(frozen=True)
class ApprovalContext:
    """Who approved which subject, and when."""

    subject_id: str
    approver_user_id: str
    approver_name: str
    approver_email: str
    approved_at: datetime


# =============================================================================
# Transport DTOs
# =============================================================================


@dataclass(frozen=True)
class Attachment:
    filename: str
    content: bytes
    content_type: str = "application/pdf"


@dataclass(frozen=True)
class OutboundMessage:
    """One notification handed to the transport."""

    to: str
    subject: str
    html_body: str
    attachments: tuple[Attachment, ...] = ()
    idempotency_token: str | None = None


@dataclass(frozen=True)
class DeliveryResult:
    """Outcome of one send; ``error`` is set when ``success`` is False."""

    success: bool
    message_id: str | None = None
    error: str | None = None


# =============================================================================
# Entry point results
# =============================================================================


@dataclass(frozen=True)
class TriggerResult:
    """Returned by ``ApprovalTrigger.trigger()``."""

    ok: bool
    skipped: bool = False
    degraded: bool = False
    error: str | None = None
    idempotency_key: str | None = None
    ledger_id: UUID | None = None


@dataclass(frozen=True)
class SweepResult:
    """Returned by ``PendingSweeper.sweep()``."""

    processed: int = 0
    errors: tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class ResendResult:
    """Returned by ``ManualResend.resend()``."""

    ok: bool
    error: str | None = None
    idempotency_key: str | None = None
