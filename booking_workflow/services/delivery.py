"""
Shared send step for the trigger, sweeper and manual resend.

Both recipients are always attempted (unless already delivered); their
outcomes are independent.  Error text is accumulated in the fixed order
storage, recipient A, recipient B and joined with ``"; "``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from booking_kernel.domain.clock import Clock
from booking_workflow.domain.types import ApprovalContext, Recipient, WorkflowRecord
from booking_workflow.notifications import NotificationSender


@dataclass
class DeliveryOutcome:
    """Per-recipient send timestamps plus accumulated error strings."""

    sent_at: dict[Recipient, datetime | None] = field(
        default_factory=lambda: {r: None for r in Recipient}
    )
    errors: list[str] = field(default_factory=list)

    @property
    def all_delivered(self) -> bool:
        return all(self.sent_at[r] is not None for r in Recipient)

    @property
    def error_detail(self) -> str | None:
        return "; ".join(self.errors) if self.errors else None

    def add_error(self, source: str, message: str | None) -> None:
        self.errors.append(f"{source}: {message or 'unknown error'}")


def deliver(
    sender: NotificationSender,
    clock: Clock,
    record: WorkflowRecord,
    context: ApprovalContext,
    document_bytes: bytes,
    idempotency_key: str,
    outcome: DeliveryOutcome | None = None,
    already_sent: dict[Recipient, datetime | None] | None = None,
) -> DeliveryOutcome:
    """Send to both recipients, skipping any with a recorded delivery time."""
    outcome = outcome or DeliveryOutcome()
    already_sent = already_sent or {}
    for recipient in Recipient:
        previous = already_sent.get(recipient)
        if previous is not None:
            outcome.sent_at[recipient] = previous
            continue
        result = sender.send(recipient, record, context, document_bytes, idempotency_key)
        if result.success:
            outcome.sent_at[recipient] = clock.now()
        else:
            outcome.add_error(recipient.label, result.error)
    return outcome
