"""
ManualResend -- operator-triggered resend of the booking form.

Contract:
    ``resend(subject_id)`` renders a fresh document from current data, sends
    it to both recipients under a new ``manual_`` key and, when both sends
    succeed, closes every open ledger row for the subject (pending, failed
    or claimed) so the sweeper does not send again.

Non-goals:
    - Does NOT write the fresh document to the artifact store; the stored
      artifact belongs to the original trigger.
    - Does NOT create a ledger row.
"""

from __future__ import annotations

from booking_config.schema import DocumentSettings
from booking_kernel.domain.clock import Clock, SystemClock
from booking_kernel.exceptions import (
    ApproverNotFoundError,
    LedgerUnavailableError,
    SubjectNotFoundError,
)
from booking_kernel.logging_config import LogContext, get_logger
from booking_kernel.services.ledger_service import LedgerService
from booking_workflow.domain.records import build_workflow_record
from booking_workflow.domain.types import ApprovalContext, ResendResult
from booking_workflow.notifications import NotificationSender
from booking_workflow.ports import DomainDataProvider, UserDirectory
from booking_workflow.renderer import render_booking_form
from booking_workflow.services.delivery import deliver
from booking_workflow.services.sweeper import UNKNOWN_APPROVER

logger = get_logger("workflow.resend")


def manual_idempotency_key(subject_id: str, epoch_millis: int) -> str:
    return f"manual_{subject_id}_{epoch_millis}"


class ManualResend:
    def __init__(
        self,
        ledger: LedgerService,
        provider: DomainDataProvider,
        directory: UserDirectory,
        sender: NotificationSender,
        clock: Clock | None = None,
        document: DocumentSettings | None = None,
        internal_company_pattern: str | None = None,
    ):
        self._ledger = ledger
        self._provider = provider
        self._directory = directory
        self._sender = sender
        self._clock = clock or SystemClock()
        self._document = document or DocumentSettings()
        self._internal_pattern = internal_company_pattern

    def resend(self, subject_id: str) -> ResendResult:
        now = self._clock.now()
        key = manual_idempotency_key(subject_id, int(now.timestamp() * 1000))
        with LogContext.bind(subject_id=subject_id, idempotency_key=key):
            subject = self._provider.load_subject(subject_id)
            if subject is None:
                return ResendResult(ok=False, error=str(SubjectNotFoundError(subject_id)), idempotency_key=key)
            if not subject.approver_user_id:
                return ResendResult(ok=False, error=str(ApproverNotFoundError(subject_id)), idempotency_key=key)

            approver = self._directory.resolve(subject.approver_user_id)
            approver_name = (approver.display_name if approver else "") or UNKNOWN_APPROVER
            context = ApprovalContext(
                subject_id=subject_id,
                approver_user_id=subject.approver_user_id,
                approver_name=approver_name,
                approver_email=(approver.email if approver else "") or "",
                approved_at=now,
            )
            record = build_workflow_record(subject, approver_name, now, self._internal_pattern)
            document = render_booking_form(record, self._document)

            outcome = deliver(self._sender, self._clock, record, context, document, key)
            if not outcome.all_delivered:
                logger.warning("manual_resend_failed", extra={"error": outcome.error_detail})
                return ResendResult(ok=False, error=outcome.error_detail, idempotency_key=key)

            closed = self._close_open_entries(subject_id)
            logger.info("manual_resend_sent", extra={"closed_entries": closed})
            return ResendResult(ok=True, idempotency_key=key)

    def _close_open_entries(self, subject_id: str) -> int:
        # Claimed rows included: a crashed claim must not be reclaimed and re-sent.
        try:
            entries = self._ledger.find_open_for_subject(subject_id)
            sent_at = self._clock.now()
            return sum(
                1
                for entry in entries
                if self._ledger.mark_completed(entry.id, sent_at, attempt=entry.attempt_count)
            )
        except LedgerUnavailableError as exc:
            logger.warning("manual_resend_ledger_unavailable", extra={"reason": exc.reason})
            return 0
