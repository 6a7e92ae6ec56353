"""
ApprovalTrigger -- immediate booking-form workflow at approval time.

Contract:
    ``trigger()`` renders the booking form, stores it, sends both
    notifications and records the outcome in the ledger.  It returns a
    ``TriggerResult`` and never raises for downstream problems.

Architecture: booking_workflow/services.  Depends on the kernel
    LedgerService and the workflow ports; owns no state of its own.

Invariants enforced:
    - A subject with a completed ledger row is skipped.
    - The same idempotency key never produces a second row.
    - The trigger claims its own row before sending, so a concurrent sweeper
      pass cannot also send for it.
    - Storage write happens-before both sends; both sends happen-before the
      terminal ledger update.

Failure modes:
    - Subject data missing -> ok=False, nothing written.
    - Duplicate key or lost claim -> ok=True, skipped=True.
    - Ledger unavailable -> degraded=True, workflow runs without a row.
    - Storage or send failures -> accumulated into the row's error_detail.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from booking_config.schema import DocumentSettings
from booking_kernel.domain.clock import Clock, SystemClock, ensure_utc
from booking_kernel.domain.ledger import LedgerStatus, build_idempotency_key
from booking_kernel.exceptions import (
    ArtifactStoreError,
    DuplicateLedgerKeyError,
    LedgerUnavailableError,
    SubjectNotFoundError,
)
from booking_kernel.logging_config import LogContext, get_logger
from booking_kernel.services.ledger_service import LedgerService
from booking_workflow.domain.records import build_workflow_record
from booking_workflow.domain.types import (
    ApprovalContext,
    Recipient,
    TriggerResult,
    WorkflowRecord,
)
from booking_workflow.notifications import NotificationSender
from booking_workflow.ports import ArtifactStore, DomainDataProvider
from booking_workflow.renderer import artifact_path, render_booking_form
from booking_workflow.services.delivery import DeliveryOutcome, deliver

logger = get_logger("workflow.trigger")

# attempt_count held by the trigger once it claims the row it just created
CLAIMED_ATTEMPT = 1


class ApprovalTrigger:
    """Runs the booking-form workflow inline with the approval request."""

    def __init__(
        self,
        ledger: LedgerService,
        provider: DomainDataProvider,
        store: ArtifactStore,
        sender: NotificationSender,
        clock: Clock | None = None,
        artifact_namespace: str = "booking-forms",
        document: DocumentSettings | None = None,
        internal_company_pattern: str | None = None,
    ):
        self._ledger = ledger
        self._provider = provider
        self._store = store
        self._sender = sender
        self._clock = clock or SystemClock()
        self._namespace = artifact_namespace
        self._document = document or DocumentSettings()
        self._internal_pattern = internal_company_pattern

    def trigger(
        self,
        subject_id: str,
        actor_id: str,
        actor_display_name: str,
        actor_contact_address: str,
        triggered_at: datetime,
    ) -> TriggerResult:
        triggered_at = ensure_utc(triggered_at)
        key = build_idempotency_key(subject_id, triggered_at)
        context = ApprovalContext(
            subject_id=subject_id,
            approver_user_id=actor_id,
            approver_name=actor_display_name,
            approver_email=actor_contact_address,
            approved_at=triggered_at,
        )
        with LogContext.bind(subject_id=subject_id, idempotency_key=key, actor_id=actor_id):
            return self._run(context, key)

    # -------------------------------------------------------------------------
    # Steps
    # -------------------------------------------------------------------------

    def _run(self, context: ApprovalContext, key: str) -> TriggerResult:
        degraded = False
        try:
            if self._already_completed(context.subject_id, key):
                logger.info("booking_form_already_completed")
                return TriggerResult(ok=True, skipped=True, idempotency_key=key)
        except LedgerUnavailableError as exc:
            logger.warning("booking_form_degraded_mode", extra={"reason": exc.reason})
            degraded = True

        subject = self._provider.load_subject(context.subject_id)
        if subject is None:
            error = SubjectNotFoundError(context.subject_id)
            logger.error("booking_form_subject_not_found", extra={"error_code": error.code})
            return TriggerResult(ok=False, error=str(error), idempotency_key=key, degraded=degraded)

        record = build_workflow_record(
            subject, context.approver_name, context.approved_at, self._internal_pattern,
        )

        ledger_id: UUID | None = None
        if not degraded:
            try:
                ledger_id = self._ledger.create(
                    context.subject_id, context.approver_user_id, context.approved_at, key,
                )
            except DuplicateLedgerKeyError:
                return TriggerResult(ok=True, skipped=True, idempotency_key=key)
            except LedgerUnavailableError as exc:
                logger.warning("booking_form_degraded_mode", extra={"reason": exc.reason})
                degraded = True

        if ledger_id is not None:
            try:
                claimed = self._ledger.claim(ledger_id, expected_attempts=0)
            except LedgerUnavailableError as exc:
                logger.warning("booking_form_degraded_mode", extra={"reason": exc.reason})
                return self._process(record, context, key, None, degraded=True)
            if not claimed:
                logger.info("booking_form_claim_lost", extra={"ledger_id": str(ledger_id)})
                return TriggerResult(ok=True, skipped=True, idempotency_key=key, ledger_id=ledger_id)
            with LogContext.bind(ledger_id=str(ledger_id)):
                return self._process(record, context, key, ledger_id)

        return self._process(record, context, key, None, degraded=True)

    def _already_completed(self, subject_id: str, key: str) -> bool:
        if self._ledger.find_completed_for_subject(subject_id) is not None:
            return True
        return self._ledger.check_completed(key) is not None

    def _process(
        self,
        record: WorkflowRecord,
        context: ApprovalContext,
        key: str,
        ledger_id: UUID | None,
        degraded: bool = False,
    ) -> TriggerResult:
        outcome = DeliveryOutcome()
        try:
            document = render_booking_form(record, self._document)
            path = self._store_document(context.subject_id, record, document, outcome)
            if ledger_id is not None and path is not None:
                self._record(ledger_id, LedgerStatus.PROCESSING, artifact_path=path)

            deliver(self._sender, self._clock, record, context, document, key, outcome=outcome)
        except Exception as exc:
            logger.exception("booking_form_workflow_error")
            outcome.errors.append(str(exc) or type(exc).__name__)

        ok = outcome.all_delivered
        if ledger_id is not None:
            self._record(
                ledger_id,
                LedgerStatus.COMPLETED if not outcome.errors else LedgerStatus.FAILED,
                recipient_a_sent_at=outcome.sent_at[Recipient.APPROVER],
                recipient_b_sent_at=outcome.sent_at[Recipient.OPERATIONS],
                error_detail=outcome.error_detail,
            )

        logger.info(
            "booking_form_workflow_finished",
            extra={"ok": ok, "degraded": degraded, "error_count": len(outcome.errors)},
        )
        return TriggerResult(
            ok=ok,
            degraded=degraded,
            error=outcome.error_detail,
            idempotency_key=key,
            ledger_id=ledger_id,
        )

    def _record(self, ledger_id: UUID, status: LedgerStatus, **fields) -> None:
        """Write to the claimed row; a ledger outage here is logged, not raised."""
        try:
            written = self._ledger.update(ledger_id, status, attempt=CLAIMED_ATTEMPT, **fields)
        except LedgerUnavailableError as exc:
            logger.warning("booking_form_ledger_write_failed", extra={"reason": exc.reason})
            return
        if not written:
            logger.warning("booking_form_claim_superseded", extra={"status": status.value})

    def _store_document(
        self,
        subject_id: str,
        record: WorkflowRecord,
        document: bytes,
        outcome: DeliveryOutcome,
    ) -> str | None:
        path = artifact_path(self._namespace, subject_id, record)
        try:
            self._store.put(path, document)
        except ArtifactStoreError as exc:
            logger.error(
                "booking_form_storage_failed",
                extra={"artifact_path": path, "error_code": exc.code},
            )
            outcome.add_error("Storage", exc.reason)
            return None
        logger.info("booking_form_stored", extra={"artifact_path": path})
        return path
