"""
PendingSweeper -- deferred processing of ledger rows the trigger left open.

Contract:
    ``sweep()`` selects stale rows, claims each one, reloads the subject,
    fetches the *stored* document bytes and sends the notifications that
    have not gone out yet.  Returns ``SweepResult(processed, errors)``.

Architecture: booking_workflow/services.  Safe to run from several
    processes at once; mutual exclusion is the ledger's conditional claim.

Invariants enforced:
    - Rows younger than the grace delay are left to the trigger.
    - A lost claim is skipped, never processed.
    - The document is never re-rendered; a missing artifact fails the row.
    - A recipient with a recorded delivery time is not sent to again.
    - Row writes are fenced on the attempt this pass claimed, so a pass
      whose stale claim was taken over cannot overwrite the new holder.

Failure modes:
    - Ledger unavailable -> empty result with one error string.
    - Subject or artifact missing -> row marked failed, sweep continues.
    - Unexpected error on one row -> row marked failed, sweep continues.
    - Error while claiming -> nothing written to the row, sweep continues.
"""

from __future__ import annotations

from datetime import timedelta

from booking_kernel.domain.clock import Clock, SystemClock
from booking_kernel.domain.ledger import LedgerEntry, LedgerStatus
from booking_kernel.exceptions import (
    ArtifactNotFoundError,
    ArtifactStoreError,
    LedgerUnavailableError,
    SubjectNotFoundError,
)
from booking_kernel.logging_config import LogContext, get_logger
from booking_kernel.services.ledger_service import LedgerService
from booking_workflow.domain.records import build_workflow_record
from booking_workflow.domain.types import ApprovalContext, Recipient, SweepResult
from booking_workflow.notifications import NotificationSender
from booking_workflow.ports import ArtifactStore, DomainDataProvider, UserDirectory
from booking_workflow.renderer import artifact_path
from booking_workflow.services.delivery import deliver

logger = get_logger("workflow.sweeper")

UNKNOWN_APPROVER = "Approver"


class PendingSweeper:
    """Finishes workflow attempts left pending, stuck or failed."""

    def __init__(
        self,
        ledger: LedgerService,
        provider: DomainDataProvider,
        directory: UserDirectory,
        store: ArtifactStore,
        sender: NotificationSender,
        clock: Clock | None = None,
        artifact_namespace: str = "booking-forms",
        grace_delay_seconds: float = 30.0,
        claim_timeout_seconds: float = 600.0,
        batch_size: int = 20,
        retry_failed: bool = False,
        max_attempts: int = 3,
        internal_company_pattern: str | None = None,
    ):
        self._ledger = ledger
        self._provider = provider
        self._directory = directory
        self._store = store
        self._sender = sender
        self._clock = clock or SystemClock()
        self._namespace = artifact_namespace
        self._grace = grace_delay_seconds
        self._claim_timeout = claim_timeout_seconds
        self._batch_size = batch_size
        self._retry_failed = retry_failed
        self._max_attempts = max_attempts
        self._internal_pattern = internal_company_pattern

    def sweep(self) -> SweepResult:
        try:
            candidates = self._ledger.find_sweepable(
                grace_seconds=self._grace,
                claim_timeout_seconds=self._claim_timeout,
                limit=self._batch_size,
                retry_failed=self._retry_failed,
                max_attempts=self._max_attempts,
            )
        except LedgerUnavailableError as exc:
            logger.warning("sweep_ledger_unavailable", extra={"reason": exc.reason})
            return SweepResult(processed=0, errors=(str(exc),))

        processed = 0
        errors: list[str] = []
        for entry in candidates:
            with LogContext.bind(
                subject_id=entry.subject_id,
                idempotency_key=entry.idempotency_key,
                ledger_id=str(entry.id),
            ):
                try:
                    claimed = self._claim(entry)
                except LedgerUnavailableError as exc:
                    logger.warning("sweep_ledger_unavailable", extra={"reason": exc.reason})
                    errors.append(str(exc))
                    break
                except Exception as exc:
                    # Claim outcome unknown: the row may belong to another worker.
                    logger.exception("sweep_claim_error")
                    errors.append(f"Subject {entry.subject_id}: {str(exc) or type(exc).__name__}")
                    continue
                if not claimed:
                    logger.debug("sweep_claim_lost")
                    continue

                attempt = entry.attempt_count + 1
                try:
                    sent, error = self._process(entry, attempt)
                except LedgerUnavailableError as exc:
                    logger.warning("sweep_ledger_unavailable", extra={"reason": exc.reason})
                    errors.append(str(exc))
                    break
                except Exception as exc:
                    logger.exception("sweep_entry_error")
                    message = str(exc) or type(exc).__name__
                    self._record_failure(entry, attempt, message)
                    errors.append(f"Subject {entry.subject_id}: {message}")
                    continue

                if sent:
                    processed += 1
                if error is not None:
                    errors.append(f"Subject {entry.subject_id}: {error}")

        logger.info(
            "sweep_finished",
            extra={
                "candidates": len(candidates),
                "processed": processed,
                "error_count": len(errors),
            },
        )
        return SweepResult(processed=processed, errors=tuple(errors))

    # -------------------------------------------------------------------------
    # Per-row steps
    # -------------------------------------------------------------------------

    def _claim(self, entry: LedgerEntry) -> bool:
        """Claim ``entry`` as seen at selection time; on success this pass
        holds attempt ``entry.attempt_count + 1``."""
        if entry.status == LedgerStatus.PROCESSING:
            cutoff = self._clock.now() - timedelta(seconds=self._claim_timeout)
            return self._ledger.reclaim_stale(
                entry.id, cutoff, expected_attempts=entry.attempt_count,
            )
        return self._ledger.claim(
            entry.id, expected_status=entry.status, expected_attempts=entry.attempt_count,
        )

    def _record_failure(self, entry: LedgerEntry, attempt: int, message: str) -> None:
        try:
            self._ledger.update(
                entry.id, LedgerStatus.FAILED, error_detail=message, attempt=attempt,
            )
        except Exception:
            logger.exception("sweep_failure_not_recorded")

    def _process(self, entry: LedgerEntry, attempt: int) -> tuple[bool, str | None]:
        """Finish one claimed row.

        Returns ``(sent, error)``: whether the send step was reached, and the
        error text recorded on the row, if any.
        """
        approver = self._directory.resolve(entry.actor_id)
        approver_name = (approver.display_name if approver else "") or UNKNOWN_APPROVER
        approver_email = (approver.email if approver else "") or ""

        subject = self._provider.load_subject(entry.subject_id)
        if subject is None:
            message = str(SubjectNotFoundError(entry.subject_id))
            self._ledger.update(
                entry.id, LedgerStatus.FAILED, error_detail=message, attempt=attempt,
            )
            logger.error("sweep_subject_not_found")
            return False, message

        record = build_workflow_record(
            subject, approver_name, entry.triggered_at, self._internal_pattern,
        )
        path = entry.artifact_path or artifact_path(self._namespace, entry.subject_id, record)
        try:
            document = self._store.get(path)
        except ArtifactStoreError as exc:
            self._ledger.update(
                entry.id, LedgerStatus.FAILED, error_detail=str(exc), attempt=attempt,
            )
            logger.error("sweep_artifact_read_failed", extra={"artifact_path": path})
            return False, str(exc)
        if document is None:
            message = str(ArtifactNotFoundError(path))
            self._ledger.update(
                entry.id, LedgerStatus.FAILED, error_detail=message, attempt=attempt,
            )
            logger.error("sweep_artifact_missing", extra={"artifact_path": path})
            return False, message

        context = ApprovalContext(
            subject_id=entry.subject_id,
            approver_user_id=entry.actor_id,
            approver_name=approver_name,
            approver_email=approver_email,
            approved_at=entry.triggered_at,
        )
        outcome = deliver(
            self._sender,
            self._clock,
            record,
            context,
            document,
            entry.idempotency_key,
            already_sent={
                Recipient.APPROVER: entry.recipient_a_sent_at,
                Recipient.OPERATIONS: entry.recipient_b_sent_at,
            },
        )
        self._ledger.update(
            entry.id,
            LedgerStatus.COMPLETED if outcome.all_delivered else LedgerStatus.FAILED,
            recipient_a_sent_at=outcome.sent_at[Recipient.APPROVER],
            recipient_b_sent_at=outcome.sent_at[Recipient.OPERATIONS],
            error_detail=outcome.error_detail,
            artifact_path=path,
            attempt=attempt,
        )
        logger.info("sweep_entry_finished", extra={"delivered": outcome.all_delivered})
        return True, outcome.error_detail
