"""
BookingFormWorkflow -- DI container for the booking-form workflow.

Contract:
    Wires the ledger, renderer settings, notification sender, trigger,
    sweeper and manual resend from one ``WorkflowConfig`` plus the external
    collaborators.  Single place where all workflow dependencies are
    composed; callers use ``on_approval()``, ``sweep()``, ``resend()`` and
    ``render()``.

Invariants enforced:
    - Clock injection: every service receives the same Clock.
    - ``on_approval()`` never raises; the approval must not fail because of
      document or notification problems.

Non-goals:
    - Does NOT start the scheduler automatically -- caller decides.
    - Does NOT provision the ledger table -- see ``create_tables()``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable

from sqlalchemy.orm import Session

from booking_config.schema import WorkflowConfig
from booking_kernel.db.engine import get_session_factory, init_engine_from_url
from booking_kernel.domain.clock import Clock, SystemClock
from booking_kernel.logging_config import get_logger
from booking_kernel.services.ledger_service import LedgerService
from booking_workflow.adapters.smtp import SmtpTransport
from booking_workflow.adapters.storage import FilesystemArtifactStore, InMemoryArtifactStore
from booking_workflow.domain.records import build_workflow_record
from booking_workflow.domain.types import PLACEHOLDER, ResendResult, SweepResult, TriggerResult
from booking_workflow.notifications import NotificationSender
from booking_workflow.ports import (
    ArtifactStore,
    DomainDataProvider,
    NotificationTransport,
    UserDirectory,
)
from booking_workflow.renderer import render_booking_form
from booking_workflow.scheduler import SweepScheduler
from booking_workflow.services.resend import ManualResend
from booking_workflow.services.sweeper import PendingSweeper
from booking_workflow.services.trigger import ApprovalTrigger

logger = get_logger("workflow.orchestrator")


class BookingFormWorkflow:
    """DI container for the booking-form workflow.

    Contract:
        - ``from_config()`` factory creates a fully wired workflow.
        - ``on_approval()`` runs the immediate trigger.
        - ``sweep()`` runs one deferred pass; ``create_scheduler()`` wraps it
          in a polling loop.
        - ``resend()`` is the operator path; ``render()`` previews the form.
    """

    def __init__(
        self,
        config: WorkflowConfig,
        ledger: LedgerService,
        provider: DomainDataProvider,
        directory: UserDirectory,
        store: ArtifactStore,
        transport: NotificationTransport,
        clock: Clock | None = None,
    ) -> None:
        self._config = config
        self._clock = clock or SystemClock()
        self._ledger = ledger
        self._provider = provider
        self._directory = directory
        self._store = store
        self._sender = NotificationSender(
            transport,
            operations_mailbox=config.operations_mailbox,
            organisation_name=config.organisation_name,
            app_url=config.app_url,
            currency_symbol=config.document.currency_symbol,
        )
        self._trigger = ApprovalTrigger(
            ledger=ledger,
            provider=provider,
            store=store,
            sender=self._sender,
            clock=self._clock,
            artifact_namespace=config.artifact_namespace,
            document=config.document,
            internal_company_pattern=config.internal_company_pattern,
        )
        self._sweeper = PendingSweeper(
            ledger=ledger,
            provider=provider,
            directory=directory,
            store=store,
            sender=self._sender,
            clock=self._clock,
            artifact_namespace=config.artifact_namespace,
            grace_delay_seconds=config.grace_delay_seconds,
            claim_timeout_seconds=config.claim_timeout_seconds,
            batch_size=config.sweep_batch_size,
            retry_failed=config.retry_failed,
            max_attempts=config.max_attempts,
            internal_company_pattern=config.internal_company_pattern,
        )
        self._resend = ManualResend(
            ledger=ledger,
            provider=provider,
            directory=directory,
            sender=self._sender,
            clock=self._clock,
            document=config.document,
            internal_company_pattern=config.internal_company_pattern,
        )

    # -------------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------------

    @classmethod
    def from_config(
        cls,
        config: WorkflowConfig,
        provider: DomainDataProvider,
        directory: UserDirectory,
        store: ArtifactStore | None = None,
        transport: NotificationTransport | None = None,
        session_factory: Callable[[], Session] | None = None,
        clock: Clock | None = None,
    ) -> BookingFormWorkflow:
        """Create a fully wired workflow.

        Args:
            config: Loaded workflow configuration.
            provider: Domain data provider for subjects.
            directory: User directory for approver lookups.
            store: Artifact store.  Defaults to a filesystem store under
                ``config.artifact_root``, or in-memory if that is unset.
            transport: Notification transport.  Defaults to SMTP.
            session_factory: Ledger sessions.  Defaults to an engine built
                from ``config.database_url``.
            clock: Optional clock for deterministic testing.
        """
        effective_clock = clock or SystemClock()
        if session_factory is None:
            init_engine_from_url(config.database_url)
            session_factory = get_session_factory()
        if store is None:
            store = (
                FilesystemArtifactStore(config.artifact_root)
                if config.artifact_root
                else InMemoryArtifactStore()
            )
        if transport is None:
            transport = SmtpTransport(config.smtp, config.sender_address)

        return cls(
            config=config,
            ledger=LedgerService(session_factory, clock=effective_clock),
            provider=provider,
            directory=directory,
            store=store,
            transport=transport,
            clock=effective_clock,
        )

    # -------------------------------------------------------------------------
    # Entry points
    # -------------------------------------------------------------------------

    def on_approval(
        self,
        subject_id: str,
        actor_id: str,
        actor_display_name: str,
        actor_contact_address: str,
        triggered_at: datetime | None = None,
    ) -> TriggerResult:
        """Run the immediate workflow for an approval that just happened."""
        try:
            return self._trigger.trigger(
                subject_id,
                actor_id,
                actor_display_name,
                actor_contact_address,
                triggered_at or self._clock.now(),
            )
        except Exception as exc:
            logger.exception("booking_form_trigger_failed", extra={"subject_id": subject_id})
            return TriggerResult(ok=False, error=str(exc) or type(exc).__name__)

    def sweep(self) -> SweepResult:
        return self._sweeper.sweep()

    def resend(self, subject_id: str) -> ResendResult:
        return self._resend.resend(subject_id)

    def render(self, subject_id: str) -> bytes | None:
        """Render the current booking form for ``subject_id`` without storing,
        sending or touching the ledger.  None if the subject is unknown."""
        subject = self._provider.load_subject(subject_id)
        if subject is None:
            return None
        approver = (
            self._directory.resolve(subject.approver_user_id)
            if subject.approver_user_id else None
        )
        approver_name = (approver.display_name if approver else "") or PLACEHOLDER
        record = build_workflow_record(
            subject, approver_name, self._clock.now(), self._config.internal_company_pattern,
        )
        return render_booking_form(record, self._config.document)

    def create_scheduler(self, interval_seconds: float | None = None) -> SweepScheduler:
        return SweepScheduler(
            self.sweep,
            interval_seconds=interval_seconds or self._config.sweep_interval_seconds,
        )

    def ledger_available(self) -> bool:
        return self._ledger.is_available()

    # -------------------------------------------------------------------------
    # Accessors
    # -------------------------------------------------------------------------

    @property
    def config(self) -> WorkflowConfig:
        return self._config

    @property
    def ledger(self) -> LedgerService:
        return self._ledger

    @property
    def store(self) -> ArtifactStore:
        return self._store

    @property
    def trigger(self) -> ApprovalTrigger:
        return self._trigger

    @property
    def sweeper(self) -> PendingSweeper:
        return self._sweeper

    @property
    def resender(self) -> ManualResend:
        return self._resend
