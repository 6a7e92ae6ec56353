"""
LedgerService -- Idempotency ledger for booking-form workflow attempts.

Contract:
    Durable table of workflow attempts keyed by a deterministic idempotency
    key.  ``check_completed`` / ``create`` / ``claim`` / ``update`` plus the
    queries the sweeper and manual resend need.

Architecture: booking_kernel/services.  Imports from booking_kernel.db,
    booking_kernel.models, booking_kernel.domain.

Invariants enforced:
    - UNIQUE idempotency_key; a violation surfaces as DuplicateLedgerKeyError.
    - pending -> processing only via the conditional UPDATE in ``claim()``
      (rowcount == 1 means this caller won).
    - Every claim increments attempt_count; writes fenced on the attempt a
      worker claimed are refused once another worker has taken the row over.
    - Every operation runs in its own committed transaction.

Failure modes:
    - LedgerUnavailableError when the table does not exist or the store is
      unreachable.  Detected with driver error codes and a schema check,
      never by matching message text.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Callable, Generator
from uuid import UUID, uuid4

from psycopg2 import errorcodes
from sqlalchemy import and_, inspect, or_, select, update
from sqlalchemy.exc import (
    DBAPIError,
    IntegrityError,
    InterfaceError,
    OperationalError,
    ProgrammingError,
)
from sqlalchemy.orm import Session

from booking_kernel.db.engine import session_scope
from booking_kernel.domain.clock import Clock, SystemClock, ensure_utc
from booking_kernel.domain.ledger import LedgerEntry, LedgerStatus, can_transition
from booking_kernel.exceptions import (
    DuplicateLedgerKeyError,
    LedgerEntryNotFoundError,
    LedgerUnavailableError,
)
from booking_kernel.logging_config import get_logger
from booking_kernel.models.ledger import LEDGER_TABLE, LedgerEntryModel

logger = get_logger("ledger.service")

_UNSET = object()


class LedgerService:
    """Compare-and-swap ledger over ``booking_form_ledger``.

    Contract:
        - ``create()`` inserts a PENDING row or raises DuplicateLedgerKeyError.
        - ``claim()`` returns True for exactly one concurrent caller.
        - ``update()`` writes progress/terminal state on a PROCESSING row.

    Non-goals:
        - Does NOT share sessions with callers -- each call commits on its own.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        clock: Clock | None = None,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()

    # -------------------------------------------------------------------------
    # Availability
    # -------------------------------------------------------------------------

    def is_available(self) -> bool:
        """Schema check: True if the ledger table exists and the store answers."""
        try:
            session = self._session_factory()
            try:
                return inspect(session.connection()).has_table(LEDGER_TABLE)
            finally:
                session.close()
        except (OperationalError, InterfaceError):
            logger.warning("ledger_store_unreachable", exc_info=True)
            return False

    def _classify(self, exc: DBAPIError) -> LedgerUnavailableError | None:
        """Return a LedgerUnavailableError if ``exc`` means "not provisioned"."""
        pgcode = getattr(exc.orig, "pgcode", None)
        if pgcode == errorcodes.UNDEFINED_TABLE:
            return LedgerUnavailableError("table does not exist", LEDGER_TABLE)
        if exc.connection_invalidated or isinstance(exc, InterfaceError):
            return LedgerUnavailableError("store unreachable", LEDGER_TABLE)
        if pgcode is None and not self.is_available():
            return LedgerUnavailableError("schema check failed", LEDGER_TABLE)
        return None

    @contextmanager
    def _scope(self) -> Generator[Session, None, None]:
        try:
            with session_scope(self._session_factory) as session:
                yield session
        except (OperationalError, ProgrammingError, InterfaceError) as exc:
            unavailable = self._classify(exc)
            if unavailable is None:
                raise
            logger.warning(
                "ledger_unavailable",
                extra={"reason": unavailable.reason},
            )
            raise unavailable from exc

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get(self, ledger_id: UUID) -> LedgerEntry:
        """Get a ledger entry by ID.

        Raises:
            LedgerEntryNotFoundError: If ledger_id does not exist.
        """
        with self._scope() as session:
            model = session.get(LedgerEntryModel, ledger_id)
            if model is None:
                raise LedgerEntryNotFoundError(str(ledger_id))
            return model.to_dto()

    def check_completed(self, idempotency_key: str) -> LedgerEntry | None:
        """Return the entry for ``idempotency_key`` only if it is COMPLETED."""
        with self._scope() as session:
            model = session.execute(
                select(LedgerEntryModel).where(
                    LedgerEntryModel.idempotency_key == idempotency_key,
                )
            ).scalar_one_or_none()
            if model is None or model.status != LedgerStatus.COMPLETED.value:
                return None
            return model.to_dto()

    def find_completed_for_subject(self, subject_id: str) -> LedgerEntry | None:
        """Any COMPLETED entry for ``subject_id``, regardless of key."""
        with self._scope() as session:
            model = session.execute(
                select(LedgerEntryModel)
                .where(
                    LedgerEntryModel.subject_id == subject_id,
                    LedgerEntryModel.status == LedgerStatus.COMPLETED.value,
                )
                .order_by(LedgerEntryModel.created_at)
                .limit(1)
            ).scalar_one_or_none()
            return model.to_dto() if model is not None else None

    def find_open_for_subject(self, subject_id: str) -> list[LedgerEntry]:
        """Entries for ``subject_id`` that are not COMPLETED, oldest first."""
        with self._scope() as session:
            models = session.execute(
                select(LedgerEntryModel)
                .where(
                    LedgerEntryModel.subject_id == subject_id,
                    LedgerEntryModel.status != LedgerStatus.COMPLETED.value,
                )
                .order_by(LedgerEntryModel.created_at)
            ).scalars().all()
            return [m.to_dto() for m in models]

    def find_sweepable(
        self,
        grace_seconds: float,
        claim_timeout_seconds: float,
        limit: int,
        retry_failed: bool = False,
        max_attempts: int = 3,
    ) -> list[LedgerEntry]:
        """Rows the sweeper may claim, oldest first.

        - PENDING rows created before ``now - grace``.
        - PROCESSING rows whose claim is older than ``now - claim_timeout``.
        - FAILED rows last touched before ``now - grace`` (if ``retry_failed``).

        Retried rows must still be under ``max_attempts``.
        """
        now = self._clock.now()
        grace_cutoff = now - timedelta(seconds=grace_seconds)
        claim_cutoff = now - timedelta(seconds=claim_timeout_seconds)
        under_cap = LedgerEntryModel.attempt_count < max_attempts

        conditions = [
            and_(
                LedgerEntryModel.status == LedgerStatus.PENDING.value,
                LedgerEntryModel.created_at < grace_cutoff,
            ),
            and_(
                LedgerEntryModel.status == LedgerStatus.PROCESSING.value,
                LedgerEntryModel.claimed_at < claim_cutoff,
                under_cap,
            ),
        ]
        if retry_failed:
            conditions.append(
                and_(
                    LedgerEntryModel.status == LedgerStatus.FAILED.value,
                    LedgerEntryModel.updated_at < grace_cutoff,
                    under_cap,
                )
            )

        with self._scope() as session:
            models = session.execute(
                select(LedgerEntryModel)
                .where(or_(*conditions))
                .order_by(LedgerEntryModel.created_at)
                .limit(limit)
            ).scalars().all()
            return [m.to_dto() for m in models]

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def create(
        self,
        subject_id: str,
        actor_id: str,
        triggered_at: datetime,
        idempotency_key: str,
    ) -> UUID:
        """Insert a PENDING row and return its id.

        Raises:
            DuplicateLedgerKeyError: If ``idempotency_key`` already has a row.
            LedgerUnavailableError: If the ledger is not provisioned.
        """
        now = self._clock.now()
        ledger_id = uuid4()
        try:
            with self._scope() as session:
                session.add(
                    LedgerEntryModel(
                        id=ledger_id,
                        subject_id=subject_id,
                        actor_id=actor_id,
                        triggered_at=ensure_utc(triggered_at),
                        idempotency_key=idempotency_key,
                        status=LedgerStatus.PENDING.value,
                        attempt_count=0,
                        created_at=now,
                        updated_at=now,
                    )
                )
                session.flush()
        except IntegrityError as exc:
            pgcode = getattr(exc.orig, "pgcode", None)
            if pgcode == errorcodes.UNIQUE_VIOLATION or self._key_exists(idempotency_key):
                logger.info(
                    "ledger_duplicate_key",
                    extra={"idempotency_key": idempotency_key},
                )
                raise DuplicateLedgerKeyError(idempotency_key) from exc
            raise

        logger.info(
            "ledger_entry_created",
            extra={
                "ledger_id": str(ledger_id),
                "subject_id": subject_id,
                "idempotency_key": idempotency_key,
            },
        )
        return ledger_id

    def claim(
        self,
        ledger_id: UUID,
        expected_status: LedgerStatus = LedgerStatus.PENDING,
        expected_attempts: int | None = None,
    ) -> bool:
        """Atomically move ``expected_status -> processing``.

        With ``expected_attempts`` the row must also still carry that
        attempt_count, so a winning caller holds attempt
        ``expected_attempts + 1`` and can fence its later writes on it.

        Returns True only if this call transitioned the row; False means
        another worker claimed it first or it already moved on.
        """
        if not can_transition(expected_status, LedgerStatus.PROCESSING):
            raise ValueError(f"Cannot claim a ledger entry in status {expected_status.value}")

        conditions = [
            LedgerEntryModel.id == ledger_id,
            LedgerEntryModel.status == expected_status.value,
        ]
        if expected_attempts is not None:
            conditions.append(LedgerEntryModel.attempt_count == expected_attempts)

        now = self._clock.now()
        stmt = (
            update(LedgerEntryModel)
            .where(*conditions)
            .values(
                status=LedgerStatus.PROCESSING.value,
                claimed_at=now,
                updated_at=now,
                attempt_count=LedgerEntryModel.attempt_count + 1,
            )
            .execution_options(synchronize_session=False)
        )
        with self._scope() as session:
            claimed = session.execute(stmt).rowcount == 1

        logger.debug(
            "ledger_claim",
            extra={"ledger_id": str(ledger_id), "claimed": claimed},
        )
        return claimed

    def reclaim_stale(
        self,
        ledger_id: UUID,
        older_than: datetime,
        expected_attempts: int | None = None,
    ) -> bool:
        """Take over a PROCESSING row whose claim predates ``older_than``.

        The row stays PROCESSING; only ``claimed_at`` and ``attempt_count``
        move, so the first worker to refresh the claim wins and the
        superseded worker's attempt-fenced writes are refused.
        """
        conditions = [
            LedgerEntryModel.id == ledger_id,
            LedgerEntryModel.status == LedgerStatus.PROCESSING.value,
            or_(
                LedgerEntryModel.claimed_at.is_(None),
                LedgerEntryModel.claimed_at < ensure_utc(older_than),
            ),
        ]
        if expected_attempts is not None:
            conditions.append(LedgerEntryModel.attempt_count == expected_attempts)

        now = self._clock.now()
        stmt = (
            update(LedgerEntryModel)
            .where(*conditions)
            .values(
                claimed_at=now,
                updated_at=now,
                attempt_count=LedgerEntryModel.attempt_count + 1,
            )
            .execution_options(synchronize_session=False)
        )
        with self._scope() as session:
            reclaimed = session.execute(stmt).rowcount == 1

        if reclaimed:
            logger.warning("ledger_stale_claim_recovered", extra={"ledger_id": str(ledger_id)})
        return reclaimed

    def update(
        self,
        ledger_id: UUID,
        status: LedgerStatus,
        recipient_a_sent_at: datetime | None | object = _UNSET,
        recipient_b_sent_at: datetime | None | object = _UNSET,
        error_detail: str | None = None,
        artifact_path: str | None | object = _UNSET,
        attempt: int | None = None,
    ) -> bool:
        """Write progress or a terminal status on a PROCESSING row.

        Omitted timestamp/path arguments are left unchanged; ``error_detail``
        is always overwritten.  ``attempt`` is the attempt_count the caller's
        claim produced; when given, the write only lands while that claim is
        still current.  Returns False if the row is no longer PROCESSING, or
        if ``attempt`` is given and a stale claim was taken over.

        Raises:
            LedgerEntryNotFoundError: If ledger_id does not exist.
        """
        if status == LedgerStatus.PENDING:
            raise ValueError("A claimed ledger entry cannot return to pending")

        values: dict[str, object] = {
            "status": status.value,
            "error_detail": error_detail,
            "updated_at": self._clock.now(),
        }
        if recipient_a_sent_at is not _UNSET:
            values["recipient_a_sent_at"] = ensure_utc(recipient_a_sent_at)
        if recipient_b_sent_at is not _UNSET:
            values["recipient_b_sent_at"] = ensure_utc(recipient_b_sent_at)
        if artifact_path is not _UNSET:
            values["artifact_path"] = artifact_path

        conditions = [
            LedgerEntryModel.id == ledger_id,
            LedgerEntryModel.status == LedgerStatus.PROCESSING.value,
        ]
        if attempt is not None:
            conditions.append(LedgerEntryModel.attempt_count == attempt)

        stmt = (
            update(LedgerEntryModel)
            .where(*conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        with self._scope() as session:
            written = session.execute(stmt).rowcount == 1
            if not written and session.get(LedgerEntryModel, ledger_id) is None:
                raise LedgerEntryNotFoundError(str(ledger_id))

        logger.info(
            "ledger_entry_updated",
            extra={
                "ledger_id": str(ledger_id),
                "status": status.value,
                "written": written,
            },
        )
        return written

    def mark_completed(
        self,
        ledger_id: UUID,
        sent_at: datetime,
        attempt: int | None = None,
    ) -> bool:
        """Close an open row after an out-of-band delivery.

        Without ``attempt`` only PENDING and FAILED rows are closed.  With
        ``attempt`` (the attempt_count the caller last saw) a PROCESSING row
        is closed too, provided nobody has claimed it since; its holder's
        attempt-fenced writes are then refused.
        """
        closable = [LedgerStatus.PENDING.value, LedgerStatus.FAILED.value]
        conditions = [LedgerEntryModel.id == ledger_id]
        if attempt is not None:
            closable.append(LedgerStatus.PROCESSING.value)
            conditions.append(LedgerEntryModel.attempt_count == attempt)
        conditions.append(LedgerEntryModel.status.in_(closable))

        stmt = (
            update(LedgerEntryModel)
            .where(*conditions)
            .values(
                status=LedgerStatus.COMPLETED.value,
                recipient_a_sent_at=ensure_utc(sent_at),
                recipient_b_sent_at=ensure_utc(sent_at),
                error_detail=None,
                updated_at=self._clock.now(),
            )
            .execution_options(synchronize_session=False)
        )
        with self._scope() as session:
            return session.execute(stmt).rowcount == 1

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    def _key_exists(self, idempotency_key: str) -> bool:
        with self._scope() as session:
            return session.execute(
                select(LedgerEntryModel.id).where(
                    LedgerEntryModel.idempotency_key == idempotency_key,
                )
            ).first() is not None
