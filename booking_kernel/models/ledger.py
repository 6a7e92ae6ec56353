"""
ORM model for the booking-form idempotency ledger.

Contract:
    LedgerEntryModel persists one row per workflow attempt and has a
    ``to_dto()`` method returning the frozen ``LedgerEntry``.

Architecture: booking_kernel/models. Imports from booking_kernel.db.base only.

Invariants enforced:
    - ``idempotency_key`` is UNIQUE.
    - ``status`` only moves through conditional UPDATEs issued by
      LedgerService (compare-and-swap on the current status).
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from booking_kernel.db.base import Base
from booking_kernel.domain.clock import ensure_utc
from booking_kernel.domain.ledger import LedgerEntry, LedgerStatus

LEDGER_TABLE = "booking_form_ledger"


class LedgerEntryModel(Base):
    """Persistent workflow attempt keyed by a deterministic idempotency key."""

    __tablename__ = LEDGER_TABLE

    __table_args__ = (
        Index("ix_booking_form_ledger_status_created", "status", "created_at"),
        Index("ix_booking_form_ledger_subject", "subject_id"),
    )

    subject_id: Mapped[str] = mapped_column(String(100), nullable=False)
    actor_id: Mapped[str] = mapped_column(String(100), nullable=False)
    triggered_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False,
    )
    idempotency_key: Mapped[str] = mapped_column(
        String(200), nullable=False, unique=True,
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    recipient_a_sent_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    recipient_b_sent_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    error_detail: Mapped[str | None] = mapped_column(Text, nullable=True)
    artifact_path: Mapped[str | None] = mapped_column(String(500), nullable=True)
    attempt_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    claimed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False,
    )

    def to_dto(self) -> LedgerEntry:
        return LedgerEntry(
            id=self.id,
            subject_id=self.subject_id,
            actor_id=self.actor_id,
            triggered_at=ensure_utc(self.triggered_at),
            idempotency_key=self.idempotency_key,
            status=LedgerStatus(self.status),
            recipient_a_sent_at=ensure_utc(self.recipient_a_sent_at),
            recipient_b_sent_at=ensure_utc(self.recipient_b_sent_at),
            error_detail=self.error_detail,
            created_at=ensure_utc(self.created_at),
            updated_at=ensure_utc(self.updated_at),
            claimed_at=ensure_utc(self.claimed_at),
            attempt_count=self.attempt_count,
            artifact_path=self.artifact_path,
        )
