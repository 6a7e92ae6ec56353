"""Pure kernel domain types (time, ledger). ZERO I/O."""

from booking_kernel.domain.clock import Clock, DeterministicClock, SystemClock, ensure_utc
from booking_kernel.domain.ledger import (
    LedgerEntry,
    LedgerStatus,
    build_idempotency_key,
    can_transition,
    format_iso_millis,
)

__all__ = [
    "Clock",
    "DeterministicClock",
    "LedgerEntry",
    "LedgerStatus",
    "SystemClock",
    "build_idempotency_key",
    "can_transition",
    "ensure_utc",
    "format_iso_millis",
]
