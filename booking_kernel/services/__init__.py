"""Kernel services."""

from booking_kernel.services.ledger_service import LedgerService

__all__ = ["LedgerService"]
