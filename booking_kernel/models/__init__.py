"""
booking_kernel.models -- ORM models.

Architecture: booking_kernel/models. Imports from booking_kernel.db.base only.
"""

from booking_kernel.models.ledger import LEDGER_TABLE, LedgerEntryModel

__all__ = [
    "LEDGER_TABLE",
    "LedgerEntryModel",
]
