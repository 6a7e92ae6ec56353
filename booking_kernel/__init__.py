"""
Booking Kernel

Infrastructure for the booking-form approval workflow:
- Idempotency ledger with compare-and-swap status transitions
- Typed exceptions with machine-readable codes
- Structured JSON logging
- Injectable clock
"""

__version__ = "0.1.0"
