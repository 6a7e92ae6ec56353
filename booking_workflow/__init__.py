"""
booking_workflow -- Booking-form approval workflow.

Renders the booking form when a contractor invoice is approved, stores it,
notifies the approver and the operations mailbox, and records every attempt
in the kernel's idempotency ledger.  ``BookingFormWorkflow`` is the entry
point; the sweeper finishes whatever the immediate trigger left open.
"""

from booking_workflow.orchestrator import BookingFormWorkflow

__all__ = ["BookingFormWorkflow"]
