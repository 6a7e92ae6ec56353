"""Workflow services: immediate trigger, deferred sweeper, manual resend."""

from booking_workflow.services.resend import ManualResend
from booking_workflow.services.sweeper import PendingSweeper
from booking_workflow.services.trigger import ApprovalTrigger

__all__ = [
    "ApprovalTrigger",
    "ManualResend",
    "PendingSweeper",
]
