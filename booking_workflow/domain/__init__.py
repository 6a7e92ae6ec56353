"""
booking_workflow.domain -- Pure types and record assembly.

ZERO I/O.  All types are frozen dataclasses.
"""

from booking_workflow.domain.records import build_workflow_record
from booking_workflow.domain.types import (
    PLACEHOLDER,
    ApprovalContext,
    Attachment,
    DeliveryResult,
    DirectoryUser,
    OutboundMessage,
    Recipient,
    ResendResult,
    SubjectData,
    SweepResult,
    TriggerResult,
    WorkflowRecord,
)

__all__ = [
    "PLACEHOLDER",
    "ApprovalContext",
    "Attachment",
    "DeliveryResult",
    "DirectoryUser",
    "OutboundMessage",
    "Recipient",
    "ResendResult",
    "SubjectData",
    "SweepResult",
    "TriggerResult",
    "WorkflowRecord",
    "build_workflow_record",
]
