"""Reference adapters for the workflow ports."""

from booking_workflow.adapters.smtp import SmtpTransport
from booking_workflow.adapters.storage import FilesystemArtifactStore, InMemoryArtifactStore

__all__ = [
    "FilesystemArtifactStore",
    "InMemoryArtifactStore",
    "SmtpTransport",
]
