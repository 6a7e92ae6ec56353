"""
Protocols for the collaborators the workflow consumes but does not own.

Contract:
    ``DomainDataProvider``  -- invoice/contract data for a subject id.
    ``UserDirectory``       -- user id -> display name and address.
    ``ArtifactStore``       -- put/get document bytes at a path.
    ``NotificationTransport`` -- send one message with an idempotency token.

Non-goals:
    - No implementation here; see ``booking_workflow.adapters``.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from booking_workflow.domain.types import (
    DeliveryResult,
    DirectoryUser,
    OutboundMessage,
    SubjectData,
)


@runtime_checkable
class DomainDataProvider(Protocol):
    def load_subject(self, subject_id: str) -> SubjectData | None:
        """Return the subject's booking fields, or None if not found."""
        ...


@runtime_checkable
class UserDirectory(Protocol):
    def resolve(self, user_id: str) -> DirectoryUser | None:
        """Return the user's display name and address, or None."""
        ...


@runtime_checkable
class ArtifactStore(Protocol):
    """Object storage addressed by ``{namespace}/{subject_id}/{filename}``.

    ``put`` raises ``ArtifactStoreError`` on failure; ``get`` returns None
    when nothing is stored at ``path``.
    """

    def put(self, path: str, data: bytes) -> None: ...

    def get(self, path: str) -> bytes | None: ...


@runtime_checkable
class NotificationTransport(Protocol):
    """Outbound transport.

    Implementations deduplicate on ``message.idempotency_token`` where the
    backing service supports it.  Failures are reported in the result, not
    raised.
    """

    def send(self, message: OutboundMessage) -> DeliveryResult: ...
