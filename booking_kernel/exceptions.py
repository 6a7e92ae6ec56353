"""
Typed Exception Hierarchy for the booking-form workflow.

Every error has a typed class (catch by type, not message), a ``code``
class attribute (machine-readable), and structured attributes.

    BookingKernelError (base)
    |
    +-- LedgerError
    |   +-- LedgerUnavailableError
    |   +-- DuplicateLedgerKeyError
    |   +-- LedgerEntryNotFoundError
    |
    +-- WorkflowError
    |   +-- SubjectNotFoundError
    |   +-- ApproverNotFoundError
    |
    +-- ArtifactError
    |   +-- ArtifactNotFoundError
    |   +-- ArtifactStoreError
    |
    +-- NotificationError
        +-- RecipientAddressMissingError
        +-- TransportError

Code                        | When Raised
----------------------------|-----------------------------------------------
LEDGER_UNAVAILABLE          | Ledger table missing or store unreachable
LEDGER_DUPLICATE_KEY        | Idempotency key already has a ledger row (OK)
LEDGER_ENTRY_NOT_FOUND      | Ledger id does not exist
SUBJECT_NOT_FOUND           | Domain object or its required sub-record missing
APPROVER_NOT_FOUND          | No approver recorded for a subject
ARTIFACT_NOT_FOUND          | Stored document missing at the expected path
ARTIFACT_STORE_FAILED       | Writing the document to storage failed
RECIPIENT_ADDRESS_MISSING   | Recipient address resolved to an empty string
TRANSPORT_FAILED            | Outbound transport rejected or errored

Idempotency handling (DuplicateLedgerKeyError is success):

    try:
        ledger_id = ledger.create(...)
    except DuplicateLedgerKeyError:
        return TriggerResult(ok=True, skipped=True)
"""


class BookingKernelError(Exception):
    """
    Base exception for all booking-form workflow errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "BOOKING_KERNEL_ERROR"


# Ledger-related exceptions


class LedgerError(BookingKernelError):
    """Base exception for idempotency ledger errors."""

    code: str = "LEDGER_ERROR"


class LedgerUnavailableError(LedgerError):
    """
    The ledger store is not provisioned or not reachable.

    Callers treat this as "feature unavailable" and continue in degraded
    mode (no idempotency guarantees) instead of failing the approval.
    """

    code: str = "LEDGER_UNAVAILABLE"

    def __init__(self, reason: str, table_name: str):
        self.reason = reason
        self.table_name = table_name
        super().__init__(f"Ledger table {table_name} unavailable: {reason}")


class DuplicateLedgerKeyError(LedgerError):
    """A ledger row with the same idempotency key already exists."""

    code: str = "LEDGER_DUPLICATE_KEY"

    def __init__(self, idempotency_key: str):
        self.idempotency_key = idempotency_key
        super().__init__(f"Ledger entry already exists for key {idempotency_key}")


class LedgerEntryNotFoundError(LedgerError):
    """Ledger entry with given ID was not found."""

    code: str = "LEDGER_ENTRY_NOT_FOUND"

    def __init__(self, ledger_id: str):
        self.ledger_id = ledger_id
        super().__init__(f"Ledger entry not found: {ledger_id}")


# Workflow-related exceptions


class WorkflowError(BookingKernelError):
    """Base exception for domain-load failures."""

    code: str = "WORKFLOW_ERROR"


class SubjectNotFoundError(WorkflowError):
    """The approved subject (or its required sub-record) could not be loaded."""

    code: str = "SUBJECT_NOT_FOUND"

    def __init__(self, subject_id: str):
        self.subject_id = subject_id
        super().__init__(f"Could not load booking form data for subject {subject_id}")


class ApproverNotFoundError(WorkflowError):
    """No approver is recorded for the subject."""

    code: str = "APPROVER_NOT_FOUND"

    def __init__(self, subject_id: str):
        self.subject_id = subject_id
        super().__init__(f"No approver recorded for subject {subject_id}")


# Artifact-related exceptions


class ArtifactError(BookingKernelError):
    """Base exception for artifact store errors."""

    code: str = "ARTIFACT_ERROR"


class ArtifactNotFoundError(ArtifactError):
    """No stored document exists at the expected path."""

    code: str = "ARTIFACT_NOT_FOUND"

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Stored booking form not found: {path}")


class ArtifactStoreError(ArtifactError):
    """Writing or reading the stored document failed."""

    code: str = "ARTIFACT_STORE_FAILED"

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Artifact store failed for {path}: {reason}")


# Notification-related exceptions


class NotificationError(BookingKernelError):
    """Base exception for notification delivery errors."""

    code: str = "NOTIFICATION_ERROR"


class RecipientAddressMissingError(NotificationError):
    """A recipient address resolved to an empty string."""

    code: str = "RECIPIENT_ADDRESS_MISSING"

    def __init__(self, recipient: str):
        self.recipient = recipient
        super().__init__(f"{recipient} address is empty - cannot send notification")


class TransportError(NotificationError):
    """The outbound transport failed to deliver a message."""

    code: str = "TRANSPORT_FAILED"

    def __init__(self, to: str, reason: str):
        self.to = to
        self.reason = reason
        super().__init__(f"Delivery to {to} failed: {reason}")
