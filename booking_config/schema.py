"""
Booking workflow configuration schema.

Frozen dataclasses; YAML is parsed into these types by the loader.  Nothing
outside ``booking_config`` reads files or environment variables for
workflow settings.
"""

from __future__ import annotations

from dataclasses import dataclass, field

# ---------------------------------------------------------------------------
# Document layout
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DocumentSettings:
    """Fixed text blocks and branding for the booking form PDF."""

    title: str = '"DAILY" FREELANCE BOOKING FORM'
    logo_path: str | None = None
    currency_symbol: str = "£"
    acknowledgement: str = (
        "This form is filled, duly signed and the details above are "
        "understood by both parties."
    )
    billing_heading: str = "For billing, please address invoice to:"
    billing_address: tuple[str, ...] = ()
    notice_heading: str = "IMPORTANT NOTICE"
    notice_text: str = ""


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SmtpSettings:
    """Outbound SMTP relay used by SmtpTransport."""

    host: str = "localhost"
    port: int = 25
    username: str | None = None
    password: str | None = None
    use_tls: bool = False
    timeout_seconds: float = 30.0


# ---------------------------------------------------------------------------
# Workflow
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WorkflowConfig:
    """Complete runtime configuration for the booking-form workflow."""

    operations_mailbox: str
    sender_address: str
    database_url: str = "sqlite:///booking_workflow.db"
    organisation_name: str = "London Operations"
    app_url: str = "http://localhost:3000"
    artifact_namespace: str = "booking-forms"
    artifact_root: str | None = None
    grace_delay_seconds: float = 30.0
    sweep_batch_size: int = 20
    sweep_interval_seconds: float = 60.0
    claim_timeout_seconds: float = 600.0
    retry_failed: bool = True
    max_attempts: int = 3
    internal_company_pattern: str | None = None
    document: DocumentSettings = field(default_factory=DocumentSettings)
    smtp: SmtpSettings = field(default_factory=SmtpSettings)
