"""
Notification senders for the two fixed booking-form recipients.

Contract:
    ``NotificationSender.send_to_approver`` and ``send_to_operations`` take
    ``(record, context, document_bytes, idempotency_key)`` and return a
    ``DeliveryResult``.  Neither raises: transport exceptions become a failed
    result so one recipient's failure never prevents the other's attempt.

Invariants enforced:
    - The attachment is exactly ``document_bytes``; nothing is re-rendered.
    - The transport token is ``{idempotency_key}_{recipient.value}``.
    - An empty approver address fails without calling the transport.
"""

from __future__ import annotations

from datetime import datetime, timezone
from html import escape

from booking_kernel.exceptions import RecipientAddressMissingError
from booking_kernel.logging_config import get_logger
from booking_workflow.domain.types import (
    PLACEHOLDER,
    ApprovalContext,
    Attachment,
    DeliveryResult,
    OutboundMessage,
    Recipient,
    WorkflowRecord,
)
from booking_workflow.ports import NotificationTransport
from booking_workflow.renderer import booking_form_filename, format_currency

logger = get_logger("workflow.notifications")

_CELL = "padding:6px 0;border-bottom:1px solid #e2e8f0"
_LAST_CELL = "padding:6px 0"
_HEADING = "margin:16px 0 8px;font-size:15px;color:#1e293b"


def recipient_token(idempotency_key: str, recipient: Recipient) -> str:
    return f"{idempotency_key}_{recipient.value}"


def message_subject(record: WorkflowRecord) -> str:
    return f"{record.name} – {record.month}"


def format_long_datetime(value: datetime) -> str:
    """``1 March 2024, 10:00:00`` in UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    at = value.astimezone(timezone.utc)
    return f"{at.day} {at:%B %Y}, {at:%H:%M:%S}"


def build_details_table(record: WorkflowRecord, currency_symbol: str = "£") -> str:
    """HTML table of the booking details shared by both messages."""
    additional = (
        format_currency(record.additional_cost, currency_symbol)
        if record.additional_cost > 0 else PLACEHOLDER
    )
    rows = [
        ("Name", escape(record.name)),
        ("Service Description", escape(record.service_description)),
        ("Department", escape(record.department)),
        ("Department 2", escape(record.department_2)),
        ("Month", escape(record.month)),
        ("Days", escape(record.days)),
        ("Number of days", str(record.number_of_days)),
        ("Service rate (per day)", format_currency(record.service_rate_per_day, currency_symbol)),
        ("Additional Cost", additional),
        ("Additional Cost Reason", escape(record.additional_cost_reason)),
    ]
    lines = [
        '<table style="width:100%;border-collapse:collapse;margin:16px 0;'
        'font-size:14px;color:#334155">'
    ]
    for label, value in rows:
        lines.append(
            f'  <tr><td style="{_CELL}"><strong>{label}:</strong></td>'
            f'<td style="{_CELL}">{value}</td></tr>'
        )
    lines.append(
        f'  <tr><td style="{_LAST_CELL}"><strong>Total Amount:</strong></td>'
        f'<td style="{_LAST_CELL}">{format_currency(record.amount, currency_symbol)}</td></tr>'
    )
    lines.append("</table>")
    return "\n".join(lines)


class NotificationSender:
    """Builds and dispatches the approver and operations messages.

    Args:
        transport: Outbound transport.
        operations_mailbox: Fixed Recipient B address.
        organisation_name: Signature shown in the message footer.
        app_url: Base URL for the logo image in the message header.
        currency_symbol: Prefix used for money values.
    """

    def __init__(
        self,
        transport: NotificationTransport,
        operations_mailbox: str,
        organisation_name: str = "London Operations",
        app_url: str = "",
        currency_symbol: str = "£",
    ):
        self._transport = transport
        self._operations_mailbox = operations_mailbox
        self._organisation_name = organisation_name
        self._app_url = app_url.rstrip("/")
        self._currency_symbol = currency_symbol

    # -------------------------------------------------------------------------
    # Public senders
    # -------------------------------------------------------------------------

    def send_to_approver(
        self,
        record: WorkflowRecord,
        context: ApprovalContext,
        document_bytes: bytes,
        idempotency_key: str,
    ) -> DeliveryResult:
        """Recipient A: confirmation to the approving manager."""
        to = (context.approver_email or "").strip()
        if not to:
            error = RecipientAddressMissingError(Recipient.APPROVER.label)
            logger.warning(
                "notification_address_missing",
                extra={"recipient": Recipient.APPROVER.value, "error_code": error.code},
            )
            return DeliveryResult(success=False, error=str(error))

        contact = escape(self._operations_mailbox)
        body = f"""
<p>Dear {escape(context.approver_name)},</p>
<p>This is to confirm that you have approved the freelancer booking form and payment details for <strong>{escape(record.name)}</strong> for <strong>{escape(record.month)}</strong>. The approved Booking Form is attached.</p>
<h3 style="{_HEADING}">Booking Form Details</h3>
{build_details_table(record, self._currency_symbol)}
<p>Please note that this approval will be recorded as final acceptance for processing and audit purposes.</p>
<p>If you believe this approval was made in error or if any corrections are required, please contact <a href="mailto:{contact}">{contact}</a> immediately. Otherwise, this approval will be treated as final and recorded accordingly.</p>
<p>Kind regards,</p>
<p><strong>Attachment:</strong> Booking Form (PDF)</p>"""
        return self._dispatch(
            Recipient.APPROVER, to, record, body, document_bytes, idempotency_key,
        )

    def send_to_operations(
        self,
        record: WorkflowRecord,
        context: ApprovalContext,
        document_bytes: bytes,
        idempotency_key: str,
    ) -> DeliveryResult:
        """Recipient B: filing copy to the fixed operations mailbox."""
        body = f"""
<p>Dear Operations Team,</p>
<p>The following freelancer booking form and payment details have been approved.</p>
<p><strong>Approved By:</strong> {escape(context.approver_name)} ({escape(context.approver_email)})<br>
<strong>Approval Date:</strong> {escape(format_long_datetime(context.approved_at))}</p>
<h3 style="{_HEADING}">Booking Form Details</h3>
{build_details_table(record, self._currency_symbol)}
<p>The approved Booking Form is attached.</p>
<p>Please file/record this approval in the relevant finance and compliance folder for {escape(record.month)}.</p>
<p>Kind regards,</p>
<p><strong>Automated Finance Workflow System</strong><br>{escape(self._organisation_name)}</p>
<p><strong>Attachment:</strong> Booking Form (PDF)</p>"""
        return self._dispatch(
            Recipient.OPERATIONS, self._operations_mailbox, record, body,
            document_bytes, idempotency_key,
        )

    def send(
        self,
        recipient: Recipient,
        record: WorkflowRecord,
        context: ApprovalContext,
        document_bytes: bytes,
        idempotency_key: str,
    ) -> DeliveryResult:
        if recipient is Recipient.APPROVER:
            return self.send_to_approver(record, context, document_bytes, idempotency_key)
        return self.send_to_operations(record, context, document_bytes, idempotency_key)

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    def _wrap(self, body: str) -> str:
        logo = ""
        if self._app_url:
            logo = (
                '<div style="text-align:center;margin-bottom:20px">'
                f'<img src="{escape(self._app_url)}/logo.png" alt="" width="64" '
                'style="max-width:64px;height:auto;display:inline-block" /></div>'
            )
        return (
            '<!DOCTYPE html><html><head><meta charset="utf-8">'
            '<meta name="viewport" content="width=device-width,initial-scale=1"></head>\n'
            '<body style="margin:0;padding:24px;font-family:-apple-system,'
            "BlinkMacSystemFont,'Segoe UI',Roboto,sans-serif;font-size:14px;"
            'color:#334155;line-height:1.6">\n'
            f"{logo}\n{body}\n"
            '<p style="margin-top:24px;font-size:12px;color:#64748b">'
            f"{escape(self._organisation_name)}</p>\n"
            "</body></html>"
        )

    def _dispatch(
        self,
        recipient: Recipient,
        to: str,
        record: WorkflowRecord,
        body: str,
        document_bytes: bytes,
        idempotency_key: str,
    ) -> DeliveryResult:
        message = OutboundMessage(
            to=to,
            subject=message_subject(record),
            html_body=self._wrap(body),
            attachments=(Attachment(booking_form_filename(record), document_bytes),),
            idempotency_token=recipient_token(idempotency_key, recipient),
        )
        try:
            result = self._transport.send(message)
        except Exception as exc:
            logger.error(
                "notification_transport_error",
                extra={"recipient": recipient.value},
                exc_info=True,
            )
            return DeliveryResult(success=False, error=str(exc) or type(exc).__name__)

        if result.success:
            logger.info(
                "notification_sent",
                extra={"recipient": recipient.value, "message_id": result.message_id},
            )
        else:
            logger.warning(
                "notification_failed",
                extra={"recipient": recipient.value, "error": result.error},
            )
        return result
