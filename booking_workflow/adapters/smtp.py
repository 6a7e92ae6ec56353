"""
SMTP NotificationTransport.

Sends each ``OutboundMessage`` as a multipart/mixed email with the HTML body
and PDF attachments.  The idempotency token travels as the
``X-Idempotency-Key`` header so a relay or downstream mailbox rule can drop
repeats.  SMTP failures are returned as a failed ``DeliveryResult``.
"""

from __future__ import annotations

import smtplib
from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import make_msgid

from booking_config.schema import SmtpSettings
from booking_kernel.exceptions import TransportError
from booking_kernel.logging_config import get_logger
from booking_workflow.domain.types import DeliveryResult, OutboundMessage

logger = get_logger("workflow.smtp")

IDEMPOTENCY_HEADER = "X-Idempotency-Key"


class SmtpTransport:
    def __init__(self, settings: SmtpSettings, sender: str):
        self._settings = settings
        self._sender = sender

    def build_mime(self, message: OutboundMessage) -> MIMEMultipart:
        mime = MIMEMultipart("mixed")
        mime["From"] = self._sender
        mime["To"] = message.to
        mime["Subject"] = message.subject
        mime["Message-ID"] = make_msgid()
        if message.idempotency_token:
            mime[IDEMPOTENCY_HEADER] = message.idempotency_token
        mime.attach(MIMEText(message.html_body, "html", "utf-8"))
        for attachment in message.attachments:
            _, _, subtype = attachment.content_type.partition("/")
            part = MIMEApplication(attachment.content, _subtype=subtype or "octet-stream")
            part.add_header("Content-Disposition", "attachment", filename=attachment.filename)
            mime.attach(part)
        return mime

    def send(self, message: OutboundMessage) -> DeliveryResult:
        mime = self.build_mime(message)
        s = self._settings
        try:
            with smtplib.SMTP(s.host, s.port, timeout=s.timeout_seconds) as server:
                server.ehlo()
                if s.use_tls:
                    server.starttls()
                    server.ehlo()
                if s.username:
                    server.login(s.username, s.password or "")
                server.send_message(mime)
        except (smtplib.SMTPException, OSError) as exc:
            error = TransportError(message.to, str(exc))
            logger.warning(
                "smtp_send_failed",
                extra={"error_code": error.code, "token": message.idempotency_token},
            )
            return DeliveryResult(success=False, error=str(error))

        return DeliveryResult(success=True, message_id=mime["Message-ID"])
