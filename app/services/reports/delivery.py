"""Email delivery for weekly reports.

The SMTP transport is a capability: ``build_delivery_channel`` returns a channel
only when SMTP host and credentials are configured, otherwise None and the
pipeline records the delivery as skipped.
"""

from __future__ import annotations

import html
import logging
import smtplib
from abc import ABC, abstractmethod
from datetime import UTC, date, datetime
from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from app.config import get_settings
from app.services.reports.exceptions import ConfigurationError, DeliveryError
from app.services.reports.types import DeliveryOutcome

logger = logging.getLogger(__name__)


def build_subject(today: date) -> str:
    return f"Your MindLedger Weekly Insights - {today:%b} {today.day}, {today.year}"


def attachment_filename(today: date) -> str:
    return f"mindledger-weekly-report-{today.isoformat()}.pdf"


def _build_html_email(name: str | None) -> str:
    """Build the HTML body; greets by first name or "there"."""
    greeting = html.escape(name.strip()) if name and name.strip() else "there"
    return (
        "<html><body>"
        '<div style="font-family:Georgia,serif;max-width:600px;margin:0 auto;padding:20px;">'
        '<h1 style="color:#4A7C59;">Your Weekly Mind Report</h1>'
        f"<p>Hi {greeting},</p>"
        "<p>Your weekly psychological insights report is ready. This summary shows your "
        "cognitive patterns and progress from the past 7 days.</p>"
        '<p style="color:#666;font-size:14px;">Keep up the self-awareness journey!</p>'
        '<p style="color:#999;font-size:12px;">- The MindLedger Team</p>'
        "</div>"
        "</body></html>"
    )


def _build_text_email(name: str | None) -> str:
    greeting = name.strip() if name and name.strip() else "there"
    lines = [
        f"Hi {greeting},",
        "",
        "Your weekly psychological insights report is ready (PDF attached).",
        "It shows your cognitive patterns and progress from the past 7 days.",
        "",
        "Keep up the self-awareness journey!",
        "- The MindLedger Team",
    ]
    return "\n".join(lines)


class DeliveryChannel(ABC):
    """Sends a rendered report to one recipient."""

    @abstractmethod
    def send(self, address: str, name: str | None, artifact: bytes) -> None:
        """Send or raise DeliveryError."""
        ...

    def deliver(self, address: str, name: str | None, artifact: bytes) -> DeliveryOutcome:
        """Send and report the outcome; transport failures become ``failed``."""
        try:
            self.send(address, name, artifact)
        except DeliveryError as exc:
            logger.error("report_email_failed: recipient=%s error=%s", address, exc)
            return DeliveryOutcome(status="failed", detail=str(exc))
        logger.info("report_email_sent: recipient=%s bytes=%d", address, len(artifact))
        return DeliveryOutcome(status="sent", sent_at=datetime.now(UTC))


class SmtpDeliveryChannel(DeliveryChannel):
    """SMTP with STARTTLS, one message per report with the PDF attached."""

    def __init__(
        self,
        host: str,
        port: int,
        user: str,
        password: str,
        sender: str,
        timeout: float = 30.0,
    ) -> None:
        if not host:
            raise ConfigurationError("SMTP host not configured")
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.sender = sender
        self.timeout = timeout

    def build_message(
        self, address: str, name: str | None, artifact: bytes, today: date | None = None
    ) -> MIMEMultipart:
        today = today or date.today()
        msg = MIMEMultipart("mixed")
        msg["Subject"] = build_subject(today)
        msg["From"] = self.sender
        msg["To"] = address

        body = MIMEMultipart("alternative")
        body.attach(MIMEText(_build_text_email(name), "plain"))
        body.attach(MIMEText(_build_html_email(name), "html"))
        msg.attach(body)

        attachment = MIMEApplication(artifact, _subtype="pdf")
        attachment.add_header(
            "Content-Disposition", "attachment", filename=attachment_filename(today)
        )
        msg.attach(attachment)
        return msg

    def send(self, address: str, name: str | None, artifact: bytes) -> None:
        msg = self.build_message(address, name, artifact)
        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                server.starttls()
                if self.user:
                    server.login(self.user, self.password)
                server.sendmail(self.sender, [address], msg.as_string())
        except smtplib.SMTPAuthenticationError as exc:
            raise DeliveryError("could not authenticate with SMTP server") from exc
        except smtplib.SMTPRecipientsRefused as exc:
            raise DeliveryError(f"recipient refused: {address}") from exc
        except (smtplib.SMTPException, OSError) as exc:
            raise DeliveryError(str(exc) or type(exc).__name__) from exc


def build_delivery_channel(settings=None) -> DeliveryChannel | None:
    """Return the SMTP channel, or None when SMTP is not configured."""
    if settings is None:
        settings = get_settings()

    if not settings.smtp_configured:
        logger.warning(
            "Email transport not configured - reports will be generated but not sent"
        )
        return None
    return SmtpDeliveryChannel(
        host=settings.smtp_host,
        port=getattr(settings, "smtp_port", 587),
        user=settings.smtp_user,
        password=settings.smtp_password,
        sender=getattr(settings, "smtp_from", "") or settings.smtp_user,
        timeout=getattr(settings, "smtp_timeout", 30.0),
    )
