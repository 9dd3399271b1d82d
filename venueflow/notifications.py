from html import escape
from typing import Optional
import logging

import httpx
from pydantic import BaseModel

from .config import Settings, get_settings
from .models import BookingRequest, BookingRequestStatus
from .timeutils import format_display

logger = logging.getLogger(__name__)


class NotificationResult(BaseModel):
    success: bool
    message: str
    message_id: Optional[str] = None


class EmailNotifier:
    def __init__(
        self,
        settings: Settings,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.settings = settings
        self.transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.settings.MAIL_API_URL and self.settings.MAIL_API_KEY)

    def send(self, to: str, subject: str, html_body: str) -> NotificationResult:
        """Send one email. Never raises; failures come back as success=False."""
        if not self.configured:
            logger.warning(
                "Mail provider not configured, simulating send to=%s subject=%r body=%r",
                to,
                subject,
                html_body,
            )
            return NotificationResult(
                success=False,
                message="Mail provider not configured. Email content logged.",
            )

        payload = {
            "from": self.settings.MAIL_SENDER,
            "to": [to],
            "subject": subject,
            "html": html_body,
        }
        headers = {"Authorization": f"Bearer {self.settings.MAIL_API_KEY}"}
        try:
            with httpx.Client(
                transport=self.transport, timeout=self.settings.MAIL_TIMEOUT_SECONDS
            ) as client:
                response = client.post(
                    self.settings.MAIL_API_URL, json=payload, headers=headers
                )
                response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("Failed to send email to %s: %s", to, exc)
            return NotificationResult(
                success=False, message=f"Failed to send email: {exc}"
            )

        message_id = None
        if response.headers.get("content-type", "").startswith("application/json"):
            message_id = response.json().get("id")
        logger.info("Sent email to %s (id=%s)", to, message_id)
        return NotificationResult(
            success=True, message="Email sent successfully.", message_id=message_id
        )


def request_decision_email(request: BookingRequest) -> tuple[str, str]:
    """Subject and HTML body telling the submitter what happened to a request."""
    venue = escape(request.requested_venue)
    title = escape(request.requested_title)
    period = (
        f"{format_display(request.requested_start)} to "
        f"{format_display(request.requested_end)}"
    )
    greeting = escape(request.user_display_name or "there")

    if request.status == BookingRequestStatus.APPROVED:
        subject = f"Booking approved: {request.requested_title} at {request.requested_venue}"
        body = (
            f"<p>Hi {greeting},</p>"
            f"<p>Your booking request <strong>{title}</strong> for "
            f"<strong>{venue}</strong> ({period}) has been approved.</p>"
        )
    else:
        subject = f"Booking rejected: {request.requested_title} at {request.requested_venue}"
        body = (
            f"<p>Hi {greeting},</p>"
            f"<p>Your booking request <strong>{title}</strong> for "
            f"<strong>{venue}</strong> ({period}) has been rejected.</p>"
        )
        if request.rejection_reason:
            body += f"<p>Reason: {escape(request.rejection_reason)}</p>"
    return subject, body


def get_notifier() -> EmailNotifier:
    return EmailNotifier(get_settings())
