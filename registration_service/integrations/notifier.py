"""
Outbound registration confirmation email.
Delivery failures never affect the registration; callers log and move on.
"""

from abc import ABC, abstractmethod
from html import escape

import requests
import structlog

from registration_service.errors import CollaboratorFailure

logger = structlog.get_logger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"


class Notifier(ABC):

    @abstractmethod
    def send_registration_confirmation(self, registration, event):
        """Deliver the confirmation with the attendee's QR code."""


class LoggingNotifier(Notifier):
    """Used when no email provider is configured."""

    def send_registration_confirmation(self, registration, event):
        logger.info(
            "confirmation_email_not_configured",
            registration_id=registration.id,
            email=registration.email,
        )


class ResendNotifier(Notifier):

    def __init__(self, api_key, sender, timeout=10.0):
        self.api_key = api_key
        self.sender = sender
        self.timeout = timeout

    def _render(self, registration, event):
        title = escape(event.title) if event else "our event"
        when = event.event_date.strftime("%d %B %Y, %H:%M") if event and event.event_date else "TBA"
        where = escape(event.location) if event and event.location else "TBA"
        return (
            f"<p>Hi {escape(registration.full_name)},</p>"
            f"<p>Your registration for <strong>{title}</strong> is confirmed.</p>"
            f"<p>Participation: {escape(registration.participation_type)}<br>"
            f"Amount paid: {registration.price_amount}<br>"
            f"Date: {when}<br>Location: {where}</p>"
            f"<p>Please present this QR code at the entrance:</p>"
            f"<p><img src=\"{escape(registration.credential_image_url or '')}\" "
            f"alt=\"Registration QR code\" width=\"250\"></p>"
            f"<p>Registration ID: {registration.id}</p>"
        )

    def send_registration_confirmation(self, registration, event):
        subject = f"{event.title if event else 'Event'} Registration Confirmation - Your QR Code Inside"
        try:
            response = requests.post(
                RESEND_API_URL,
                json={
                    "from": self.sender,
                    "to": [registration.email],
                    "subject": subject,
                    "html": self._render(registration, event),
                },
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise CollaboratorFailure(f"Email delivery failed: {e}")

        if response.status_code >= 400:
            raise CollaboratorFailure(f"Email provider returned {response.status_code}: {response.text[:200]}")

        logger.info("confirmation_email_sent", registration_id=registration.id)
