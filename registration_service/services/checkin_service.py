"""
Check-in Service — door check-in for paid registrations.

NOT_ARRIVED -> CHECKED_IN is the only transition and it happens once. Repeat
scans and racing scanners get already_checked_in=True, never an error.
"""

from datetime import datetime, timezone

import structlog

from registration_service import domain
from registration_service.errors import InvalidCredential, NotFound, PaymentNotCompleted, ValidationFailed
from registration_service.services.credentials import decode_token

logger = structlog.get_logger(__name__)


def _utcnow():
    return datetime.now(timezone.utc)


class CheckInService:

    def __init__(self, registrations, issuer, clock=_utcnow):
        self.registrations = registrations
        self.issuer = issuer
        self.clock = clock

    def find_by_email(self, event_id, email):
        # Unpaid registrations are reported exactly like missing ones.
        if not email or not email.strip():
            raise ValidationFailed("Email parameter required")
        registration = self.registrations.find_completed_by_email(event_id, email)
        if registration is None:
            raise NotFound("Registration not found or payment not completed")
        return registration

    def check_in(self, registration_id, staff_id, event_id=None):
        registration = self.registrations.get(registration_id)
        if registration is None or (event_id is not None and registration.event_id != str(event_id)):
            raise NotFound("Registration not found")
        if registration.payment_status != domain.COMPLETED:
            raise PaymentNotCompleted()
        if registration.checked_in:
            return domain.CheckInResult(registration=registration, already_checked_in=True)

        if self.registrations.mark_checked_in(registration.id, staff_id, self.clock()):
            logger.info("attendee_checked_in", registration_id=registration.id, checked_in_by=staff_id)
            return domain.CheckInResult(
                registration=self.registrations.get(registration.id),
                already_checked_in=False,
            )

        # Another scanner won the compare-and-set.
        logger.info("check_in_race_lost", registration_id=registration.id, staff_id=staff_id)
        return domain.CheckInResult(
            registration=self.registrations.get(registration.id),
            already_checked_in=True,
        )

    def check_in_token(self, event_id, token, staff_id):
        """Scanner flow: verify the QR text, match it to what was issued, check in."""
        payload = self.issuer.verify(token)
        if payload is None:
            raise InvalidCredential(valid=False)

        registration = self.registrations.get(payload.id)
        if registration is None or registration.event_id != str(event_id):
            raise NotFound("Registration not found")
        if decode_token(registration.credential_token) != payload:
            logger.warning("credential_mismatch", registration_id=registration.id)
            raise InvalidCredential("This code does not match the credential issued for the registration.", valid=False)

        return self.check_in(registration.id, staff_id, event_id=event_id)
