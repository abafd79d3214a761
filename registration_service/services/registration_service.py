"""
Registration Service
Handles registration creation with a price snapshot and the payment lifecycle:
    pending -> completed  (credential minted in the same atomic step)
    pending -> failed
Both terminal. Redelivered or concurrent payment results are no-ops.
"""

import re
import secrets
import time
import uuid
from datetime import datetime, timezone

import structlog

from registration_service import domain
from registration_service.errors import (
    CollaboratorFailure,
    DuplicateRegistration,
    InvalidParticipationType,
    NotFound,
    RegistrationClosed,
    ValidationFailed,
)

logger = structlog.get_logger(__name__)

EMAIL_REGEX = re.compile(r'^[a-zA-Z0-9_.+-]+@[a-zA-Z0-9-]+\.[a-zA-Z0-9-.]+$')
REQUIRED_FIELDS = ["full_name", "email", "phone_number", "participation_type"]


def generate_payment_reference(prefix="EVT"):
    return f"{prefix}-{int(time.time() * 1000)}-{secrets.randbelow(1000000)}"


def _utcnow():
    return datetime.now(timezone.utc)


def _optional_text(data, name):
    value = data.get(name)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _interest_areas(value):
    if value is None:
        return []
    if not isinstance(value, (list, tuple)):
        raise ValidationFailed("interest_areas must be a list")
    areas = []
    for item in value:
        name = str(item).strip()
        if name and name not in areas:
            areas.append(name)
    return areas


class RegistrationService:

    def __init__(self, events, registrations, pricing, gateway, issuer, notifier, clock=_utcnow):
        self.events = events
        self.registrations = registrations
        self.pricing = pricing
        self.gateway = gateway
        self.issuer = issuer
        self.notifier = notifier
        self.clock = clock

    def _validate(self, data):
        missing = [f for f in REQUIRED_FIELDS if not str(data.get(f) or "").strip()]
        if missing:
            raise ValidationFailed(f"Missing required fields: {', '.join(missing)}", fields=missing)

        email = str(data["email"]).strip().lower()
        if not EMAIL_REGEX.match(email):
            raise ValidationFailed("Invalid email format", fields=["email"])

        return {
            "full_name": str(data["full_name"]).strip(),
            "email": email,
            "phone_number": self.gateway.normalize_phone(str(data["phone_number"])),
            "participation_type": str(data["participation_type"]).strip(),
            "organization": _optional_text(data, "organization"),
            "designation": _optional_text(data, "designation"),
            "networking_purpose": _optional_text(data, "networking_purpose"),
            "interest_areas": _interest_areas(data.get("interest_areas")),
        }

    def create_registration(self, event_id, data):
        """
        Register an attendee and start the payment.

        The price is copied from the catalog now and never recomputed. If the
        provider cannot be reached the registration stays pending and
        CollaboratorFailure is raised; only a payment result moves it on.

        The gateway reference is only known once initiate() returns. A
        provider callback that arrives before it is stored finds no
        registration and is dropped; verify_payment() then recovers the
        outcome by querying the provider with the stored reference.
        """
        fields = self._validate(data)

        event = self.events.get(event_id)
        if event is None:
            raise NotFound("Event not found", event_id=str(event_id))
        if not event.is_accepting_registrations(self.clock()):
            raise RegistrationClosed()

        try:
            option = self.pricing.active_price(event.id, fields["participation_type"])
        except NotFound:
            raise InvalidParticipationType(
                participation_type=fields["participation_type"]
            )

        if self.registrations.find_completed_by_email(event.id, fields["email"]):
            raise DuplicateRegistration()

        registration = self.registrations.add(domain.Registration(
            id=str(uuid.uuid4()),
            event_id=event.id,
            price_amount=option.price,
            payment_reference=generate_payment_reference(),
            created_at=self.clock(),
            **fields,
        ))
        logger.info(
            "registration_created",
            registration_id=registration.id,
            event_id=event.id,
            participation_type=registration.participation_type,
            price_amount=str(registration.price_amount),
        )

        try:
            initiation = self.gateway.initiate(registration, event)
        except CollaboratorFailure:
            logger.error(
                "payment_initiation_failed",
                registration_id=registration.id,
                reference=registration.payment_reference,
                gateway=self.gateway.name,
            )
            raise

        registration = self.registrations.set_gateway_reference(registration.id, initiation.gateway_reference)
        return domain.RegistrationReceipt(registration=registration, payment_url=initiation.payment_url)

    def get_registration(self, registration_id):
        registration = self.registrations.get(registration_id)
        if registration is None:
            raise NotFound("Registration not found")
        return registration

    def apply_payment_result(self, result):
        """
        Apply a provider's payment outcome exactly once.

        A registration already completed or failed is returned unchanged.
        Raises NotFound when the reference matches nothing.
        """
        if result.status not in domain.TERMINAL_PAYMENT_STATUSES:
            raise ValidationFailed(f"Unsupported payment status '{result.status}'")

        registration, transitioned = self.registrations.settle_payment(
            result.reference, result, self.issuer.mint
        )
        if registration is None:
            raise NotFound("No registration for payment reference", reference=result.reference)

        if not transitioned:
            logger.info(
                "payment_result_ignored",
                registration_id=registration.id,
                reference=result.reference,
                current_status=registration.payment_status,
                reported_status=result.status,
            )
            return registration

        logger.info(
            "payment_settled",
            registration_id=registration.id,
            reference=result.reference,
            status=registration.payment_status,
            description=result.description,
        )
        if result.amount is not None and result.amount != registration.price_amount:
            logger.warning(
                "payment_amount_mismatch",
                registration_id=registration.id,
                expected=str(registration.price_amount),
                received=str(result.amount),
            )

        if registration.is_paid:
            self._send_confirmation(registration)
            registration = self.registrations.get(registration.id)
        return registration

    def verify_payment(self, reference):
        """Client-driven confirmation for when the webhook has not arrived yet."""
        registration = self.registrations.get_by_reference(reference)
        if registration is None:
            raise NotFound("Registration not found", reference=reference)
        if registration.payment_status in domain.TERMINAL_PAYMENT_STATUSES:
            return registration

        result = self.gateway.fetch_result(registration)
        if result is None:
            return registration
        return self.apply_payment_result(result)

    def _send_confirmation(self, registration):
        event = self.events.get(registration.event_id)
        try:
            self.notifier.send_registration_confirmation(registration, event)
        except CollaboratorFailure as e:
            logger.warning("confirmation_email_failed", registration_id=registration.id, error=str(e))
            return
        self.registrations.mark_email_sent(registration.id, self.clock())
