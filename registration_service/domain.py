"""
Domain records shared by the services and the repositories.
Status: PENDING -> COMPLETED | FAILED (payment), NOT_ARRIVED -> CHECKED_IN
"""

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

PENDING = "pending"
COMPLETED = "completed"
FAILED = "failed"

PAYMENT_STATUSES = (PENDING, COMPLETED, FAILED)
TERMINAL_PAYMENT_STATUSES = {COMPLETED, FAILED}

EVENT_UPCOMING = "upcoming"


@dataclass
class Event:
    id: str
    title: str
    status: str = EVENT_UPCOMING
    has_internal_registration: bool = True
    registration_deadline: Optional[datetime] = None
    event_date: Optional[datetime] = None
    location: Optional[str] = None

    def is_accepting_registrations(self, now):
        if not self.has_internal_registration or self.status != EVENT_UPCOMING:
            return False
        deadline = self.registration_deadline
        if deadline is not None:
            if deadline.tzinfo is None:
                deadline = deadline.replace(tzinfo=timezone.utc)
            if now > deadline:
                return False
        return True


@dataclass
class PricingOption:
    event_id: str
    participation_type: str
    price: Decimal
    description: Optional[str] = None
    is_active: bool = True
    display_order: int = 0
    id: Optional[int] = None

    def to_dict(self):
        return {
            "id": self.id,
            "event_id": self.event_id,
            "participation_type": self.participation_type,
            "price": float(self.price),
            "description": self.description,
            "is_active": self.is_active,
            "display_order": self.display_order,
        }


@dataclass
class InterestArea:
    event_id: str
    name: str
    description: Optional[str] = None
    is_active: bool = True
    display_order: int = 0
    id: Optional[int] = None

    def to_dict(self):
        return {
            "id": self.id,
            "event_id": self.event_id,
            "name": self.name,
            "description": self.description,
            "is_active": self.is_active,
            "display_order": self.display_order,
        }


@dataclass
class Registration:
    id: str
    event_id: str
    full_name: str
    email: str
    phone_number: str
    participation_type: str
    price_amount: Decimal
    payment_reference: str
    interest_areas: list = field(default_factory=list)
    organization: Optional[str] = None
    designation: Optional[str] = None
    networking_purpose: Optional[str] = None
    payment_status: str = PENDING
    gateway_reference: Optional[str] = None
    paid_amount: Optional[Decimal] = None
    payment_date: Optional[datetime] = None
    credential_token: Optional[str] = None
    credential_image_url: Optional[str] = None
    email_sent: bool = False
    email_sent_at: Optional[datetime] = None
    checked_in: bool = False
    checked_in_at: Optional[datetime] = None
    checked_in_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_paid(self):
        return self.payment_status == COMPLETED

    def copy(self):
        return copy.deepcopy(self)

    def to_dict(self):
        def iso(value):
            return value.isoformat() if value else None

        return {
            "id": self.id,
            "event_id": self.event_id,
            "full_name": self.full_name,
            "email": self.email,
            "phone_number": self.phone_number,
            "organization": self.organization,
            "designation": self.designation,
            "participation_type": self.participation_type,
            "interest_areas": list(self.interest_areas),
            "networking_purpose": self.networking_purpose,
            "price_amount": float(self.price_amount),
            "payment_status": self.payment_status,
            "payment_reference": self.payment_reference,
            "paid_amount": float(self.paid_amount) if self.paid_amount is not None else None,
            "payment_date": iso(self.payment_date),
            "qr_code_data": self.credential_token,
            "qr_code_url": self.credential_image_url,
            "email_sent": self.email_sent,
            "checked_in": self.checked_in,
            "checked_in_at": iso(self.checked_in_at),
            "checked_in_by": self.checked_in_by,
            "created_at": iso(self.created_at),
        }


@dataclass(frozen=True)
class PaymentResult:
    """What a payment provider reports back, whatever its wire shape."""

    reference: str
    status: str
    amount: Optional[Decimal] = None
    description: Optional[str] = None
    transaction_date: Optional[datetime] = None
    phone: Optional[str] = None


@dataclass(frozen=True)
class PaymentInitiation:
    gateway_reference: str
    payment_url: Optional[str] = None


@dataclass(frozen=True)
class Credential:
    token: str
    image_url: str


@dataclass(frozen=True)
class CredentialPayload:
    id: str
    name: str
    email: str
    type: str
    timestamp: int


@dataclass(frozen=True)
class CheckInResult:
    registration: Registration
    already_checked_in: bool


@dataclass(frozen=True)
class RegistrationReceipt:
    registration: Registration
    payment_url: Optional[str]

    @property
    def amount(self):
        return self.registration.price_amount

    @property
    def reference(self):
        return self.registration.payment_reference
