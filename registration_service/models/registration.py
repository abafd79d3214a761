"""
Registration Model — Registration Service
Payment status: pending | completed | failed
"""

import uuid
from datetime import datetime, timezone
from registration_service.extensions import db
from registration_service import domain


class RegistrationRecord(db.Model):
    __tablename__ = "registrations"

    registration_id = db.Column(
        db.Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    event_id = db.Column(db.Uuid(as_uuid=True), db.ForeignKey("events.event_id"), nullable=False, index=True)
    full_name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=False, index=True)
    phone_number = db.Column(db.String(32), nullable=False)
    organization = db.Column(db.String(255), nullable=True)
    designation = db.Column(db.String(255), nullable=True)
    participation_type = db.Column(db.String(100), nullable=False)
    interest_areas = db.Column(db.JSON, nullable=False, default=list)
    networking_purpose = db.Column(db.Text, nullable=True)
    price_amount = db.Column(db.Numeric(10, 2), nullable=False)
    payment_status = db.Column(
        db.Enum(*domain.PAYMENT_STATUSES, name="payment_status"),
        nullable=False,
        default="pending"
    )
    payment_reference = db.Column(db.String(64), nullable=False, unique=True)
    gateway_reference = db.Column(db.String(255), nullable=True, unique=True)
    paid_amount = db.Column(db.Numeric(10, 2), nullable=True)
    payment_date = db.Column(db.DateTime(timezone=True), nullable=True)
    credential_token = db.Column(db.Text, nullable=True)
    credential_image_url = db.Column(db.Text, nullable=True)
    email_sent = db.Column(db.Boolean, nullable=False, default=False)
    email_sent_at = db.Column(db.DateTime(timezone=True), nullable=True)
    checked_in = db.Column(db.Boolean, nullable=False, default=False)
    checked_in_at = db.Column(db.DateTime(timezone=True), nullable=True)
    checked_in_by = db.Column(db.String(255), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc)
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc)
    )

    @classmethod
    def from_domain(cls, registration):
        return cls(
            registration_id=uuid.UUID(registration.id),
            event_id=uuid.UUID(registration.event_id),
            full_name=registration.full_name,
            email=registration.email,
            phone_number=registration.phone_number,
            organization=registration.organization,
            designation=registration.designation,
            participation_type=registration.participation_type,
            interest_areas=list(registration.interest_areas),
            networking_purpose=registration.networking_purpose,
            price_amount=registration.price_amount,
            payment_status=registration.payment_status,
            payment_reference=registration.payment_reference,
            gateway_reference=registration.gateway_reference,
            created_at=registration.created_at or datetime.now(timezone.utc),
        )

    def to_domain(self):
        return domain.Registration(
            id=str(self.registration_id),
            event_id=str(self.event_id),
            full_name=self.full_name,
            email=self.email,
            phone_number=self.phone_number,
            organization=self.organization,
            designation=self.designation,
            participation_type=self.participation_type,
            interest_areas=list(self.interest_areas or []),
            networking_purpose=self.networking_purpose,
            price_amount=self.price_amount,
            payment_status=self.payment_status,
            payment_reference=self.payment_reference,
            gateway_reference=self.gateway_reference,
            paid_amount=self.paid_amount,
            payment_date=self.payment_date,
            credential_token=self.credential_token,
            credential_image_url=self.credential_image_url,
            email_sent=self.email_sent,
            email_sent_at=self.email_sent_at,
            checked_in=self.checked_in,
            checked_in_at=self.checked_in_at,
            checked_in_by=self.checked_in_by,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )
