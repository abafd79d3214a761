"""
SQLAlchemy repositories.

Both state transitions are single conditional UPDATE statements checked by
rowcount, so concurrent writers on PostgreSQL serialize on the row lock and
only one of them sees rowcount == 1.
"""

import uuid
from datetime import datetime, timezone

import structlog
from sqlalchemy import false, or_, update

from registration_service import domain
from registration_service.extensions import db
from registration_service.models import (
    EventRecord,
    InterestAreaRecord,
    PricingOptionRecord,
    RegistrationRecord,
)
from registration_service.repositories.base import (
    EventRepository,
    InterestAreaRepository,
    PricingRepository,
    RegistrationRepository,
)

logger = structlog.get_logger(__name__)


def _as_uuid(value):
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        return None


class SqlEventRepository(EventRepository):

    def get(self, event_id):
        key = _as_uuid(event_id)
        if key is None:
            return None
        record = db.session.get(EventRecord, key)
        return record.to_domain() if record else None

    def add(self, event):
        record = EventRecord(
            event_id=_as_uuid(event.id) or uuid.uuid4(),
            title=event.title,
            status=event.status,
            has_internal_registration=event.has_internal_registration,
            registration_deadline=event.registration_deadline,
            event_date=event.event_date,
            location=event.location,
        )
        db.session.add(record)
        db.session.commit()
        return record.to_domain()


class SqlPricingRepository(PricingRepository):

    def list_for_event(self, event_id, participation_type=None, active_only=True):
        key = _as_uuid(event_id)
        if key is None:
            return []
        query = PricingOptionRecord.query.filter_by(event_id=key)
        if participation_type is not None:
            query = query.filter_by(participation_type=participation_type)
        if active_only:
            query = query.filter_by(is_active=True)
        rows = query.order_by(PricingOptionRecord.display_order, PricingOptionRecord.id).all()
        return [row.to_domain() for row in rows]

    def replace(self, event_id, options):
        key = _as_uuid(event_id)
        try:
            PricingOptionRecord.query.filter_by(event_id=key).delete()
            for option in options:
                db.session.add(PricingOptionRecord(
                    event_id=key,
                    participation_type=option.participation_type,
                    price=option.price,
                    description=option.description,
                    is_active=option.is_active,
                    display_order=option.display_order,
                ))
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        return self.list_for_event(event_id, active_only=False)


class SqlInterestAreaRepository(InterestAreaRepository):

    def list_for_event(self, event_id, active_only=True):
        key = _as_uuid(event_id)
        if key is None:
            return []
        query = InterestAreaRecord.query.filter_by(event_id=key)
        if active_only:
            query = query.filter_by(is_active=True)
        rows = query.order_by(InterestAreaRecord.display_order, InterestAreaRecord.id).all()
        return [row.to_domain() for row in rows]

    def replace(self, event_id, areas):
        key = _as_uuid(event_id)
        try:
            InterestAreaRecord.query.filter_by(event_id=key).delete()
            for area in areas:
                db.session.add(InterestAreaRecord(
                    event_id=key,
                    name=area.name,
                    description=area.description,
                    is_active=area.is_active,
                    display_order=area.display_order,
                ))
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        return self.list_for_event(event_id, active_only=False)


class SqlRegistrationRepository(RegistrationRepository):

    def add(self, registration):
        record = RegistrationRecord.from_domain(registration)
        try:
            db.session.add(record)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        return record.to_domain()

    def get(self, registration_id):
        key = _as_uuid(registration_id)
        if key is None:
            return None
        record = db.session.get(RegistrationRecord, key, populate_existing=True)
        return record.to_domain() if record else None

    def _find_by_reference(self, reference):
        return RegistrationRecord.query.filter(
            or_(
                RegistrationRecord.payment_reference == reference,
                RegistrationRecord.gateway_reference == reference,
            )
        ).first()

    def get_by_reference(self, reference):
        record = self._find_by_reference(reference)
        return record.to_domain() if record else None

    def find_completed_by_email(self, event_id, email):
        key = _as_uuid(event_id)
        if key is None:
            return None
        record = (
            RegistrationRecord.query
            .filter_by(event_id=key, email=email.strip().lower(), payment_status=domain.COMPLETED)
            .order_by(RegistrationRecord.created_at.desc())
            .first()
        )
        return record.to_domain() if record else None

    def set_gateway_reference(self, registration_id, gateway_reference):
        key = _as_uuid(registration_id)
        stmt = (
            update(RegistrationRecord)
            .where(
                RegistrationRecord.registration_id == key,
                RegistrationRecord.gateway_reference.is_(None),
            )
            .values(gateway_reference=gateway_reference, updated_at=datetime.now(timezone.utc))
        )
        try:
            db.session.execute(stmt)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        return self.get(registration_id)

    def settle_payment(self, reference, result, on_completed):
        record = self._find_by_reference(reference)
        if record is None:
            return None, False
        key = record.registration_id
        now = datetime.now(timezone.utc)

        stmt = (
            update(RegistrationRecord)
            .where(
                RegistrationRecord.registration_id == key,
                RegistrationRecord.payment_status == domain.PENDING,
            )
            .values(
                payment_status=result.status,
                paid_amount=result.amount,
                payment_date=result.transaction_date or now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        try:
            outcome = db.session.execute(stmt)
            if outcome.rowcount != 1:
                db.session.rollback()
                logger.info("payment_already_settled", registration_id=str(key), reference=reference)
                return self.get(key), False

            if result.status == domain.COMPLETED:
                pending = db.session.get(RegistrationRecord, key, populate_existing=True)
                credential = on_completed(pending.to_domain())
                db.session.execute(
                    update(RegistrationRecord)
                    .where(RegistrationRecord.registration_id == key)
                    .values(
                        credential_token=credential.token,
                        credential_image_url=credential.image_url,
                    )
                    .execution_options(synchronize_session=False)
                )
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        return self.get(key), True

    def mark_checked_in(self, registration_id, staff_id, checked_in_at):
        key = _as_uuid(registration_id)
        if key is None:
            return False
        stmt = (
            update(RegistrationRecord)
            .where(
                RegistrationRecord.registration_id == key,
                RegistrationRecord.checked_in == false(),
                RegistrationRecord.payment_status == domain.COMPLETED,
            )
            .values(
                checked_in=True,
                checked_in_at=checked_in_at,
                checked_in_by=staff_id,
                updated_at=checked_in_at,
            )
            .execution_options(synchronize_session=False)
        )
        try:
            outcome = db.session.execute(stmt)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        return outcome.rowcount == 1

    def mark_email_sent(self, registration_id, sent_at):
        key = _as_uuid(registration_id)
        stmt = (
            update(RegistrationRecord)
            .where(RegistrationRecord.registration_id == key)
            .values(email_sent=True, email_sent_at=sent_at)
            .execution_options(synchronize_session=False)
        )
        try:
            db.session.execute(stmt)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
