import uuid
from registration_service.extensions import db
from registration_service import domain


class EventRecord(db.Model):
    __tablename__ = 'events'

    event_id = db.Column(db.Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    title = db.Column(db.String(255), nullable=False)
    status = db.Column(
        db.Enum("upcoming", "ongoing", "completed", "cancelled", name="event_status"),
        nullable=False,
        default="upcoming"
    )
    has_internal_registration = db.Column(db.Boolean, nullable=False, default=True)
    registration_deadline = db.Column(db.DateTime(timezone=True))
    event_date = db.Column(db.DateTime(timezone=True))
    location = db.Column(db.String(255))
    created_at = db.Column(db.DateTime, server_default=db.func.now())
    updated_at = db.Column(db.DateTime, server_default=db.func.now(), onupdate=db.func.now())

    def to_domain(self):
        return domain.Event(
            id=str(self.event_id),
            title=self.title,
            status=self.status,
            has_internal_registration=self.has_internal_registration,
            registration_deadline=self.registration_deadline,
            event_date=self.event_date,
            location=self.location,
        )
