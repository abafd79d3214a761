"""
Pricing and interest-area rows, owned by event administration.
"""

from registration_service.extensions import db
from registration_service import domain


class PricingOptionRecord(db.Model):
    __tablename__ = 'pricing_options'

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    event_id = db.Column(db.Uuid(as_uuid=True), db.ForeignKey('events.event_id'), nullable=False, index=True)
    participation_type = db.Column(db.String(100), nullable=False)
    price = db.Column(db.Numeric(10, 2), nullable=False)
    description = db.Column(db.Text)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    display_order = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, server_default=db.func.now())

    def to_domain(self):
        return domain.PricingOption(
            id=self.id,
            event_id=str(self.event_id),
            participation_type=self.participation_type,
            price=self.price,
            description=self.description,
            is_active=self.is_active,
            display_order=self.display_order,
        )


class InterestAreaRecord(db.Model):
    __tablename__ = 'interest_areas'

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    event_id = db.Column(db.Uuid(as_uuid=True), db.ForeignKey('events.event_id'), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    display_order = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, server_default=db.func.now())

    def to_domain(self):
        return domain.InterestArea(
            id=self.id,
            event_id=str(self.event_id),
            name=self.name,
            description=self.description,
            is_active=self.is_active,
            display_order=self.display_order,
        )
