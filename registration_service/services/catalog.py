"""
Catalog Service — pricing options and interest areas per event.
Read-mostly lookups for the registration flow plus the admin replace-all.
"""

from decimal import Decimal, InvalidOperation

import structlog

from registration_service import domain
from registration_service.errors import NotFound, ValidationFailed

logger = structlog.get_logger(__name__)


def _require_event(events, event_id):
    event = events.get(event_id)
    if event is None:
        raise NotFound("Event not found", event_id=str(event_id))
    return event


def _display_order(value):
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        raise ValidationFailed("display_order must be an integer")


class PricingCatalog:

    def __init__(self, repository, events):
        self.repository = repository
        self.events = events

    def active_price(self, event_id, participation_type):
        """
        Return the single active option for this event and participation type.

        Duplicate active rows are a data problem, not a caller problem: the
        lowest display_order wins and a warning is logged.
        """
        options = self.repository.list_for_event(
            event_id, participation_type=participation_type, active_only=True
        )
        if not options:
            raise NotFound(f"No active price for participation type '{participation_type}'")
        if len(options) > 1:
            logger.warning(
                "duplicate_active_pricing_options",
                event_id=str(event_id),
                participation_type=participation_type,
                option_ids=[o.id for o in options],
            )
        return min(options, key=lambda o: o.display_order)

    def list_active(self, event_id):
        _require_event(self.events, event_id)
        return self.repository.list_for_event(event_id, active_only=True)

    def replace(self, event_id, items):
        _require_event(self.events, event_id)
        if not isinstance(items, list):
            raise ValidationFailed("Invalid pricing data")

        options = []
        for item in items:
            participation_type = (item.get("participation_type") or "").strip() if isinstance(item, dict) else ""
            if not participation_type:
                raise ValidationFailed("Every pricing option needs a participation_type")
            try:
                price = Decimal(str(item.get("price")))
            except (InvalidOperation, ValueError):
                raise ValidationFailed(f"Invalid price for '{participation_type}'")
            if not price.is_finite() or price < 0:
                raise ValidationFailed(f"Invalid price for '{participation_type}'")
            options.append(domain.PricingOption(
                event_id=str(event_id),
                participation_type=participation_type,
                price=price,
                description=item.get("description") or None,
                is_active=item.get("is_active", True) is not False,
                display_order=_display_order(item.get("display_order")),
            ))

        saved = self.repository.replace(event_id, options)
        logger.info("pricing_replaced", event_id=str(event_id), options=len(saved))
        return saved


class InterestAreaCatalog:

    def __init__(self, repository, events):
        self.repository = repository
        self.events = events

    def list_active(self, event_id):
        _require_event(self.events, event_id)
        return self.repository.list_for_event(event_id, active_only=True)

    def replace(self, event_id, items):
        _require_event(self.events, event_id)
        if not isinstance(items, list):
            raise ValidationFailed("Invalid interest areas data")

        areas = []
        for item in items:
            name = (item.get("name") or "").strip() if isinstance(item, dict) else ""
            if not name:
                raise ValidationFailed("Every interest area needs a name")
            areas.append(domain.InterestArea(
                event_id=str(event_id),
                name=name,
                description=item.get("description") or None,
                is_active=item.get("is_active", True) is not False,
                display_order=_display_order(item.get("display_order")),
            ))

        saved = self.repository.replace(event_id, areas)
        logger.info("interest_areas_replaced", event_id=str(event_id), areas=len(saved))
        return saved
