from registration_service.repositories.base import (
    EventRepository,
    InterestAreaRepository,
    PricingRepository,
    RegistrationRepository,
)

__all__ = [
    "EventRepository",
    "InterestAreaRepository",
    "PricingRepository",
    "RegistrationRepository",
]
