from registration_service.models.event import EventRecord
from registration_service.models.pricing import PricingOptionRecord, InterestAreaRecord
from registration_service.models.registration import RegistrationRecord
from registration_service.models.staff import StaffUser

__all__ = [
    "EventRecord",
    "PricingOptionRecord",
    "InterestAreaRecord",
    "RegistrationRecord",
    "StaffUser",
]
