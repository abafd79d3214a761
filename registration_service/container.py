"""
Wires repositories, collaborators and services from app.config.
"""

import os

from flask import current_app

from registration_service.integrations.notifier import LoggingNotifier, ResendNotifier
from registration_service.integrations.payments import MpesaGateway, StripeGateway
from registration_service.integrations.qr_storage import (
    FileSystemCredentialStorage,
    HttpCredentialStorage,
    QRCodeRenderer,
)
from registration_service.repositories.memory import (
    InMemoryEventRepository,
    InMemoryInterestAreaRepository,
    InMemoryPricingRepository,
    InMemoryRegistrationRepository,
)
from registration_service.repositories.sql import (
    SqlEventRepository,
    SqlInterestAreaRepository,
    SqlPricingRepository,
    SqlRegistrationRepository,
)
from registration_service.services.catalog import InterestAreaCatalog, PricingCatalog
from registration_service.services.checkin_service import CheckInService
from registration_service.services.credentials import CredentialIssuer
from registration_service.services.registration_service import RegistrationService

EXTENSION_KEY = "registration_service"


class Services:

    def __init__(self, events, registrations, pricing, interest_areas, issuer, registration, checkin):
        self.events = events
        self.registrations = registrations
        self.pricing = pricing
        self.interest_areas = interest_areas
        self.issuer = issuer
        self.registration = registration
        self.checkin = checkin


def build_gateway(config):
    timeout = config["COLLABORATOR_TIMEOUT"]
    provider = config["PAYMENT_PROVIDER"]
    if provider == "stripe":
        return StripeGateway(
            secret_key=config["STRIPE_SECRET_KEY"],
            currency=config["STRIPE_CURRENCY"],
            app_url=config["APP_URL"],
            timeout=timeout,
        )
    if provider == "mpesa":
        return MpesaGateway(
            consumer_key=config["MPESA_CONSUMER_KEY"],
            consumer_secret=config["MPESA_CONSUMER_SECRET"],
            shortcode=config["MPESA_SHORTCODE"],
            passkey=config["MPESA_PASSKEY"],
            callback_url=config["MPESA_CALLBACK_URL"],
            base_url=config["MPESA_BASE_URL"],
            timeout=timeout,
        )
    raise ValueError(f"Unknown PAYMENT_PROVIDER '{provider}'")


def build_storage(config):
    if config["CREDENTIAL_STORAGE"] == "http":
        return HttpCredentialStorage(
            storage_url=config["STORAGE_URL"],
            bucket=config["STORAGE_BUCKET"],
            api_key=config["STORAGE_API_KEY"],
            timeout=config["COLLABORATOR_TIMEOUT"],
        )
    return FileSystemCredentialStorage(config["CREDENTIAL_STORAGE_DIR"])


def build_notifier(config):
    if config.get("RESEND_API_KEY"):
        return ResendNotifier(
            api_key=config["RESEND_API_KEY"],
            sender=config["EMAIL_FROM"],
            timeout=config["COLLABORATOR_TIMEOUT"],
        )
    return LoggingNotifier()


def build_services(config, gateway=None, storage=None, notifier=None):
    if config["REPOSITORY_BACKEND"] == "memory":
        events = InMemoryEventRepository()
        registrations = InMemoryRegistrationRepository()
        pricing_repository = InMemoryPricingRepository()
        interest_repository = InMemoryInterestAreaRepository()
    else:
        events = SqlEventRepository()
        registrations = SqlRegistrationRepository()
        pricing_repository = SqlPricingRepository()
        interest_repository = SqlInterestAreaRepository()

    if storage is None:
        storage = build_storage(config)
        if isinstance(storage, FileSystemCredentialStorage):
            os.makedirs(storage.directory, exist_ok=True)

    pricing = PricingCatalog(pricing_repository, events)
    issuer = CredentialIssuer(QRCodeRenderer(), storage)
    registration = RegistrationService(
        events=events,
        registrations=registrations,
        pricing=pricing,
        gateway=gateway or build_gateway(config),
        issuer=issuer,
        notifier=notifier or build_notifier(config),
    )
    return Services(
        events=events,
        registrations=registrations,
        pricing=pricing,
        interest_areas=InterestAreaCatalog(interest_repository, events),
        issuer=issuer,
        registration=registration,
        checkin=CheckInService(registrations, issuer),
    )


def get_services():
    return current_app.extensions[EXTENSION_KEY]
