"""
Repository interfaces.

Services only talk to these; the SQLAlchemy implementations back the running
service and the in-memory ones back tests and local runs.
"""
from abc import ABC, abstractmethod


class EventRepository(ABC):

    @abstractmethod
    def get(self, event_id):
        """Return the Event or None."""

    @abstractmethod
    def add(self, event):
        """Persist a new Event and return it."""


class PricingRepository(ABC):

    @abstractmethod
    def list_for_event(self, event_id, participation_type=None, active_only=True):
        """Pricing options for an event ordered by display_order."""

    @abstractmethod
    def replace(self, event_id, options):
        """Replace every pricing option of an event."""


class InterestAreaRepository(ABC):

    @abstractmethod
    def list_for_event(self, event_id, active_only=True):
        """Interest areas for an event ordered by display_order."""

    @abstractmethod
    def replace(self, event_id, areas):
        """Replace every interest area of an event."""


class RegistrationRepository(ABC):

    @abstractmethod
    def add(self, registration):
        """Persist a new pending Registration and return the stored copy."""

    @abstractmethod
    def get(self, registration_id):
        """Return the Registration or None."""

    @abstractmethod
    def get_by_reference(self, reference):
        """Match either our payment reference or the provider's reference."""

    @abstractmethod
    def find_completed_by_email(self, event_id, email):
        """Return the paid Registration for this event and email, or None."""

    @abstractmethod
    def set_gateway_reference(self, registration_id, gateway_reference):
        """Record the provider's reference once payment is initiated."""

    @abstractmethod
    def settle_payment(self, reference, result, on_completed):
        """
        Move a pending registration to result.status, exactly once.

        on_completed(registration) is called inside the same atomic unit when
        the new status is completed and must return a Credential. If it raises,
        nothing is applied and the exception propagates.

        Returns (registration, transitioned) or (None, False) when the
        reference is unknown. A registration already in a terminal state is
        returned unchanged with transitioned=False.
        """

    @abstractmethod
    def mark_checked_in(self, registration_id, staff_id, checked_in_at):
        """
        Compare-and-set checked_in from False to True for a paid registration.

        Returns True only for the single caller that performed the transition.
        """

    @abstractmethod
    def mark_email_sent(self, registration_id, sent_at):
        """Flag the confirmation email as delivered."""
