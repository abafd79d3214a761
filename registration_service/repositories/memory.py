"""
In-memory repositories for tests and local runs.

Each registration has its own lock; every transition runs under it, so the
compare-and-set semantics match the SQL implementation. Callers always get
copies, never the stored objects.
"""

import itertools
import threading
from collections import defaultdict
from datetime import datetime, timezone

from registration_service import domain
from registration_service.repositories.base import (
    EventRepository,
    InterestAreaRepository,
    PricingRepository,
    RegistrationRepository,
)


class InMemoryEventRepository(EventRepository):

    def __init__(self):
        self._events = {}

    def get(self, event_id):
        return self._events.get(str(event_id))

    def add(self, event):
        self._events[event.id] = event
        return event


class InMemoryPricingRepository(PricingRepository):

    def __init__(self):
        self._options = defaultdict(list)
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def add(self, option):
        with self._lock:
            option.id = next(self._ids)
            self._options[str(option.event_id)].append(option)
        return option

    def list_for_event(self, event_id, participation_type=None, active_only=True):
        with self._lock:
            options = list(self._options.get(str(event_id), []))
        if participation_type is not None:
            options = [o for o in options if o.participation_type == participation_type]
        if active_only:
            options = [o for o in options if o.is_active]
        return sorted(options, key=lambda o: (o.display_order, o.id))

    def replace(self, event_id, options):
        with self._lock:
            for option in options:
                option.event_id = str(event_id)
                option.id = next(self._ids)
            self._options[str(event_id)] = list(options)
        return self.list_for_event(event_id, active_only=False)


class InMemoryInterestAreaRepository(InterestAreaRepository):

    def __init__(self):
        self._areas = defaultdict(list)
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def list_for_event(self, event_id, active_only=True):
        with self._lock:
            areas = list(self._areas.get(str(event_id), []))
        if active_only:
            areas = [a for a in areas if a.is_active]
        return sorted(areas, key=lambda a: (a.display_order, a.id))

    def replace(self, event_id, areas):
        with self._lock:
            for area in areas:
                area.event_id = str(event_id)
                area.id = next(self._ids)
            self._areas[str(event_id)] = list(areas)
        return self.list_for_event(event_id, active_only=False)


class InMemoryRegistrationRepository(RegistrationRepository):

    def __init__(self):
        self._records = {}
        self._record_locks = {}
        self._index_lock = threading.Lock()

    def _lock_for(self, registration_id):
        with self._index_lock:
            return self._record_locks.get(registration_id)

    def add(self, registration):
        stored = registration.copy()
        now = datetime.now(timezone.utc)
        stored.created_at = stored.created_at or now
        stored.updated_at = now
        with self._index_lock:
            self._records[stored.id] = stored
            self._record_locks[stored.id] = threading.Lock()
        return stored.copy()

    def get(self, registration_id):
        lock = self._lock_for(str(registration_id))
        if lock is None:
            return None
        with lock:
            return self._records[str(registration_id)].copy()

    def _id_for_reference(self, reference):
        with self._index_lock:
            for record in self._records.values():
                if reference in (record.payment_reference, record.gateway_reference):
                    return record.id
        return None

    def get_by_reference(self, reference):
        registration_id = self._id_for_reference(reference)
        return self.get(registration_id) if registration_id else None

    def find_completed_by_email(self, event_id, email):
        email = email.strip().lower()
        with self._index_lock:
            matches = [
                r for r in self._records.values()
                if r.event_id == str(event_id) and r.email == email and r.payment_status == domain.COMPLETED
            ]
        if not matches:
            return None
        return max(matches, key=lambda r: r.created_at).copy()

    def set_gateway_reference(self, registration_id, gateway_reference):
        lock = self._lock_for(str(registration_id))
        if lock is None:
            return None
        with lock:
            record = self._records[str(registration_id)]
            if record.gateway_reference is None:
                record.gateway_reference = gateway_reference
                record.updated_at = datetime.now(timezone.utc)
            return record.copy()

    def settle_payment(self, reference, result, on_completed):
        registration_id = self._id_for_reference(reference)
        if registration_id is None:
            return None, False
        with self._lock_for(registration_id):
            record = self._records[registration_id]
            if record.payment_status != domain.PENDING:
                return record.copy(), False

            now = datetime.now(timezone.utc)
            updated = record.copy()
            updated.payment_status = result.status
            updated.paid_amount = result.amount
            updated.payment_date = result.transaction_date or now
            updated.updated_at = now
            if result.status == domain.COMPLETED:
                credential = on_completed(updated.copy())
                updated.credential_token = credential.token
                updated.credential_image_url = credential.image_url
            self._records[registration_id] = updated
            return updated.copy(), True

    def mark_checked_in(self, registration_id, staff_id, checked_in_at):
        lock = self._lock_for(str(registration_id))
        if lock is None:
            return False
        with lock:
            record = self._records[str(registration_id)]
            if record.checked_in or record.payment_status != domain.COMPLETED:
                return False
            record.checked_in = True
            record.checked_in_at = checked_in_at
            record.checked_in_by = staff_id
            record.updated_at = checked_in_at
            return True

    def mark_email_sent(self, registration_id, sent_at):
        lock = self._lock_for(str(registration_id))
        if lock is None:
            return
        with lock:
            record = self._records[str(registration_id)]
            record.email_sent = True
            record.email_sent_at = sent_at
