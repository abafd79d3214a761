import threading
import unittest
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from registration_service import domain
from registration_service.errors import (
    CollaboratorFailure,
    DuplicateRegistration,
    InvalidParticipationType,
    NotFound,
    RegistrationClosed,
    ValidationFailed,
)
from registration_service.services.credentials import decode_token
from tests.fakes import (
    VALID_REGISTRATION,
    FakeGateway,
    MemoryCredentialStorage,
    RecordingNotifier,
    completed_result,
    failed_result,
    make_memory_services,
    seed_event,
)


class RegistrationServiceTestCase(unittest.TestCase):

    def setUp(self):
        self.gateway = FakeGateway()
        self.storage = MemoryCredentialStorage()
        self.notifier = RecordingNotifier()
        self.services = make_memory_services(self.gateway, self.storage, self.notifier)
        self.service = self.services.registration
        self.event = seed_event(self.services)

    def register(self, **overrides):
        data = dict(VALID_REGISTRATION, **overrides)
        return self.service.create_registration(self.event.id, data).registration


class TestCreateRegistration(RegistrationServiceTestCase):

    def test_creates_pending_registration_with_price_snapshot(self):
        receipt = self.service.create_registration(self.event.id, dict(VALID_REGISTRATION))
        registration = receipt.registration

        self.assertEqual(registration.payment_status, domain.PENDING)
        self.assertEqual(registration.price_amount, Decimal("1500.00"))
        self.assertEqual(registration.email, "jane@example.com")
        self.assertEqual(registration.interest_areas, ["AI", "Fintech"])
        self.assertFalse(registration.checked_in)
        self.assertIsNone(registration.credential_token)
        self.assertTrue(registration.payment_reference.startswith("EVT-"))
        self.assertEqual(registration.gateway_reference, f"GW-{registration.payment_reference}")
        self.assertEqual(receipt.amount, Decimal("1500.00"))
        self.assertEqual(receipt.payment_url, f"https://pay.example.com/{registration.payment_reference}")

    def test_price_is_not_recomputed_after_catalog_change(self):
        registration = self.register()
        self.services.pricing.replace(self.event.id, [
            {"participation_type": "Professional", "price": "9999.00"},
        ])

        stored = self.service.get_registration(registration.id)
        self.assertEqual(stored.price_amount, Decimal("1500.00"))

    def test_missing_fields(self):
        with self.assertRaises(ValidationFailed) as ctx:
            self.service.create_registration(self.event.id, {"full_name": "Jane", "email": " "})
        self.assertEqual(ctx.exception.details["fields"], ["email", "phone_number", "participation_type"])
        self.assertEqual(self.gateway.initiated, [])

    def test_invalid_email(self):
        with self.assertRaises(ValidationFailed):
            self.register(email="jane-at-example.com")

    def test_unknown_event(self):
        with self.assertRaises(NotFound):
            self.service.create_registration(str(uuid.uuid4()), dict(VALID_REGISTRATION))

    def test_closed_registration(self):
        closed = [
            seed_event(self.services, status="completed"),
            seed_event(self.services, has_internal_registration=False),
            seed_event(self.services, registration_deadline=datetime.now(timezone.utc) - timedelta(minutes=1)),
        ]
        for event in closed:
            with self.subTest(event=event):
                with self.assertRaises(RegistrationClosed):
                    self.service.create_registration(event.id, dict(VALID_REGISTRATION))

    def test_unknown_participation_type(self):
        with self.assertRaises(InvalidParticipationType) as ctx:
            self.register(participation_type="VIP")
        self.assertEqual(ctx.exception.details["participation_type"], "VIP")

    def test_inactive_participation_type(self):
        self.services.pricing.replace(self.event.id, [
            {"participation_type": "Professional", "price": "1500", "is_active": False},
        ])
        with self.assertRaises(InvalidParticipationType):
            self.register()

    def test_duplicate_only_after_completed_payment(self):
        first = self.register()
        # A pending attempt does not block a retry
        second = self.register()
        self.assertNotEqual(first.id, second.id)

        self.service.apply_payment_result(completed_result(second))
        with self.assertRaises(DuplicateRegistration):
            self.register(email="JANE@example.com")

    def test_gateway_failure_keeps_pending_registration(self):
        self.gateway.fail = True
        with self.assertRaises(CollaboratorFailure):
            self.register()

        attempted = self.gateway.initiated[0]
        stored = self.service.get_registration(attempted.id)
        self.assertEqual(stored.payment_status, domain.PENDING)
        self.assertIsNone(stored.gateway_reference)


class TestApplyPaymentResult(RegistrationServiceTestCase):

    def test_completed_mints_credential_and_sends_email(self):
        registration = self.register()
        settled = self.service.apply_payment_result(completed_result(registration))

        self.assertEqual(settled.payment_status, domain.COMPLETED)
        self.assertEqual(settled.paid_amount, Decimal("1500.00"))
        self.assertIsNotNone(settled.payment_date)
        payload = decode_token(settled.credential_token)
        self.assertEqual(payload.id, registration.id)
        self.assertEqual(payload.type, "Professional")
        self.assertEqual(settled.credential_image_url, f"https://cdn.example.com/qr-codes/{registration.id}.png")
        self.assertEqual(self.notifier.sent, [registration.id])
        self.assertTrue(settled.email_sent)

    def test_redelivery_is_a_no_op(self):
        registration = self.register()
        first = self.service.apply_payment_result(completed_result(registration))
        again = self.service.apply_payment_result(completed_result(registration))
        late_failure = self.service.apply_payment_result(failed_result(registration))

        self.assertEqual(len(self.storage.saved), 1)
        self.assertEqual(self.notifier.sent, [registration.id])
        self.assertEqual(again.credential_token, first.credential_token)
        self.assertEqual(late_failure.payment_status, domain.COMPLETED)

    def test_failed_payment_is_terminal(self):
        registration = self.register()
        settled = self.service.apply_payment_result(failed_result(registration))
        self.assertEqual(settled.payment_status, domain.FAILED)
        self.assertIsNone(settled.credential_token)

        after = self.service.apply_payment_result(completed_result(registration))
        self.assertEqual(after.payment_status, domain.FAILED)
        self.assertEqual(self.storage.saved, {})
        self.assertEqual(self.notifier.sent, [])

    def test_result_can_carry_gateway_reference(self):
        registration = self.register()
        result = domain.PaymentResult(reference=registration.gateway_reference, status=domain.COMPLETED)
        self.assertTrue(self.service.apply_payment_result(result).is_paid)

    def test_unknown_reference(self):
        with self.assertRaises(NotFound):
            self.service.apply_payment_result(
                domain.PaymentResult(reference="EVT-0-0", status=domain.COMPLETED)
            )

    def test_non_terminal_status_rejected(self):
        registration = self.register()
        with self.assertRaises(ValidationFailed):
            self.service.apply_payment_result(
                domain.PaymentResult(reference=registration.payment_reference, status=domain.PENDING)
            )

    def test_amount_mismatch_still_completes(self):
        registration = self.register()
        settled = self.service.apply_payment_result(completed_result(registration, amount="10.00"))
        self.assertTrue(settled.is_paid)
        self.assertEqual(settled.paid_amount, Decimal("10.00"))

    def test_mint_failure_leaves_registration_pending(self):
        registration = self.register()
        self.storage.fail = True
        with self.assertRaises(CollaboratorFailure):
            self.service.apply_payment_result(completed_result(registration))

        stored = self.service.get_registration(registration.id)
        self.assertEqual(stored.payment_status, domain.PENDING)
        self.assertIsNone(stored.credential_token)

        # The provider's retry succeeds once storage is back
        self.storage.fail = False
        self.assertTrue(self.service.apply_payment_result(completed_result(registration)).is_paid)

    def test_email_failure_does_not_undo_payment(self):
        registration = self.register()
        self.notifier.fail = True
        settled = self.service.apply_payment_result(completed_result(registration))
        self.assertTrue(settled.is_paid)
        self.assertFalse(settled.email_sent)

    def test_concurrent_deliveries_mint_once(self):
        registration = self.register()
        result = completed_result(registration)
        barrier = threading.Barrier(8)
        errors = []

        def deliver():
            barrier.wait()
            try:
                self.service.apply_payment_result(result)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=deliver) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(errors, [])
        self.assertEqual(len(self.storage.saved), 1)
        self.assertEqual(self.notifier.sent, [registration.id])


class TestVerifyPayment(RegistrationServiceTestCase):

    def test_pending_without_provider_answer(self):
        registration = self.register()
        self.assertEqual(self.service.verify_payment(registration.payment_reference).payment_status, domain.PENDING)

    def test_pending_resolved_from_provider(self):
        registration = self.register()
        self.gateway.results[registration.payment_reference] = completed_result(registration)

        verified = self.service.verify_payment(registration.payment_reference)
        self.assertTrue(verified.is_paid)
        self.assertIsNotNone(verified.credential_token)

    def test_early_callback_recovered_by_verify(self):
        early = []
        initiate = self.gateway.initiate

        def initiate_with_fast_callback(registration, event):
            initiation = initiate(registration, event)
            # Provider calls back before the gateway reference is stored
            with self.assertRaises(NotFound):
                self.service.apply_payment_result(domain.PaymentResult(
                    reference=initiation.gateway_reference, status=domain.COMPLETED,
                ))
            early.append(initiation.gateway_reference)
            return initiation

        self.gateway.initiate = initiate_with_fast_callback
        registration = self.register()
        self.assertEqual(early, [registration.gateway_reference])
        self.assertEqual(registration.payment_status, domain.PENDING)

        self.gateway.results[registration.payment_reference] = completed_result(registration)
        verified = self.service.verify_payment(registration.payment_reference)
        self.assertTrue(verified.is_paid)
        self.assertIsNotNone(verified.credential_token)

    def test_terminal_registration_not_requeried(self):
        registration = self.register()
        self.service.apply_payment_result(failed_result(registration))
        self.gateway.results[registration.payment_reference] = completed_result(registration)

        self.assertEqual(self.service.verify_payment(registration.gateway_reference).payment_status, domain.FAILED)

    def test_unknown_reference(self):
        with self.assertRaises(NotFound):
            self.service.verify_payment("EVT-missing")


if __name__ == '__main__':
    unittest.main()
