import hashlib
import hmac
import json
import time
import unittest
import uuid

from flask_jwt_extended import create_access_token

from registration_service import domain
from registration_service.container import get_services
from registration_service.extensions import db
from registration_service.models import StaffUser
from tests.fakes import completed_result, seed_event
from tests.test_sql_repository import make_test_app

STRIPE_SECRET = "whsec_test_secret"


def stripe_signature(payload, secret=STRIPE_SECRET, timestamp=None):
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload}".encode("utf-8")
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def mpesa_callback(checkout_request_id, result_code=0, amount=1500):
    callback = {
        "MerchantRequestID": "29115-34620561-1",
        "CheckoutRequestID": checkout_request_id,
        "ResultCode": result_code,
        "ResultDesc": "The service request is processed successfully." if result_code == 0
        else "Request cancelled by user",
    }
    if result_code == 0:
        callback["CallbackMetadata"] = {"Item": [
            {"Name": "Amount", "Value": amount},
            {"Name": "MpesaReceiptNumber", "Value": "NLJ7RT61SV"},
            {"Name": "TransactionDate", "Value": 20240101120000},
            {"Name": "PhoneNumber", "Value": 254712345678},
        ]}
    return json.dumps({"Body": {"stkCallback": callback}})


class ApiTestCase(unittest.TestCase):

    def setUp(self):
        self.app, self.gateway, self.storage, self.notifier = make_test_app()
        self.client = self.app.test_client()
        self.ctx = self.app.app_context()
        self.ctx.push()
        db.create_all()
        self.services = get_services()
        self.event = seed_event(self.services)

        staff = StaffUser(email="door@example.com", display_name="Door Staff")
        staff.set_password("s3cret-pass")
        db.session.add(staff)
        db.session.commit()

    def tearDown(self):
        db.session.remove()
        db.drop_all()
        self.ctx.pop()

    def staff_headers(self):
        resp = self.client.post('/api/auth/login', json={
            "email": "DOOR@example.com",
            "password": "s3cret-pass",
        })
        self.assertEqual(resp.status_code, 200)
        return {"Authorization": f"Bearer {resp.get_json()['access_token']}"}

    def register(self, **overrides):
        body = {
            "fullName": "Jane Wanjiku",
            "email": "jane@example.com",
            "phoneNumber": "254712345678",
            "participationType": "Professional",
            "interestAreas": ["AI"],
        }
        body.update(overrides)
        return self.client.post(f'/events/{self.event.id}/register', json=body)

    def registered(self):
        resp = self.register()
        self.assertEqual(resp.status_code, 201)
        return self.services.registrations.get(resp.get_json()["registrationId"])

    def paid(self):
        registration = self.registered()
        return self.services.registration.apply_payment_result(completed_result(registration))


class TestRegistrationApi(ApiTestCase):

    def test_register(self):
        resp = self.register()
        self.assertEqual(resp.status_code, 201)
        data = resp.get_json()
        self.assertEqual(data["amount"], 1500.0)
        self.assertTrue(data["reference"].startswith("EVT-"))
        self.assertEqual(data["paymentUrl"], f"https://pay.example.com/{data['reference']}")

    def test_register_missing_fields(self):
        resp = self.client.post(f'/events/{self.event.id}/register', json={"fullName": "Jane"})
        self.assertEqual(resp.status_code, 400)
        data = resp.get_json()
        self.assertFalse(data["success"])
        self.assertEqual(data["error_code"], "VALIDATION_FAILED")
        self.assertIn("email", data["fields"])

    def test_register_unknown_event(self):
        resp = self.client.post(f'/events/{uuid.uuid4()}/register', json={
            "fullName": "Jane", "email": "jane@example.com",
            "phoneNumber": "254712345678", "participationType": "Student",
        })
        self.assertEqual(resp.status_code, 404)

    def test_register_invalid_participation_type(self):
        resp = self.register(participationType="VIP")
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.get_json()["error_code"], "INVALID_PARTICIPATION_TYPE")

    def test_register_duplicate(self):
        self.paid()
        resp = self.register()
        self.assertEqual(resp.status_code, 409)
        self.assertEqual(resp.get_json()["error_code"], "DUPLICATE_REGISTRATION")

    def test_register_gateway_down(self):
        self.gateway.fail = True
        resp = self.register()
        self.assertEqual(resp.status_code, 502)
        self.assertEqual(resp.get_json()["error_code"], "COLLABORATOR_FAILURE")

    def test_catalog_endpoints(self):
        resp = self.client.get(f'/events/{self.event.id}/pricing')
        self.assertEqual(resp.status_code, 200)
        self.assertEqual([p["participation_type"] for p in resp.get_json()["pricing"]], ["Student", "Professional"])

        resp = self.client.get(f'/events/{self.event.id}/interest-areas')
        self.assertEqual([a["name"] for a in resp.get_json()["interestAreas"]], ["AI", "Fintech"])

        self.assertEqual(self.client.get(f'/events/{uuid.uuid4()}/pricing').status_code, 404)

    def test_verify_payment(self):
        registration = self.registered()
        resp = self.client.post('/events/payments/verify', json={"reference": registration.payment_reference})
        self.assertEqual(resp.status_code, 200)
        self.assertFalse(resp.get_json()["success"])
        self.assertEqual(resp.get_json()["paymentStatus"], "pending")

        self.gateway.results[registration.payment_reference] = completed_result(registration)
        resp = self.client.post('/events/payments/verify', json={"reference": registration.payment_reference})
        data = resp.get_json()
        self.assertTrue(data["success"])
        self.assertEqual(data["paymentStatus"], "completed")
        self.assertEqual(data["qrCodeUrl"], f"https://cdn.example.com/qr-codes/{registration.id}.png")

    def test_verify_payment_requires_reference(self):
        self.assertEqual(self.client.post('/events/payments/verify', json={}).status_code, 400)
        self.assertEqual(self.client.post('/events/payments/verify', json={"reference": "EVT-x"}).status_code, 404)

    def test_health(self):
        resp = self.client.get('/health')
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.get_json()["status"], "healthy")


class TestWebhooks(ApiTestCase):

    def test_mpesa_success(self):
        registration = self.registered()
        resp = self.client.post('/api/webhooks/mpesa', data=mpesa_callback(registration.gateway_reference),
                                content_type='application/json')

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.get_json(), {"ResultCode": 0, "ResultDesc": "Accepted"})
        stored = self.services.registrations.get(registration.id)
        self.assertEqual(stored.payment_status, domain.COMPLETED)
        self.assertIsNotNone(stored.credential_token)
        self.assertEqual(stored.payment_date.year, 2024)

    def test_mpesa_redelivery_mints_once(self):
        registration = self.registered()
        for _ in range(3):
            resp = self.client.post('/api/webhooks/mpesa', data=mpesa_callback(registration.gateway_reference),
                                    content_type='application/json')
            self.assertEqual(resp.status_code, 200)
        self.assertEqual(len(self.storage.saved), 1)
        self.assertEqual(self.notifier.sent, [registration.id])

    def test_mpesa_cancelled(self):
        registration = self.registered()
        self.client.post('/api/webhooks/mpesa', data=mpesa_callback(registration.gateway_reference, result_code=1032),
                         content_type='application/json')
        self.assertEqual(self.services.registrations.get(registration.id).payment_status, domain.FAILED)

    def test_mpesa_always_acknowledges(self):
        bodies = [
            "",
            "{not json",
            json.dumps({"Body": {}}),
            json.dumps({"Body": {"stkCallback": {"CheckoutRequestID": "x"}}}),
            mpesa_callback("ws_CO_unknown"),
        ]
        for body in bodies:
            with self.subTest(body=body):
                resp = self.client.post('/api/webhooks/mpesa', data=body, content_type='application/json')
                self.assertEqual(resp.status_code, 200)
                self.assertEqual(resp.get_json(), {"ResultCode": 0, "ResultDesc": "Accepted"})

    def test_stripe_checkout_completed(self):
        registration = self.registered()
        payload = json.dumps({
            "id": "evt_1",
            "object": "event",
            "type": "checkout.session.completed",
            "data": {"object": {
                "id": "cs_test_1",
                "object": "checkout.session",
                "client_reference_id": registration.payment_reference,
                "payment_status": "paid",
                "amount_total": 150000,
                "metadata": {"reference": registration.payment_reference},
            }},
        })
        resp = self.client.post('/api/webhooks/stripe', data=payload, content_type='application/json',
                                headers={"Stripe-Signature": stripe_signature(payload)})

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.get_json(), {"status": "success"})
        stored = self.services.registrations.get(registration.id)
        self.assertEqual(stored.payment_status, domain.COMPLETED)
        self.assertEqual(float(stored.paid_amount), 1500.0)

    def test_stripe_declined_card_then_paid_completes(self):
        registration = self.registered()
        declined = json.dumps({
            "id": "evt_declined",
            "object": "event",
            "type": "payment_intent.payment_failed",
            "data": {"object": {
                "id": "pi_test_1",
                "object": "payment_intent",
                "amount": 150000,
                "metadata": {"reference": registration.payment_reference},
                "last_payment_error": {"message": "Your card was declined."},
            }},
        })
        paid = json.dumps({
            "id": "evt_paid",
            "object": "event",
            "type": "checkout.session.completed",
            "data": {"object": {
                "id": "cs_test_1",
                "object": "checkout.session",
                "client_reference_id": registration.payment_reference,
                "payment_status": "paid",
                "amount_total": 150000,
            }},
        })
        for payload in (declined, paid):
            resp = self.client.post('/api/webhooks/stripe', data=payload, content_type='application/json',
                                    headers={"Stripe-Signature": stripe_signature(payload)})
            self.assertEqual(resp.status_code, 200)

        stored = self.services.registrations.get(registration.id)
        self.assertEqual(stored.payment_status, domain.COMPLETED)
        self.assertIsNotNone(stored.credential_token)

    def test_stripe_bad_signature_is_acknowledged_and_ignored(self):
        registration = self.registered()
        payload = json.dumps({
            "id": "evt_2",
            "object": "event",
            "type": "checkout.session.completed",
            "data": {"object": {"client_reference_id": registration.payment_reference, "payment_status": "paid"}},
        })
        for headers in ({}, {"Stripe-Signature": stripe_signature(payload, secret="whsec_wrong")}):
            resp = self.client.post('/api/webhooks/stripe', data=payload, content_type='application/json',
                                    headers=headers)
            self.assertEqual(resp.status_code, 200)
        self.assertEqual(self.services.registrations.get(registration.id).payment_status, domain.PENDING)


class TestCheckInApi(ApiTestCase):

    def test_requires_staff_token(self):
        url = f'/events/{self.event.id}/registrations?email=jane@example.com'
        self.assertEqual(self.client.get(url).status_code, 401)

        token = create_access_token(identity="attendee-1")
        resp = self.client.get(url, headers={"Authorization": f"Bearer {token}"})
        self.assertEqual(resp.status_code, 403)

    def test_login_rejects_bad_password(self):
        resp = self.client.post('/api/auth/login', json={"email": "door@example.com", "password": "wrong"})
        self.assertEqual(resp.status_code, 401)

    def test_search_by_email(self):
        headers = self.staff_headers()
        registration = self.paid()

        resp = self.client.get(f'/events/{self.event.id}/registrations?email=JANE@example.com', headers=headers)
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.get_json()["qrCodeData"], registration.credential_token)

        resp = self.client.get(f'/events/{self.event.id}/registrations?email=nobody@example.com', headers=headers)
        self.assertEqual(resp.status_code, 404)

        resp = self.client.get(f'/events/{self.event.id}/registrations', headers=headers)
        self.assertEqual(resp.status_code, 400)

    def test_check_in_by_id(self):
        headers = self.staff_headers()
        registration = self.paid()
        url = f'/events/{self.event.id}/checkin'

        first = self.client.post(url, json={"registrationId": registration.id}, headers=headers)
        self.assertEqual(first.status_code, 200)
        self.assertFalse(first.get_json()["alreadyCheckedIn"])
        self.assertTrue(first.get_json()["registration"]["checked_in"])

        second = self.client.post(url, json={"registrationId": registration.id}, headers=headers)
        self.assertEqual(second.status_code, 200)
        self.assertTrue(second.get_json()["alreadyCheckedIn"])
        self.assertEqual(second.get_json()["message"], "Attendee already checked in")

    def test_check_in_errors(self):
        headers = self.staff_headers()
        pending = self.registered()
        url = f'/events/{self.event.id}/checkin'

        resp = self.client.post(url, json={"registrationId": pending.id}, headers=headers)
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.get_json()["error_code"], "PAYMENT_NOT_COMPLETED")

        self.assertEqual(self.client.post(url, json={}, headers=headers).status_code, 400)
        resp = self.client.post(url, json={"registrationId": str(uuid.uuid4())}, headers=headers)
        self.assertEqual(resp.status_code, 404)

    def test_scan(self):
        headers = self.staff_headers()
        registration = self.paid()
        url = f'/events/{self.event.id}/checkin/scan'

        resp = self.client.post(url, json={"token": registration.credential_token}, headers=headers)
        self.assertEqual(resp.status_code, 200)
        self.assertFalse(resp.get_json()["alreadyCheckedIn"])

        resp = self.client.post(url, json={"token": "not a credential"}, headers=headers)
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.get_json()["error_code"], "INVALID_CREDENTIAL")
        self.assertFalse(resp.get_json()["valid"])


class TestAdminApi(ApiTestCase):

    def test_replace_pricing(self):
        headers = self.staff_headers()
        resp = self.client.put(f'/admin/events/{self.event.id}/pricing', headers=headers, json={
            "pricing": [{"participation_type": "Early Bird", "price": 800, "display_order": 0}],
        })
        self.assertEqual(resp.status_code, 200)

        resp = self.client.get(f'/events/{self.event.id}/pricing')
        self.assertEqual([p["participation_type"] for p in resp.get_json()["pricing"]], ["Early Bird"])

        resp = self.client.put(f'/admin/events/{self.event.id}/pricing', headers=headers, json={"pricing": "x"})
        self.assertEqual(resp.status_code, 400)

    def test_replace_interest_areas_requires_staff(self):
        resp = self.client.put(f'/admin/events/{self.event.id}/interest-areas',
                               json={"interestAreas": [{"name": "Robotics"}]})
        self.assertEqual(resp.status_code, 401)


if __name__ == '__main__':
    unittest.main()
