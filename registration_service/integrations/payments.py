"""
Payment providers.

Gateways start a charge and answer status queries. The webhook parsers turn a
provider notification into a PaymentResult; the core never sees wire formats.
"""

import base64
import json
import re
import time
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from decimal import ROUND_CEILING, ROUND_HALF_UP, Decimal, InvalidOperation

import requests
import stripe
import structlog

from registration_service import domain
from registration_service.errors import CollaboratorFailure, ValidationFailed

logger = structlog.get_logger(__name__)


class WebhookPayloadError(Exception):
    """The provider notification could not be understood."""


class PaymentGateway(ABC):
    name = "gateway"

    def normalize_phone(self, phone):
        """Return the phone number in the form the provider expects."""
        return phone.strip()

    @abstractmethod
    def initiate(self, registration, event):
        """Start a charge for the registration and return a PaymentInitiation."""

    @abstractmethod
    def fetch_result(self, registration):
        """Ask the provider for the outcome; None while it is still pending."""


def to_minor_units(amount):
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(value):
    if value is None:
        return None
    return (Decimal(value) / 100).quantize(Decimal("0.01"))


# --- Stripe ------------------------------------------------------------


class StripeGateway(PaymentGateway):
    """Hosted Checkout sessions; our payment reference rides in client_reference_id."""

    name = "stripe"

    def __init__(self, secret_key, currency="kes", app_url="http://localhost:5000", timeout=10.0):
        self.currency = currency.lower()
        self.app_url = app_url.rstrip("/")
        stripe.api_key = secret_key
        stripe.default_http_client = stripe.RequestsClient(timeout=timeout)
        stripe.max_network_retries = 2

    def initiate(self, registration, event):
        reference = registration.payment_reference
        metadata = {
            "reference": reference,
            "registration_id": registration.id,
            "event_id": registration.event_id,
            "participation_type": registration.participation_type,
        }
        try:
            session = stripe.checkout.Session.create(
                mode="payment",
                customer_email=registration.email,
                client_reference_id=reference,
                line_items=[{
                    "quantity": 1,
                    "price_data": {
                        "currency": self.currency,
                        "unit_amount": to_minor_units(registration.price_amount),
                        "product_data": {
                            "name": f"{event.title} - {registration.participation_type}",
                        },
                    },
                }],
                metadata=metadata,
                payment_intent_data={"metadata": metadata},
                success_url=f"{self.app_url}/events/payment/verify?reference={reference}",
                cancel_url=f"{self.app_url}/events/{registration.event_id}",
                idempotency_key=reference,
            )
        except stripe.StripeError as e:
            logger.error("stripe_checkout_create_failed", reference=reference, error=str(e))
            raise CollaboratorFailure(f"Failed to initialize payment: {e.user_message or e}")

        logger.info("stripe_checkout_created", reference=reference, session_id=session.id)
        return domain.PaymentInitiation(gateway_reference=session.id, payment_url=session.url)

    def fetch_result(self, registration):
        if not registration.gateway_reference:
            return None
        try:
            session = stripe.checkout.Session.retrieve(registration.gateway_reference)
        except stripe.StripeError as e:
            logger.error("stripe_checkout_retrieve_failed", reference=registration.payment_reference, error=str(e))
            raise CollaboratorFailure(f"Failed to verify payment: {e.user_message or e}")

        if getattr(session, "payment_status", None) == "paid":
            status = domain.COMPLETED
        elif getattr(session, "status", None) == "expired":
            status = domain.FAILED
        else:
            return None
        return domain.PaymentResult(
            reference=registration.payment_reference,
            status=status,
            amount=from_minor_units(getattr(session, "amount_total", None)),
        )


STRIPE_COMPLETED_EVENTS = {"checkout.session.completed", "checkout.session.async_payment_succeeded",
                           "payment_intent.succeeded"}
# A declined card (payment_intent.payment_failed) leaves the Checkout session
# open for another attempt, so only the session ending counts as failed.
STRIPE_FAILED_EVENTS = {"checkout.session.async_payment_failed", "checkout.session.expired"}


def parse_stripe_event(payload, signature, secret):
    """
    Verify a Stripe webhook and map it to a PaymentResult.

    Returns None for event types that carry no payment outcome.
    Raises WebhookPayloadError on bad signatures or payloads.
    """
    if not signature:
        raise WebhookPayloadError("Missing Stripe-Signature header")
    try:
        stripe.Webhook.construct_event(payload, signature, secret)
        # Read the verified body as plain JSON
        event = json.loads(payload)
    except ValueError as e:
        raise WebhookPayloadError(f"Invalid payload: {e}")
    except stripe.SignatureVerificationError as e:
        raise WebhookPayloadError(f"Invalid signature: {e}")

    event_type = event.get("type")
    obj = (event.get("data") or {}).get("object") or {}
    metadata = obj.get("metadata") or {}

    if event_type in STRIPE_COMPLETED_EVENTS:
        if event_type == "checkout.session.completed" and obj.get("payment_status") != "paid":
            # Delayed payment methods report later through async_payment_succeeded
            return None
        status = domain.COMPLETED
    elif event_type in STRIPE_FAILED_EVENTS:
        status = domain.FAILED
    else:
        return None

    reference = obj.get("client_reference_id") or metadata.get("reference")
    if not reference:
        raise WebhookPayloadError(f"No payment reference on {event_type} {obj.get('id')}")

    amount = obj.get("amount_total")
    if amount is None:
        amount = obj.get("amount_received") if status == domain.COMPLETED else obj.get("amount")

    return domain.PaymentResult(
        reference=reference,
        status=status,
        amount=from_minor_units(amount),
        description=event_type,
    )


# --- M-Pesa ------------------------------------------------------------

MPESA_PHONE_PATTERN = re.compile(r"^(?:254|0)?([17]\d{8})$")
MPESA_TZ = timezone(timedelta(hours=3))


def format_phone_number(phone):
    cleaned = re.sub(r"\D", "", phone or "")
    match = MPESA_PHONE_PATTERN.match(cleaned)
    if not match:
        return None
    return "254" + match.group(1)


def mpesa_timestamp(now=None):
    now = now or datetime.now(MPESA_TZ)
    return now.strftime("%Y%m%d%H%M%S")


def mpesa_password(shortcode, passkey, timestamp):
    return base64.b64encode(f"{shortcode}{passkey}{timestamp}".encode()).decode()


class MpesaGateway(PaymentGateway):
    """Daraja STK push; the provider's CheckoutRequestID is the gateway reference."""

    name = "mpesa"

    def __init__(self, consumer_key, consumer_secret, shortcode, passkey, callback_url,
                 base_url="https://sandbox.safaricom.co.ke", timeout=10.0, token_retries=3):
        self.consumer_key = consumer_key
        self.consumer_secret = consumer_secret
        self.shortcode = shortcode
        self.passkey = passkey
        self.callback_url = callback_url
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.token_retries = token_retries

    def normalize_phone(self, phone):
        formatted = format_phone_number(phone)
        if formatted is None:
            raise ValidationFailed("Phone number must be in the format 254XXXXXXXXX")
        return formatted

    def _access_token(self):
        last_error = None
        for attempt in range(1, self.token_retries + 1):
            try:
                response = requests.get(
                    f"{self.base_url}/oauth/v1/generate",
                    params={"grant_type": "client_credentials"},
                    auth=(self.consumer_key, self.consumer_secret),
                    timeout=self.timeout,
                )
                response.raise_for_status()
                token = response.json().get("access_token")
                if not token:
                    raise ValueError("No access token in response")
                return token
            except (requests.RequestException, ValueError) as e:
                last_error = e
                logger.warning("mpesa_token_attempt_failed", attempt=attempt, retries=self.token_retries, error=str(e))
                if attempt < self.token_retries:
                    time.sleep(min(2 ** (attempt - 1), 5))
        raise CollaboratorFailure(f"Failed to get M-Pesa access token: {last_error}")

    def _post(self, path, body):
        token = self._access_token()
        try:
            response = requests.post(
                f"{self.base_url}{path}",
                json=body,
                headers={"Authorization": f"Bearer {token}"},
                timeout=self.timeout,
            )
            return response.json()
        except (requests.RequestException, ValueError) as e:
            logger.error("mpesa_request_failed", path=path, error=str(e))
            raise CollaboratorFailure(f"M-Pesa request failed: {e}")

    def initiate(self, registration, event):
        timestamp = mpesa_timestamp()
        phone = self.normalize_phone(registration.phone_number)
        amount = int(Decimal(registration.price_amount).quantize(Decimal("1"), rounding=ROUND_CEILING))
        data = self._post("/mpesa/stkpush/v1/processrequest", {
            "BusinessShortCode": self.shortcode,
            "Password": mpesa_password(self.shortcode, self.passkey, timestamp),
            "Timestamp": timestamp,
            "TransactionType": "CustomerPayBillOnline",
            "Amount": amount,
            "PartyA": phone,
            "PartyB": self.shortcode,
            "PhoneNumber": phone,
            "CallBackURL": self.callback_url,
            "AccountReference": registration.payment_reference,
            "TransactionDesc": f"Registration for {event.title}"[:100],
        })

        if str(data.get("ResponseCode")) != "0" or not data.get("CheckoutRequestID"):
            logger.error("mpesa_stk_push_rejected", reference=registration.payment_reference, response=data)
            raise CollaboratorFailure(f"Failed to initiate payment: {data.get('errorMessage') or data}")

        logger.info("mpesa_stk_push_sent", reference=registration.payment_reference,
                    checkout_request_id=data["CheckoutRequestID"])
        return domain.PaymentInitiation(gateway_reference=data["CheckoutRequestID"])

    def fetch_result(self, registration):
        if not registration.gateway_reference:
            return None
        timestamp = mpesa_timestamp()
        data = self._post("/mpesa/stkpushquery/v1/query", {
            "BusinessShortCode": self.shortcode,
            "Password": mpesa_password(self.shortcode, self.passkey, timestamp),
            "Timestamp": timestamp,
            "CheckoutRequestID": registration.gateway_reference,
        })
        if "ResultCode" not in data:
            # Still being processed by the handset
            return None
        status = domain.COMPLETED if str(data["ResultCode"]) == "0" else domain.FAILED
        return domain.PaymentResult(
            reference=registration.payment_reference,
            status=status,
            description=data.get("ResultDesc"),
        )


def _parse_mpesa_date(value):
    if value is None:
        return None
    try:
        return datetime.strptime(str(value), "%Y%m%d%H%M%S").replace(tzinfo=MPESA_TZ)
    except ValueError:
        return None


def parse_mpesa_callback(raw_body):
    """
    Map a Daraja STK callback to a PaymentResult.

    Body.stkCallback carries MerchantRequestID, CheckoutRequestID, ResultCode,
    ResultDesc and, on success, CallbackMetadata.Item name/value pairs.
    """
    if not raw_body:
        raise WebhookPayloadError("Empty payload")
    try:
        body = json.loads(raw_body)
    except ValueError as e:
        raise WebhookPayloadError(f"Invalid JSON payload: {e}")

    callback = (body.get("Body") or {}).get("stkCallback") if isinstance(body, dict) else None
    if not isinstance(callback, dict):
        raise WebhookPayloadError("Missing Body.stkCallback")

    required = ["MerchantRequestID", "CheckoutRequestID", "ResultCode", "ResultDesc"]
    missing = [f for f in required if f not in callback]
    if missing:
        raise WebhookPayloadError(f"Missing required fields: {', '.join(missing)}")

    reference = callback["CheckoutRequestID"]
    if str(callback["ResultCode"]) != "0":
        return domain.PaymentResult(
            reference=reference,
            status=domain.FAILED,
            description=callback["ResultDesc"],
        )

    items = (callback.get("CallbackMetadata") or {}).get("Item") or []
    values = {item.get("Name"): item.get("Value") for item in items if isinstance(item, dict)}
    try:
        amount = Decimal(str(values["Amount"])) if values.get("Amount") is not None else None
    except InvalidOperation:
        amount = None
    phone = values.get("PhoneNumber")

    return domain.PaymentResult(
        reference=reference,
        status=domain.COMPLETED,
        amount=amount,
        description=callback["ResultDesc"],
        transaction_date=_parse_mpesa_date(values.get("TransactionDate")),
        phone=str(phone) if phone is not None else None,
    )
