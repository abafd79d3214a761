"""
Payment provider webhooks.

Providers retry on anything but HTTP 200, so every delivery is acknowledged
with the same fixed body whatever happened inside. Failures are only logged.
"""

from flask import Blueprint, current_app, jsonify, request
import structlog

from registration_service.container import get_services
from registration_service.errors import NotFound, RegistrationError
from registration_service.extensions import db
from registration_service.integrations.payments import (
    WebhookPayloadError,
    parse_mpesa_callback,
    parse_stripe_event,
)

logger = structlog.get_logger(__name__)

webhooks_bp = Blueprint('webhooks', __name__)

STRIPE_ACK = {'status': 'success'}
MPESA_ACK = {'ResultCode': 0, 'ResultDesc': 'Accepted'}


def _apply(provider, parse):
    """Run parse() and apply its result; never raises."""
    try:
        result = parse()
        if result is None:
            logger.info("webhook_ignored", provider=provider)
            return
        registration = get_services().registration.apply_payment_result(result)
        logger.info(
            "webhook_processed",
            provider=provider,
            reference=result.reference,
            registration_id=registration.id,
            payment_status=registration.payment_status,
        )
    except WebhookPayloadError as e:
        logger.warning("webhook_payload_rejected", provider=provider, error=str(e))
    except NotFound as e:
        logger.error("webhook_reference_unknown", provider=provider, error=e.message, **e.details)
    except RegistrationError as e:
        db.session.rollback()
        logger.error("webhook_processing_failed", provider=provider, error_code=e.error_code, error=e.message)
    except Exception:
        db.session.rollback()
        logger.exception("webhook_unexpected_error", provider=provider)


@webhooks_bp.route('/stripe', methods=['POST'])
def stripe_webhook():
    """
    Handle Stripe Webhooks
    ---
    tags:
      - Webhooks
    responses:
      200:
        description: Delivery acknowledged
    """
    payload = request.get_data(as_text=True)
    sig_header = request.headers.get('Stripe-Signature')
    secret = current_app.config['STRIPE_WEBHOOK_SECRET']

    _apply('stripe', lambda: parse_stripe_event(payload, sig_header, secret))
    return jsonify(STRIPE_ACK), 200


@webhooks_bp.route('/mpesa', methods=['POST'])
def mpesa_callback():
    """
    Handle M-Pesa STK push callbacks
    ---
    tags:
      - Webhooks
    responses:
      200:
        description: Delivery acknowledged
    """
    raw_body = request.get_data(as_text=True)

    _apply('mpesa', lambda: parse_mpesa_callback(raw_body))
    return jsonify(MPESA_ACK), 200
