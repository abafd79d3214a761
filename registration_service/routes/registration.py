"""
Public registration routes: sign-up, payment confirmation, catalogs and QR images.
"""

from flask import Blueprint, current_app, jsonify, request, send_from_directory

from registration_service.container import get_services
from registration_service.errors import ValidationFailed

registration_bp = Blueprint('registration', __name__)


@registration_bp.route('/events/<event_id>/register', methods=['POST'])
def register(event_id):
    """
    Register an attendee and start the payment
    ---
    tags:
      - Registration
    parameters:
      - name: event_id
        in: path
        type: string
        required: true
      - in: body
        name: body
        required: true
        schema:
          type: object
          required:
            - fullName
            - email
            - phoneNumber
            - participationType
          properties:
            fullName:
              type: string
            email:
              type: string
            phoneNumber:
              type: string
            participationType:
              type: string
            organization:
              type: string
            designation:
              type: string
            interestAreas:
              type: array
              items:
                type: string
            networkingPurpose:
              type: string
    responses:
      201:
        description: Registration created, payment started
      400:
        description: Missing fields, closed registration or invalid participation type
      404:
        description: Event not found
      409:
        description: Already registered with this email
      502:
        description: Payment provider unavailable
    """
    body = request.get_json(silent=True) or {}
    data = {
        "full_name": body.get("fullName"),
        "email": body.get("email"),
        "phone_number": body.get("phoneNumber"),
        "participation_type": body.get("participationType"),
        "organization": body.get("organization"),
        "designation": body.get("designation"),
        "interest_areas": body.get("interestAreas"),
        "networking_purpose": body.get("networkingPurpose"),
    }
    receipt = get_services().registration.create_registration(event_id, data)

    return jsonify({
        "registrationId": receipt.registration.id,
        "paymentUrl": receipt.payment_url,
        "amount": float(receipt.amount),
        "reference": receipt.reference,
    }), 201


@registration_bp.route('/events/payments/verify', methods=['POST'])
def verify_payment():
    """
    Confirm a payment from the provider's return page
    ---
    tags:
      - Registration
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required:
            - reference
          properties:
            reference:
              type: string
    responses:
      200:
        description: Current registration state
      404:
        description: Registration not found
    """
    body = request.get_json(silent=True) or {}
    reference = body.get("reference")
    if not reference:
        raise ValidationFailed("Payment reference is required")

    registration = get_services().registration.verify_payment(reference)
    return jsonify({
        "success": registration.is_paid,
        "paymentStatus": registration.payment_status,
        "registration": registration.to_dict(),
        "qrCodeUrl": registration.credential_image_url,
    }), 200


@registration_bp.route('/events/<event_id>/pricing', methods=['GET'])
def list_pricing(event_id):
    """
    Active pricing options for an event
    ---
    tags:
      - Catalog
    responses:
      200:
        description: Pricing options ordered for display
      404:
        description: Event not found
    """
    options = get_services().pricing.list_active(event_id)
    return jsonify({"pricing": [o.to_dict() for o in options]}), 200


@registration_bp.route('/events/<event_id>/interest-areas', methods=['GET'])
def list_interest_areas(event_id):
    """
    Active interest areas for an event
    ---
    tags:
      - Catalog
    responses:
      200:
        description: Interest areas ordered for display
    """
    areas = get_services().interest_areas.list_active(event_id)
    return jsonify({"interestAreas": [a.to_dict() for a in areas]}), 200


@registration_bp.route('/credentials/<path:filename>', methods=['GET'])
def credential_image(filename):
    return send_from_directory(current_app.config["CREDENTIAL_STORAGE_DIR"], filename)
