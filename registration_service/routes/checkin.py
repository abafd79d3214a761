"""
Check-in routes for staff devices at the venue entry.
"""

from flask import Blueprint, jsonify, request

from registration_service.auth import current_staff_id, staff_required
from registration_service.container import get_services
from registration_service.errors import ValidationFailed

checkin_bp = Blueprint('checkin', __name__)


def _check_in_response(result):
    return jsonify({
        "success": True,
        "alreadyCheckedIn": result.already_checked_in,
        "registration": result.registration.to_dict(),
        "message": "Attendee already checked in" if result.already_checked_in else "Check-in successful",
    }), 200


@checkin_bp.route('/events/<event_id>/registrations', methods=['GET'])
@staff_required
def search_registration(event_id):
    """
    Find a paid registration by email
    ---
    tags:
      - Check-in
    security:
      - Bearer: []
    parameters:
      - name: event_id
        in: path
        type: string
        required: true
      - name: email
        in: query
        type: string
        required: true
    responses:
      200:
        description: Registration with its QR token
      404:
        description: Registration not found or payment not completed
    """
    registration = get_services().checkin.find_by_email(event_id, request.args.get('email', ''))
    return jsonify({
        "registration": registration.to_dict(),
        "qrCodeData": registration.credential_token,
    }), 200


@checkin_bp.route('/events/<event_id>/checkin', methods=['POST'])
@staff_required
def check_in(event_id):
    """
    Check in an attendee by registration id
    ---
    tags:
      - Check-in
    security:
      - Bearer: []
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required:
            - registrationId
          properties:
            registrationId:
              type: string
    responses:
      200:
        description: Checked in now, or already checked in earlier
      400:
        description: Payment not completed
      404:
        description: Registration not found
    """
    body = request.get_json(silent=True) or {}
    registration_id = body.get("registrationId")
    if not registration_id:
        raise ValidationFailed("Registration ID required")

    result = get_services().checkin.check_in(registration_id, current_staff_id(), event_id=event_id)
    return _check_in_response(result)


@checkin_bp.route('/events/<event_id>/checkin/scan', methods=['POST'])
@staff_required
def scan(event_id):
    """
    Check in an attendee from the scanned QR text
    ---
    tags:
      - Check-in
    security:
      - Bearer: []
    responses:
      200:
        description: Checked in now, or already checked in earlier
      400:
        description: Invalid or expired code, or payment not completed
      404:
        description: Registration not found
    """
    body = request.get_json(silent=True) or {}
    token = body.get("token")
    if not token:
        raise ValidationFailed("QR code data required")

    result = get_services().checkin.check_in_token(event_id, token, current_staff_id())
    return _check_in_response(result)
