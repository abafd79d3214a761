from flask import Blueprint, jsonify, request

from registration_service.auth import staff_required
from registration_service.container import get_services

admin_bp = Blueprint('admin', __name__)


@admin_bp.route('/events/<event_id>/pricing', methods=['PUT'])
@staff_required
def replace_pricing(event_id):
    """
    Replace an event's pricing options
    ---
    tags:
      - Admin
    security:
      - Bearer: []
    responses:
      200:
        description: Pricing saved
      400:
        description: Invalid pricing data
      404:
        description: Event not found
    """
    body = request.get_json(silent=True) or {}
    saved = get_services().pricing.replace(event_id, body.get("pricing"))
    return jsonify({"success": True, "pricing": [o.to_dict() for o in saved]}), 200


@admin_bp.route('/events/<event_id>/interest-areas', methods=['PUT'])
@staff_required
def replace_interest_areas(event_id):
    """
    Replace an event's interest areas
    ---
    tags:
      - Admin
    security:
      - Bearer: []
    responses:
      200:
        description: Interest areas saved
    """
    body = request.get_json(silent=True) or {}
    saved = get_services().interest_areas.replace(event_id, body.get("interestAreas"))
    return jsonify({"success": True, "interestAreas": [a.to_dict() for a in saved]}), 200
