from functools import wraps

from flask import jsonify
from flask_jwt_extended import get_jwt, get_jwt_identity, verify_jwt_in_request

STAFF_ROLE = "staff"


def staff_required(fn):
    """Only callers holding a staff access token get through."""
    @wraps(fn)
    def wrapper(*args, **kwargs):
        verify_jwt_in_request()
        if get_jwt().get("role") != STAFF_ROLE:
            return jsonify({
                "success": False,
                "error_code": "FORBIDDEN",
                "message": "Staff access required."
            }), 403
        return fn(*args, **kwargs)
    return wrapper


def current_staff_id():
    return get_jwt_identity()
