from flask import Blueprint, request, jsonify
from flask_jwt_extended import create_access_token
from registration_service.auth import STAFF_ROLE
from registration_service.models.staff import StaffUser
import datetime

auth_bp = Blueprint('auth', __name__)


@auth_bp.route('/login', methods=['POST'])
def login():
    """
    Authenticate a staff member and return an access token
    ---
    tags:
      - Auth
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required:
            - email
            - password
          properties:
            email:
              type: string
            password:
              type: string
    responses:
      200:
        description: Login successful
      401:
        description: Invalid credentials
    """
    data = request.get_json(silent=True)
    if not data or not data.get('email') or not data.get('password'):
        return jsonify({'error': 'Missing email or password'}), 400

    staff = StaffUser.query.filter_by(email=data['email'].strip().lower()).first()

    if staff and staff.is_active and staff.check_password(data['password']):
        # A token lasts one door shift
        access_token = create_access_token(
            identity=str(staff.staff_id),
            additional_claims={'role': STAFF_ROLE, 'email': staff.email},
            expires_delta=datetime.timedelta(hours=12)
        )
        return jsonify({
            'message': 'Login successful',
            'access_token': access_token,
            'staff': staff.to_dict()
        }), 200

    return jsonify({'error': 'Invalid email or password'}), 401
