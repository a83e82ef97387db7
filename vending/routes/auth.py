from flask import Blueprint, current_app, jsonify
from flask_jwt_extended import (
    create_access_token,
    create_refresh_token,
    get_jwt,
    get_jwt_identity,
    jwt_required,
)
from vending.extensions import BLOCKLIST
from vending.routes import error_response, json_body
from vending.services import accounts
import datetime

auth_bp = Blueprint('auth', __name__)


def _access_token(user_id):
    minutes = current_app.config['JWT_ACCESS_MINUTES']
    return create_access_token(identity=str(user_id), expires_delta=datetime.timedelta(minutes=minutes))


@auth_bp.route('/register', methods=['POST'])
def register():
    """
    Register a new buyer or seller
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
            - username
            - password
            - role
          properties:
            username:
              type: string
            password:
              type: string
            role:
              type: string
              enum: [buyer, seller]
    responses:
      201:
        description: User created, access token issued
      400:
        description: Validation failed
      409:
        description: Username already exists
    """
    user, error = accounts.register(json_body())
    if error:
        return error_response(error)

    return jsonify({
        'message': 'User Created successfully',
        'user': user.to_dict(),
        'token': _access_token(user.user_id),
    }), 201


@auth_bp.route('/login', methods=['POST'])
def login():
    """
    Authenticate user and return tokens
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
            - username
            - password
          properties:
            username:
              type: string
            password:
              type: string
    responses:
      200:
        description: Login successful
      401:
        description: Invalid credentials
    """
    data = json_body()
    user, error = accounts.authenticate(data.get('username'), data.get('password'))
    if error:
        return error_response(error)

    days = current_app.config['JWT_REFRESH_DAYS']
    refresh_token = create_refresh_token(
        identity=str(user.user_id), expires_delta=datetime.timedelta(days=days)
    )
    return jsonify({
        'message': 'Login successful',
        'access_token': _access_token(user.user_id),
        'refresh_token': refresh_token,
        'user': user.to_dict(),
    }), 200


@auth_bp.route('/refresh', methods=['POST'])
@jwt_required(refresh=True)
def refresh():
    """
    Refresh access token
    ---
    tags:
      - Auth
    security:
      - Bearer: []
    responses:
      200:
        description: New access token
      401:
        description: Invalid refresh token
    """
    return jsonify({'access_token': _access_token(get_jwt_identity())}), 200


@auth_bp.route('/logout', methods=['POST'])
@jwt_required()
def logout():
    """
    Logout user (Revoke token)
    ---
    tags:
      - Auth
    security:
      - Bearer: []
    responses:
      200:
        description: Logout successful
    """
    BLOCKLIST.add(get_jwt()['jti'])
    return jsonify({'message': 'Logout successful'}), 200
