from flask import Blueprint, jsonify
from flask_jwt_extended import get_current_user, jwt_required
from vending.routes import error_response, json_body
from vending.services import accounts, balance

user_bp = Blueprint('users', __name__)


@user_bp.route('/deposit', methods=['POST'])
@jwt_required()
def deposit():
    """
    Deposit a single coin into the buyer's account
    ---
    tags:
      - Users
    security:
      - Bearer: []
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required:
            - coin
          properties:
            coin:
              type: integer
              enum: [5, 10, 20, 50, 100]
    responses:
      200:
        description: Coin deposited
      400:
        description: Invalid coin
      403:
        description: User is not a buyer
    """
    coin = json_body().get('coin')
    new_balance, error = balance.deposit(get_current_user(), coin)
    if error:
        return error_response(error)

    return jsonify({
        'message': f'Deposited {coin} cents into account',
        'data': {'deposit': new_balance},
    }), 200


@user_bp.route('/reset', methods=['POST'])
@jwt_required()
def reset():
    """
    Reset the caller's deposit to 0
    ---
    tags:
      - Users
    security:
      - Bearer: []
    responses:
      200:
        description: Deposit reset
    """
    new_balance, error = balance.reset_deposit(get_current_user())
    if error:
        return error_response(error)

    return jsonify({'message': 'Deposit reset', 'data': {'deposit': new_balance}}), 200


@user_bp.route('/<user_id>', methods=['GET'])
@jwt_required()
def get_user_profile(user_id):
    """
    Get own user profile
    ---
    tags:
      - Users
    parameters:
      - in: path
        name: user_id
        required: true
        type: string
    security:
      - Bearer: []
    responses:
      200:
        description: User profile
      400:
        description: ID is not valid
      403:
        description: Unauthorized to view this profile
      404:
        description: User not found
    """
    user, error = accounts.get_account(get_current_user(), user_id)
    if error:
        return error_response(error)

    return jsonify(user.to_dict()), 200


@user_bp.route('/<user_id>', methods=['PUT'])
@jwt_required()
def update_user(user_id):
    """
    Update own username, role or password
    ---
    tags:
      - Users
    parameters:
      - in: path
        name: user_id
        required: true
        type: string
      - in: body
        name: body
        schema:
          type: object
          properties:
            username:
              type: string
            password:
              type: string
            role:
              type: string
              enum: [buyer, seller]
    security:
      - Bearer: []
    responses:
      200:
        description: Updated profile
      400:
        description: Validation failed
      403:
        description: Not the account owner
      409:
        description: Username taken
    """
    user, error = accounts.update_account(get_current_user(), user_id, json_body())
    if error:
        return error_response(error)

    return jsonify(user.to_dict()), 200


@user_bp.route('/<user_id>', methods=['DELETE'])
@jwt_required()
def delete_user(user_id):
    """
    Delete own account
    ---
    tags:
      - Users
    parameters:
      - in: path
        name: user_id
        required: true
        type: string
    security:
      - Bearer: []
    responses:
      200:
        description: User deleted
      403:
        description: Not the account owner
    """
    user, error = accounts.delete_account(get_current_user(), user_id)
    if error:
        return error_response(error)

    return jsonify({'message': 'User deleted successfully', 'user': user}), 200
