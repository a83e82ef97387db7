from flask import Blueprint, jsonify
from flask_jwt_extended import get_current_user, jwt_required
from vending.routes import error_response, json_body
from vending.services import catalog, settlement

product_bp = Blueprint('products', __name__)


@product_bp.route('', methods=['GET'])
@jwt_required()
def list_products():
    """
    List all products
    ---
    tags:
      - Products
    security:
      - Bearer: []
    responses:
      200:
        description: List of products
    """
    products, error = catalog.list_products()
    if error:
        return error_response(error)

    return jsonify([p.to_dict() for p in products]), 200


@product_bp.route('/<product_id>', methods=['GET'])
@jwt_required()
def get_product(product_id):
    """
    Get a single product
    ---
    tags:
      - Products
    parameters:
      - name: product_id
        in: path
        type: string
        required: true
    security:
      - Bearer: []
    responses:
      200:
        description: Product details
      400:
        description: ID is not valid
      404:
        description: Product does not exist
    """
    product, error = catalog.get_product(product_id)
    if error:
        return error_response(error)

    return jsonify(product.to_dict()), 200


@product_bp.route('', methods=['POST'])
@jwt_required()
def create_product():
    """
    Create a product (sellers only)
    ---
    tags:
      - Products
    security:
      - Bearer: []
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required:
            - product_name
            - cost
          properties:
            product_name:
              type: string
              minLength: 3
              maxLength: 20
            cost:
              type: integer
              multipleOf: 5
              maximum: 1000000
            amount_available:
              type: integer
              minimum: 0
              maximum: 500
              default: 0
    responses:
      201:
        description: Product created
      400:
        description: Validation failed
      403:
        description: User is not a seller
    """
    product, error = catalog.create_product(get_current_user(), json_body())
    if error:
        return error_response(error)

    return jsonify({'message': 'Product created successfully', 'product': product.to_dict()}), 201


@product_bp.route('/<product_id>', methods=['PUT'])
@jwt_required()
def update_product(product_id):
    """
    Partially update a product (owning seller only)
    ---
    tags:
      - Products
    security:
      - Bearer: []
    parameters:
      - name: product_id
        in: path
        type: string
        required: true
      - in: body
        name: body
        schema:
          type: object
          properties:
            product_name:
              type: string
            cost:
              type: integer
            amount_available:
              type: integer
    responses:
      200:
        description: Updated product
      400:
        description: Validation failed
      403:
        description: Not the seller of this product
      404:
        description: Product Not Found
    """
    product, error = catalog.update_product(get_current_user(), product_id, json_body())
    if error:
        return error_response(error)

    return jsonify(product.to_dict()), 200


@product_bp.route('/<product_id>', methods=['DELETE'])
@jwt_required()
def delete_product(product_id):
    """
    Delete a product (owning seller only)
    ---
    tags:
      - Products
    security:
      - Bearer: []
    parameters:
      - name: product_id
        in: path
        type: string
        required: true
    responses:
      200:
        description: Deleted product
      403:
        description: Not the seller of this product
      404:
        description: Product Not Found
    """
    product, error = catalog.delete_product(get_current_user(), product_id)
    if error:
        return error_response(error)

    return jsonify(product), 200


@product_bp.route('/buy', methods=['POST'])
@jwt_required()
def buy():
    """
    Buy a product with the deposited coins
    ---
    tags:
      - Products
    security:
      - Bearer: []
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required:
            - product_id
            - amount
          properties:
            product_id:
              type: string
            amount:
              type: integer
              minimum: 1
    responses:
      200:
        description: Receipt with total spent and change as [5, 10, 20, 50, 100] coin counts
      400:
        description: Invalid request
      402:
        description: Insufficient deposit
      403:
        description: User is not a buyer
      404:
        description: Product does not exist
      409:
        description: Not enough stock, or a concurrent purchase won the race
    """
    data = json_body()
    receipt, error = settlement.buy(get_current_user(), data.get('product_id'), data.get('amount'))
    if error:
        return error_response(error)

    return jsonify(receipt.to_dict()), 200
