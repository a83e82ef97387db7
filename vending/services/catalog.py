"""
Catalog Inventory — products listed by sellers.
"""

from vending.extensions import db
from vending.models.product import Product
from vending.services.coins import DENOMINATIONS
from vending.services.errors import InsufficientStock, NotFound, ValidationError, service_result
from vending.services.identity import parse_uuid, require_owner, require_role
from vending.services.locks import fetch_for_update, key_locks, lock_timeout, product_key

NAME_MIN, NAME_MAX = 3, 20
COST_MAX = 1_000_000
STOCK_MAX = 500

PRODUCT_FIELDS = ('product_name', 'cost', 'amount_available')


def _is_int(value):
    return isinstance(value, int) and not isinstance(value, bool)


def validate_product_fields(data, partial=False):
    """Return the cleaned subset of PRODUCT_FIELDS or raise ValidationError."""
    errors = {}
    cleaned = {}

    name = data.get('product_name')
    if name is None:
        if not partial:
            errors['product_name'] = 'is required'
    elif not isinstance(name, str) or not NAME_MIN <= len(name.strip()) <= NAME_MAX:
        errors['product_name'] = f'must be a string of {NAME_MIN}-{NAME_MAX} characters'
    else:
        cleaned['product_name'] = name.strip()

    cost = data.get('cost')
    if cost is None:
        if not partial:
            errors['cost'] = 'is required'
    elif not _is_int(cost) or not 0 < cost <= COST_MAX:
        errors['cost'] = f'must be an integer between 1 and {COST_MAX}'
    elif cost % DENOMINATIONS[0]:
        errors['cost'] = f'should be a multiple of {DENOMINATIONS[0]}'
    else:
        cleaned['cost'] = cost

    stock = data.get('amount_available')
    if stock is None:
        if not partial:
            cleaned['amount_available'] = 0
    elif not _is_int(stock) or not 0 <= stock <= STOCK_MAX:
        errors['amount_available'] = f'must be an integer between 0 and {STOCK_MAX}'
    else:
        cleaned['amount_available'] = stock

    if errors:
        raise ValidationError(details=errors)
    return cleaned


def _load_product(product_id, for_update=False):
    product_id = parse_uuid(product_id, 'Product ID')
    if for_update:
        product = fetch_for_update(Product, product_id)
    else:
        product = db.session.get(Product, product_id)
    if not product:
        raise NotFound('Product does not exist')
    return product


@service_result
def list_products():
    return Product.query.order_by(Product.created_at, Product.product_name).all()


@service_result
def get_product(product_id):
    return _load_product(product_id)


@service_result
def create_product(identity, data):
    require_role(identity, 'seller')
    fields = validate_product_fields(data)

    product = Product(seller_id=identity.id, **fields)
    db.session.add(product)
    db.session.commit()
    return product


@service_result
def update_product(identity, product_id, data):
    require_role(identity, 'seller')
    fields = validate_product_fields(data, partial=True)
    product = _load_product(product_id)

    with key_locks.hold(product_key(product.product_id), timeout=lock_timeout()):
        product = _load_product(product.product_id, for_update=True)
        require_owner(identity, product.seller_id, 'Product can only be updated by the seller')

        if 'seller_id' in data and str(data['seller_id']) != str(product.seller_id):
            raise ValidationError(details={'seller_id': 'cannot be changed'})

        for field, value in fields.items():
            setattr(product, field, value)
        db.session.commit()
        return product


@service_result
def delete_product(identity, product_id):
    require_role(identity, 'seller')
    product = _load_product(product_id)

    with key_locks.hold(product_key(product.product_id), timeout=lock_timeout()):
        product = _load_product(product.product_id, for_update=True)
        require_owner(identity, product.seller_id, 'User is not the seller')

        snapshot = product.to_dict()
        db.session.delete(product)
        db.session.commit()
        return snapshot


def decrement_stock(product, amount):
    """Settlement-only; the caller holds the product lock and commits."""
    if amount > product.amount_available:
        raise InsufficientStock(
            f'Only {product.amount_available} of {product.product_name} available'
        )
    product.amount_available -= amount
