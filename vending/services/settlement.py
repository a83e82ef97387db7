"""
Purchase Settlement — turns a buyer's deposit and a product's stock into a
completed purchase plus change.

Stock decrement and balance debit are committed together or not at all.
The buyer's balance becomes the leftover change, not zero.
"""

from dataclasses import dataclass, field
from flask import current_app
from vending.extensions import db
from vending.models.product import Product
from vending.models.user import User
from vending.services.catalog import decrement_stock
from vending.services.coins import change_vector, compute_change
from vending.services.errors import (
    InsufficientBalance,
    InsufficientStock,
    InvalidRequest,
    NotFound,
    service_result,
)
from vending.services.identity import parse_uuid, require_role
from vending.services.locks import (
    account_key,
    fetch_for_update,
    key_locks,
    lock_timeout,
    product_key,
)


@dataclass(frozen=True)
class Receipt:
    total_spent: int
    change: list
    product: dict
    balance: int
    breakdown: dict = field(default_factory=dict)

    def to_dict(self):
        return {
            'total_spent': self.total_spent,
            'change': self.change,
            'change_breakdown': {str(coin): count for coin, count in self.breakdown.items()},
            'balance': self.balance,
            'product': self.product,
        }


def _valid_amount(amount):
    return isinstance(amount, int) and not isinstance(amount, bool) and amount > 0


@service_result
def buy(identity, product_id, amount):
    require_role(identity, 'buyer')

    product_id = parse_uuid(product_id, 'Product ID')
    if not db.session.get(Product, product_id):
        raise NotFound('Product does not exist')
    if not _valid_amount(amount):
        raise InvalidRequest('amount must be a positive integer')

    keys = (product_key(product_id), account_key(identity.id))
    with key_locks.hold(*keys, timeout=lock_timeout()):
        # Everything below runs on rows read after the locks were taken
        buyer = fetch_for_update(User, identity.id)
        if not buyer:
            raise NotFound('User not found')
        product = fetch_for_update(Product, product_id)
        if not product:
            raise NotFound('Product does not exist')

        if product.amount_available < amount:
            raise InsufficientStock(
                f'Only {product.amount_available} of {product.product_name} available'
            )

        total_cost = product.cost * amount
        if buyer.deposit < total_cost:
            raise InsufficientBalance(
                f'Purchase costs {total_cost} but deposit is {buyer.deposit}'
            )

        decrement_stock(product, amount)
        change = buyer.deposit - total_cost
        breakdown = compute_change(change)
        buyer.deposit = change
        snapshot = product.to_dict()

        db.session.commit()

        current_app.logger.info(
            'Buyer %s bought %d x %s for %d, change %d',
            identity.id, amount, product_id, total_cost, change,
        )
        return Receipt(
            total_spent=total_cost,
            change=change_vector(breakdown),
            product=snapshot,
            balance=change,
            breakdown=breakdown,
        )
