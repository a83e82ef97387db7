"""
Account Balance — coin deposits and reset.
Only these two functions and settlement ever write User.deposit.
"""

from vending.extensions import db
from vending.models.user import User
from vending.services.coins import DENOMINATIONS, is_denomination
from vending.services.errors import InvalidDenomination, NotFound, service_result
from vending.services.identity import require_role
from vending.services.locks import account_key, fetch_for_update, key_locks, lock_timeout


def _load_account(identity):
    user = fetch_for_update(User, identity.id)
    if not user:
        raise NotFound('User not found')
    return user


@service_result
def deposit(identity, coin):
    """
    Add a single coin to the buyer's balance.
    Returns the new balance in cents.
    """
    require_role(identity, 'buyer')
    if not is_denomination(coin):
        raise InvalidDenomination(
            f"Invalid coin; accepted coins are {', '.join(str(c) for c in DENOMINATIONS)}"
        )

    with key_locks.hold(account_key(identity.id), timeout=lock_timeout()):
        user = _load_account(identity)
        user.deposit += coin
        db.session.commit()
        return user.deposit


@service_result
def reset_deposit(identity):
    # Idempotent: resetting an empty balance is still a success
    with key_locks.hold(account_key(identity.id), timeout=lock_timeout()):
        user = _load_account(identity)
        if user.deposit:
            user.deposit = 0
            db.session.commit()
        return 0
