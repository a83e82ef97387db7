"""
Coin Ledger — breaks an amount of cents into coins.

Greedy largest-first gives the minimum coin count for this set because it is
a canonical coin system. Changing DENOMINATIONS to a non-canonical set would
need a dynamic-programming breakdown instead.
"""

DENOMINATIONS = (5, 10, 20, 50, 100)


def is_denomination(coin):
    # bool is an int subclass; True must not pass as a coin
    return isinstance(coin, int) and not isinstance(coin, bool) and coin in DENOMINATIONS


def compute_change(amount):
    """
    Args:
        amount: non-negative cents, a multiple of the smallest coin

    Returns:
        {denomination: count} for every denomination
    """
    if amount < 0 or amount % DENOMINATIONS[0]:
        raise ValueError(f"Cannot make change for {amount}")

    breakdown = {}
    remaining = amount
    for coin in sorted(DENOMINATIONS, reverse=True):
        breakdown[coin], remaining = divmod(remaining, coin)
    return breakdown


def change_vector(breakdown):
    """Counts in ascending denomination order: [5, 10, 20, 50, 100]."""
    return [breakdown.get(coin, 0) for coin in DENOMINATIONS]


def coins_total(breakdown):
    return sum(coin * count for coin, count in breakdown.items())
