"""
Core vending operations. Anything done on behalf of a caller takes an
explicit Identity; every operation returns a (value, error) tuple.
"""
