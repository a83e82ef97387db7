from vending.models.user import User
from vending.models.product import Product

__all__ = ["User", "Product"]
