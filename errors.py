"""Error types raised by the shop operations.

Each error carries the HTTP status it maps to; the API layer turns them into
``{"msg": ...}`` responses.
"""

from typing import Dict, List, Optional


class ShopError(Exception):
    status_code = 500
    default_message = "Server error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(ShopError):
    status_code = 400
    default_message = "Invalid input"

    def __init__(self, message: Optional[str] = None, errors: Optional[List[Dict[str, str]]] = None):
        super().__init__(message)
        self.errors = errors or []


class DuplicateIdentity(ShopError):
    status_code = 400
    default_message = "User already exists"


class InvalidCredentials(ShopError):
    status_code = 400
    default_message = "Invalid Credentials"


class Unauthenticated(ShopError):
    status_code = 401
    default_message = "No token, authorization denied"


class Forbidden(ShopError):
    status_code = 403
    default_message = "Access denied"


class NotFound(ShopError):
    status_code = 404
    default_message = "Not found"


class ProductNotFound(NotFound):
    default_message = "Product not found"


class CartNotFound(NotFound):
    default_message = "Cart not found"


class ItemNotFound(NotFound):
    default_message = "Item not found in cart"


class OrderNotFound(NotFound):
    default_message = "Order not found"


class UserNotFound(NotFound):
    default_message = "User not found"


class Conflict(ShopError):
    status_code = 409
    default_message = "Concurrent update, please retry"


class InternalError(ShopError):
    status_code = 500
    default_message = "Server error"
