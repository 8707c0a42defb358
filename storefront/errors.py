# storefront/errors.py
from typing import Optional

# Every failure a service can hand back to its caller. The HTTP layer maps
# status_code straight onto the response; the message is safe to show.


class StoreError(Exception):
    status_code = 400
    default_message = "request failed"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFound(StoreError):
    status_code = 404
    default_message = "not found"


class EmptyCart(StoreError):
    status_code = 400
    default_message = "cart is empty"


class InsufficientStock(StoreError):
    status_code = 409

    def __init__(self, product_name: str):
        self.product_name = product_name
        super().__init__(f"insufficient stock for product: {product_name}")


class InvalidQuantity(StoreError):
    status_code = 400
    default_message = "quantity must be >= 1"


class InvalidCredentials(StoreError):
    status_code = 401
    default_message = "invalid credentials"


class InvalidRefreshToken(StoreError):
    status_code = 401
    default_message = "invalid refresh token"


class Forbidden(StoreError):
    status_code = 403
    default_message = "forbidden"


class Conflict(StoreError):
    status_code = 409
    default_message = "conflict"


class TransientStoreFailure(StoreError):
    """The transaction was rolled back; the whole operation may be retried."""

    status_code = 503
    default_message = "temporary storage failure, retry the request"


class EventPublishError(StoreError):
    status_code = 502
    default_message = "unable to publish event"


class StorageError(StoreError):
    status_code = 502
    default_message = "file storage failed"
