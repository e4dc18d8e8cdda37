"""
Typed failures raised by the cart core.

Every error is an ``HTTPException`` so that the API layer can let it
propagate and FastAPI renders ``{"detail": ...}`` with the right status.
"""

from fastapi import HTTPException, status


class CartServiceError(HTTPException):
    """Base class for recoverable cart errors."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Cart operation failed"

    def __init__(self, detail: str = None):
        super().__init__(
            status_code=type(self).status_code,
            detail=detail or self.default_detail
        )


class MissingIdentity(CartServiceError):
    default_detail = "A user id or session id is required"


class NotFound(CartServiceError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Cart not found"


class CartExpired(CartServiceError):
    status_code = status.HTTP_410_GONE
    default_detail = "Cart has expired"


class OutOfStock(CartServiceError):
    default_detail = "Product is out of stock"


class InsufficientStock(CartServiceError):
    default_detail = "Insufficient stock"


class CartFull(CartServiceError):
    default_detail = "Cart item limit reached"


class InvalidQuantity(CartServiceError):
    default_detail = "Quantity must be at least 1"


class PriceOverrideForbidden(CartServiceError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "Setting a unit price is not allowed"


class EmptyCart(CartServiceError):
    default_detail = "Cart is empty"


class InvalidCoupon(CartServiceError):
    default_detail = "Invalid coupon code"


class ConcurrentUpdate(CartServiceError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Cart was modified concurrently, please retry"


class GatewayUnavailable(CartServiceError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = "Product service unavailable"


class StoreUnavailable(GatewayUnavailable):
    default_detail = "Cart store unavailable"
