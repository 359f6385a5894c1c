"""
Custom exceptions for the ShopNexus application.

Every error kind carries the label and HTTP status it is rendered with, so
callers discriminate on the class rather than on the message text.
"""
from typing import Optional


class ShopError(Exception):
    """Base exception for shop operations"""
    error = "Internal server error"
    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NotFoundError(ShopError):
    """Raised when a record is absent or not owned by the caller"""
    error = "Not found"
    status_code = 404


class ProductNotFoundError(NotFoundError):
    """Raised when a product does not exist"""
    error = "Product not found"

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Product {product_id} not found")


class CartItemNotFoundError(NotFoundError):
    """Raised when a cart item does not exist or belongs to another user"""
    error = "Cart item not found"

    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__(f"Cart item not found: {item_id}")


class OrderNotFoundError(NotFoundError):
    """Raised when an order does not exist"""
    error = "Order not found"

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order not found: {order_id}")


class InsufficientStockError(ShopError):
    """Raised when the requested quantity exceeds available stock"""
    error = "Insufficient stock"
    status_code = 400

    def __init__(self, product_name: str, requested: int, available: int):
        self.product_name = product_name
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock for product {product_name}: requested {requested}, available {available}"
        )


class ValidationError(ShopError):
    """Raised when validation fails"""
    error = "Validation error"
    status_code = 400


class LimitExceededError(ShopError):
    """Raised when guest cart limits are exceeded"""
    error = "Limit exceeded"
    status_code = 400


class AuthenticationRequiredError(ShopError):
    """Raised when no known user identity accompanies the request"""
    error = "Unauthorized"
    status_code = 401

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class ForbiddenError(ShopError):
    """Raised on role or ownership violations"""
    error = "Forbidden"
    status_code = 403


class ConflictError(ShopError):
    """Raised when an operation conflicts with the current record state"""
    error = "Conflict"
    status_code = 409


class InvalidStatusTransitionError(ConflictError):
    """Raised when an order status change is not in the lifecycle graph"""
    error = "Invalid status transition"

    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot move order from {current} to {requested}")


class PaymentFailedError(ShopError):
    """Rendered when payment verification did not report success"""
    error = "Payment failed"
    status_code = 402

    def __init__(self, order_id: str, reason: Optional[str] = None):
        self.order_id = order_id
        self.reason = reason
        super().__init__(reason or "Payment was not successful")


class WebhookSignatureError(ShopError):
    """Raised when a webhook payload fails signature verification"""
    error = "Webhook signature verification failed"
    status_code = 400


class PaymentGatewayError(ShopError):
    """Raised when the payment gateway call itself fails"""
    error = "Payment gateway error"
    status_code = 502


class PaymentConfigurationError(ShopError):
    """Raised when live payment mode is requested without a gateway"""
    error = "Configuration error"
    status_code = 500


class TransactionFailureError(ShopError):
    """Raised when the relational store aborts a transaction unexpectedly"""
    error = "Transaction failed"
    status_code = 500


class StoreConnectionError(ShopError):
    """Raised when Redis connection fails"""
    error = "Service unavailable"
    status_code = 503
