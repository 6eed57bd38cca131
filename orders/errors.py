"""Errors raised by the order lifecycle.

Every error carries a stable ``code`` and the HTTP ``status`` the API maps it
to. Storage and gateway failures are translated into one of these at the
boundary so callers never have to sniff foreign exception types.
"""


class OrderError(Exception):
    code = "order_error"
    status = 500

    def __init__(self, message: str = ""):
        self.message = message or self.__class__.__doc__ or self.code
        super().__init__(self.message)

    def as_dict(self) -> dict:
        return {"message": self.message, "code": self.code}


class InvalidOrderRequest(OrderError):
    """Invalid order data."""

    code = "validation_error"
    status = 400

    def __init__(self, errors: dict, message: str = "Validation error."):
        self.errors = errors
        super().__init__(message)

    def as_dict(self) -> dict:
        return {**super().as_dict(), "errors": self.errors}


class ProductNotFound(OrderError):
    code = "product_not_found"
    status = 400

    def __init__(self, product_id):
        self.product_id = product_id
        super().__init__(
            f"Product with ID {product_id} not found. Please remove it from your cart or try again."
        )


class ProductInactive(OrderError):
    code = "product_inactive"
    status = 400

    def __init__(self, product):
        self.product_id = product.pk
        super().__init__(f'Product "{product.name}" is currently unavailable. Please remove it from your cart.')


class InsufficientStock(OrderError):
    code = "insufficient_stock"
    status = 400

    def __init__(self, product, requested: int):
        self.product_id = product.pk
        self.available = product.stock_quantity
        self.requested = requested
        super().__init__(
            f'Insufficient stock for "{product.name}". Only {product.stock_quantity} left. '
            "Please reduce the quantity."
        )


class DuplicateOrderId(OrderError):
    code = "duplicate_order_id"

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order id {order_id} already exists.")


class PaymentGatewayError(OrderError):
    """The order was saved but the hosted checkout could not be started."""

    code = "payment_gateway_error"
    status = 502

    def __init__(self, order, detail: str):
        self.order_id = order.order_id
        self.internal_order_id = order.pk
        self.detail = detail
        super().__init__(
            "Could not initiate payment with payment gateway. Please try again later or contact support."
        )

    def as_dict(self) -> dict:
        return {
            **super().as_dict(),
            "error": self.detail,
            "orderId": self.order_id,
            "internalOrderId": self.internal_order_id,
        }


class SignatureVerificationFailed(OrderError):
    code = "signature_verification_failed"

    def __init__(self, reason: str, message: str):
        self.reason = reason
        # A signature that was present and well-formed but wrong is forbidden;
        # anything else is a bad request.
        self.status = 403 if reason == "mismatch" else 400
        super().__init__(message)


class OrderNotFound(OrderError):
    code = "order_not_found"
    status = 404

    def __init__(self, reference=None):
        self.reference = reference
        super().__init__("Order not found.")


class UnchangedStatus(OrderError):
    code = "unchanged_status"
    status = 400

    def __init__(self, status: str):
        self.current_status = status
        super().__init__(f"Order is already {status} and no note was supplied; nothing to update.")


class NotificationDeliveryFailure(OrderError):
    code = "notification_delivery_failure"
