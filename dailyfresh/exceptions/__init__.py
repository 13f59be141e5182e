"""Custom exceptions for the Daily Fresh order service."""


class StorefrontError(Exception):
    """Base exception for all application errors."""
    def __init__(self, message="An internal error occurred", status_code=500, payload=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    def to_dict(self):
        rv = dict(self.payload or ())
        rv['message'] = self.message
        rv['status'] = 'error'
        return rv


class ValidationError(StorefrontError):
    """Raised for invalid input: empty cart, quantity bounds, minimum order amount."""
    def __init__(self, message, violations=None, payload=None):
        self.violations = list(violations or [message])
        payload = dict(payload or ())
        payload['violations'] = self.violations
        super().__init__(message, 400, payload)


class AuthError(StorefrontError):
    """Raised when the request carries no active session."""
    def __init__(self, message="Authentication required"):
        super().__init__(message, 401)


class UnauthorizedError(StorefrontError):
    """Raised when a user lacks permission for an action."""
    def __init__(self, message="Unauthorized access"):
        super().__init__(message, 403)


class NotFoundError(StorefrontError):
    """Exception raised when a resource is not found."""
    def __init__(self, message="Resource not found", payload=None):
        super().__init__(message, 404, payload)


class StockError(StorefrontError):
    """Raised when a product cannot cover the requested quantity."""
    def __init__(self, product_name, required, available=None):
        self.product_name = product_name
        self.required = required
        self.available = available
        if available is None:
            message = f"Insufficient stock for {product_name}: {required} requested"
        else:
            message = f"Insufficient stock for {product_name}: only {available} left in stock"
        super().__init__(message, 409, {'product': product_name, 'requested': required})


class SlotError(StorefrontError):
    """Raised when a delivery slot is full or no longer offered."""
    def __init__(self, message="The selected delivery slot is full", slot_id=None):
        self.slot_id = slot_id
        super().__init__(message, 409, {'slot_id': slot_id} if slot_id is not None else None)


class CouponError(StorefrontError):
    """Raised when a coupon cannot be applied; ``reason`` is a stable machine code."""
    def __init__(self, reason, message):
        self.reason = reason
        super().__init__(message, 422, {'reason': reason})


class PartialFailureError(StorefrontError):
    """A pipeline step failed after an earlier step committed.

    The response only carries the order reference; the step and item detail
    are logged and persisted as a CheckoutFailure record for reconciliation.
    """
    def __init__(self, order_id, order_number, step, order_item_id=None, detail=None):
        self.order_id = order_id
        self.order_number = order_number
        self.step = step
        self.order_item_id = order_item_id
        self.detail = detail or {}
        reference = order_number or order_id
        message = (
            "Your order could not be completed. "
            f"Please contact support with reference {reference}"
        )
        super().__init__(message, 500, {'reference': reference})
