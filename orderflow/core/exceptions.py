"""
Domain Error Taxonomy

Every failure the order lifecycle can report to a caller. All of them are
recoverable: routes translate them to HTTP responses through the
exception handler registered in orderflow.main, nothing here crashes
the process.
"""

from typing import Optional


class OrderflowError(Exception):
    """Base class for all recoverable domain errors."""

    status_code: int = 400
    error: str = "orderflow_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidTransition(OrderflowError):
    """Requested status is not reachable from the current one."""

    status_code = 409
    error = "invalid_transition"

    def __init__(self, current: str, requested: str):
        super().__init__(f"Cannot move order from '{current}' to '{requested}'")
        self.current = current
        self.requested = requested


class Unauthorized(OrderflowError):
    """Actor lacks the role or ownership required for the operation."""

    status_code = 403
    error = "unauthorized"


class NoPartnerAvailable(OrderflowError):
    """Delivery assignment found no eligible partner."""

    status_code = 409
    error = "no_partner_available"

    def __init__(self, order_id: str):
        super().__init__(f"No delivery partner available for order {order_id}")
        self.order_id = order_id


class RestaurantMismatch(OrderflowError):
    """Cart already holds items from another restaurant."""

    status_code = 409
    error = "restaurant_mismatch"

    def __init__(self, bound_restaurant_id: str, requested_restaurant_id: str):
        super().__init__(
            f"Cart belongs to restaurant {bound_restaurant_id}; "
            f"clear it before adding items from {requested_restaurant_id}"
        )
        self.bound_restaurant_id = bound_restaurant_id
        self.requested_restaurant_id = requested_restaurant_id


class NotFound(OrderflowError):
    """Order, restaurant, menu item or partner id is unknown."""

    status_code = 404
    error = "not_found"

    def __init__(self, kind: str, identifier: Optional[str]):
        super().__init__(f"{kind} {identifier} not found")
        self.kind = kind
        self.identifier = identifier


class ValidationFailed(OrderflowError):
    """Request payload is well-formed but semantically unacceptable."""

    status_code = 400
    error = "validation_failed"
