"""
Order Status State Machine

The lifecycle is a fixed linear progression with a cancellation branch:

    pending → confirmed → preparing → ready_for_pickup → out_for_delivery → delivered
       └──────────┴────────────┴──→ cancelled

`allowed_next` is the single source of truth for legal moves. It is a pure
function over an explicit adjacency table so it can be shared by the
server-side engine and client-side code alike.
"""

import enum
from typing import Optional


class OrderStatus(str, enum.Enum):
    """Order status workflow."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY_FOR_PICKUP = "ready_for_pickup"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentStatus(str, enum.Enum):
    """Payment capture state, owned by the payment collaborator."""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


# Display / progress ordering. `cancelled` is deliberately absent.
STATUS_SEQUENCE: tuple[OrderStatus, ...] = (
    OrderStatus.PENDING,
    OrderStatus.CONFIRMED,
    OrderStatus.PREPARING,
    OrderStatus.READY_FOR_PICKUP,
    OrderStatus.OUT_FOR_DELIVERY,
    OrderStatus.DELIVERED,
)

CANCELLABLE_STATES = frozenset({
    OrderStatus.PENDING,
    OrderStatus.CONFIRMED,
    OrderStatus.PREPARING,
})

TERMINAL_STATES = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED})

_ADJACENCY: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.PREPARING, OrderStatus.CANCELLED}),
    OrderStatus.PREPARING: frozenset({OrderStatus.READY_FOR_PICKUP, OrderStatus.CANCELLED}),
    OrderStatus.READY_FOR_PICKUP: frozenset({OrderStatus.OUT_FOR_DELIVERY}),
    OrderStatus.OUT_FOR_DELIVERY: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

# Which side of the business drives each forward move.
KITCHEN_TARGETS = frozenset({
    OrderStatus.CONFIRMED,
    OrderStatus.PREPARING,
    OrderStatus.READY_FOR_PICKUP,
})
COURIER_TARGETS = frozenset({
    OrderStatus.OUT_FOR_DELIVERY,
    OrderStatus.DELIVERED,
})


# =============================================================================
# EVENT TYPES
# =============================================================================

ORDER_CREATED = "order_created"
DELIVERY_ASSIGNED = "delivery_assigned"
LOCATION_UPDATE = "location_update"
STATUS_EVENT_PREFIX = "status_"


def allowed_next(status: OrderStatus) -> frozenset[OrderStatus]:
    """Return the statuses directly reachable from `status`."""
    return _ADJACENCY[OrderStatus(status)]


def is_terminal(status: OrderStatus) -> bool:
    return OrderStatus(status) in TERMINAL_STATES


def status_event_type(status: OrderStatus) -> str:
    """Event type recorded when an order enters `status`."""
    return f"{STATUS_EVENT_PREFIX}{OrderStatus(status).value}"


def status_from_event_type(event_type: str) -> Optional[OrderStatus]:
    """
    Map an event type back to the status it establishes.

    `order_created` establishes `pending`; non-status events
    (assignment, location pings) return None.
    """
    if event_type == ORDER_CREATED:
        return OrderStatus.PENDING
    if event_type.startswith(STATUS_EVENT_PREFIX):
        try:
            return OrderStatus(event_type[len(STATUS_EVENT_PREFIX):])
        except ValueError:
            return None
    return None
