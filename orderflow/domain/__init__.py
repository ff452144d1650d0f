"""
Pure domain types: the status state machine, actors and the cart aggregate.
Nothing in this package touches the database or the network.
"""

from orderflow.domain.status import (
    OrderStatus,
    PaymentStatus,
    STATUS_SEQUENCE,
    allowed_next,
    status_event_type,
    status_from_event_type,
)
from orderflow.domain.actors import Actor, ActorRole, SYSTEM_ACTOR
from orderflow.domain.cart import Cart, CartLine, MenuItemRef

__all__ = [
    "OrderStatus",
    "PaymentStatus",
    "STATUS_SEQUENCE",
    "allowed_next",
    "status_event_type",
    "status_from_event_type",
    "Actor",
    "ActorRole",
    "SYSTEM_ACTOR",
    "Cart",
    "CartLine",
    "MenuItemRef",
]
