"""
                        Services Module

Order lifecycle business logic. Collaborators with an external provider
have Mock (development) and Real (production) implementations.

Services:
    - transitions: status state machine writer (TransitionEngine)
    - orders: checkout, snapshots and role-scoped listing
    - delivery: courier assignment and location relay
    - assignment: pluggable partner selection strategies
    - notifications: Twilio SMS / SendGrid email status updates
"""

from orderflow.services.delivery import DeliveryService
from orderflow.services.orders import OrderService, calculate_order_totals
from orderflow.services.transitions import TransitionEngine, TransitionResult

__all__ = [
    "DeliveryService",
    "OrderService",
    "TransitionEngine",
    "TransitionResult",
    "calculate_order_totals",
]
