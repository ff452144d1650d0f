"""
Delivery time estimate.

Computed once, when a courier is attached: the courier rides to the
restaurant, then on to the customer, at a flat city speed. Without both
restaurant and drop-off coordinates there is no route to measure, and a
configured flat estimate is used instead.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from orderflow.services.assignment.base import Location, distance_km


def travel_minutes(km: float, speed_kmh: float) -> float:
    return km / speed_kmh * 60


def estimate_delivery_at(
    pickup: Optional[Location],
    dropoff: Optional[Location],
    courier: Optional[Location] = None,
    speed_kmh: float = 20.0,
    fallback_minutes: float = 30.0,
    now: Optional[datetime] = None,
) -> datetime:
    """
    Estimate when the order reaches the customer.

    Args:
        pickup: Restaurant location
        dropoff: Customer delivery location
        courier: Courier position at assignment; an unknown position
            counts as already at the restaurant
        speed_kmh: Average courier speed
        fallback_minutes: Estimate used when the route cannot be measured
        now: Reference time (defaults to the current UTC time)

    Returns:
        Aware UTC datetime of the expected arrival
    """
    now = now or datetime.now(timezone.utc)

    if pickup is None or dropoff is None:
        return now + timedelta(minutes=fallback_minutes)

    km = distance_km(pickup, dropoff)
    if courier is not None:
        km += distance_km(courier, pickup)

    return now + timedelta(minutes=travel_minutes(km, speed_kmh))
