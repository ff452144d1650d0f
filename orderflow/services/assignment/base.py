"""
Delivery Assignment Strategy Abstract Base Class

Defines the interface contract for delivery partner selection policies.
The assignment service asks a strategy to pick one partner out of the
currently available candidates; how it picks is the strategy's business.

Design Pattern: Strategy Pattern
    - Selection policy is swapped through configuration
    - New policies can be added without modifying the assignment flow
"""

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Sequence

from orderflow.models import DeliveryPartner

EARTH_RADIUS_KM = 6371.0


@dataclass(frozen=True)
class Location:
    """A latitude/longitude pair in decimal degrees."""
    latitude: float
    longitude: float


def distance_km(origin: Location, destination: Location) -> float:
    """Great-circle (haversine) distance between two points."""
    lat1, lat2 = math.radians(origin.latitude), math.radians(destination.latitude)
    d_lat = lat2 - lat1
    d_lng = math.radians(destination.longitude - origin.longitude)

    a = math.sin(d_lat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(d_lng / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(a))


class BaseAssignmentStrategy(ABC):
    """
    Abstract base class for partner selection policies.

    Example:
        >>> strategy = get_assignment_strategy()
        >>> partner = strategy.select(candidates, origin=Location(40.71, -74.0))
        >>> if partner is None:
        ...     raise NoPartnerAvailable(order.id)
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """
        Return the policy name.

        Returns:
            str: Policy name (e.g., "nearest", "round_robin")
        """
        pass

    @abstractmethod
    def select(
        self,
        candidates: Sequence[DeliveryPartner],
        origin: Optional[Location] = None,
    ) -> Optional[DeliveryPartner]:
        """
        Choose one partner for a pickup at `origin`.

        Args:
            candidates: Partners currently marked available
            origin: Pickup location (the restaurant), if known

        Returns:
            The chosen partner, or None if no candidate qualifies
        """
        pass
