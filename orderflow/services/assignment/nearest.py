"""
Nearest-available partner selection.

Ranks available partners by haversine distance from the pickup point and
returns the closest one within `max_distance_km`. Partners that have not
reported a position are skipped. When the restaurant has no coordinates
there is nothing to measure against, and selection falls back to
round-robin order.
"""

import logging
from typing import Optional, Sequence

from orderflow.models import DeliveryPartner
from orderflow.services.assignment.base import BaseAssignmentStrategy, Location, distance_km
from orderflow.services.assignment.round_robin import RoundRobinStrategy

logger = logging.getLogger(__name__)


class NearestAvailableStrategy(BaseAssignmentStrategy):

    def __init__(self, max_distance_km: Optional[float] = 10.0):
        self.max_distance_km = max_distance_km
        self._fallback = RoundRobinStrategy()

    @property
    def name(self) -> str:
        return "nearest"

    def select(
        self,
        candidates: Sequence[DeliveryPartner],
        origin: Optional[Location] = None,
    ) -> Optional[DeliveryPartner]:
        if origin is None:
            logger.debug("Pickup location unknown; using round-robin order")
            return self._fallback.select(candidates)

        ranked: list[tuple[float, str, DeliveryPartner]] = []
        for partner in candidates:
            if partner.current_latitude is None or partner.current_longitude is None:
                continue

            distance = distance_km(
                origin,
                Location(partner.current_latitude, partner.current_longitude),
            )
            if self.max_distance_km is not None and distance > self.max_distance_km:
                continue
            ranked.append((distance, partner.id, partner))

        if not ranked:
            return None

        ranked.sort(key=lambda entry: (entry[0], entry[1]))
        distance, _, partner = ranked[0]
        logger.debug(f"Nearest partner {partner.id} at {distance:.2f} km")
        return partner
