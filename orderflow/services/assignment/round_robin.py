"""
Round-robin partner selection.

Picks the available partner who has waited longest since their last
assignment (never-assigned partners first). The rotation lives in the
partners' `last_assigned_at` column, so it survives restarts and is
shared by every server process.
"""

from datetime import datetime, timezone
from typing import Optional, Sequence

from orderflow.models import DeliveryPartner
from orderflow.services.assignment.base import BaseAssignmentStrategy, Location

_NEVER = datetime.min.replace(tzinfo=timezone.utc)


def _waiting_since(partner: DeliveryPartner) -> datetime:
    assigned = partner.last_assigned_at
    if assigned is None:
        return _NEVER
    # SQLite hands back naive datetimes
    if assigned.tzinfo is None:
        assigned = assigned.replace(tzinfo=timezone.utc)
    return assigned


class RoundRobinStrategy(BaseAssignmentStrategy):

    @property
    def name(self) -> str:
        return "round_robin"

    def select(
        self,
        candidates: Sequence[DeliveryPartner],
        origin: Optional[Location] = None,
    ) -> Optional[DeliveryPartner]:
        if not candidates:
            return None
        return min(candidates, key=lambda p: (_waiting_since(p), p.id))
