"""
Authenticated actor identity, as supplied by the upstream identity provider.
"""

import enum
from dataclasses import dataclass


class ActorRole(str, enum.Enum):
    CUSTOMER = "customer"
    RESTAURANT_OWNER = "restaurant_owner"
    DELIVERY_PARTNER = "delivery_partner"
    ADMIN = "admin"
    # Internal caller used by the assignment step and background jobs
    SYSTEM = "system"


@dataclass(frozen=True)
class Actor:
    """Who is asking. `user_id` is the identity-provider subject."""
    user_id: str
    role: ActorRole

    @property
    def is_admin(self) -> bool:
        return self.role == ActorRole.ADMIN

    @property
    def is_system(self) -> bool:
        return self.role == ActorRole.SYSTEM


SYSTEM_ACTOR = Actor(user_id="system", role=ActorRole.SYSTEM)
