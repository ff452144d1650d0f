"""
Assignment Strategy Factory

Provides a single entry point for obtaining the configured delivery
partner selection policy.

Usage:
    from orderflow.services.assignment import get_assignment_strategy

    strategy = get_assignment_strategy()
    partner = strategy.select(candidates, origin)

Policy Switching:
    - ASSIGNMENT_STRATEGY=nearest → NearestAvailableStrategy
    - ASSIGNMENT_STRATEGY=round_robin → RoundRobinStrategy
"""

import logging
from functools import lru_cache

from orderflow.core.config import AssignmentPolicy, get_settings
from orderflow.services.assignment.base import (
    BaseAssignmentStrategy,
    Location,
    distance_km,
)
from orderflow.services.assignment.eta import estimate_delivery_at
from orderflow.services.assignment.nearest import NearestAvailableStrategy
from orderflow.services.assignment.round_robin import RoundRobinStrategy

logger = logging.getLogger(__name__)


@lru_cache()
def get_assignment_strategy() -> BaseAssignmentStrategy:
    """
    Get the configured assignment strategy instance.

    Returns:
        BaseAssignmentStrategy: Configured selection policy
    """
    settings = get_settings()

    if settings.assignment_strategy == AssignmentPolicy.ROUND_ROBIN:
        logger.info("Assignment Strategy: Using RoundRobinStrategy")
        return RoundRobinStrategy()

    logger.info(
        f"Assignment Strategy: Using NearestAvailableStrategy "
        f"(max {settings.assignment_max_distance_km} km)"
    )
    return NearestAvailableStrategy(max_distance_km=settings.assignment_max_distance_km)


def reset_assignment_strategy() -> None:
    """
    Clear the cached strategy instance.

    Useful for testing or when configuration changes at runtime.
    """
    get_assignment_strategy.cache_clear()
    logger.debug("Assignment strategy cache cleared")


__all__ = [
    "get_assignment_strategy",
    "reset_assignment_strategy",
    "BaseAssignmentStrategy",
    "Location",
    "distance_km",
    "estimate_delivery_at",
    "NearestAvailableStrategy",
    "RoundRobinStrategy",
]
