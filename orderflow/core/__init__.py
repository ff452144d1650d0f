"""
Core module initialization.
Exports configuration, logging utilities and the domain error taxonomy.
"""

from orderflow.core.config import get_settings, Settings, EnvironmentMode, AssignmentPolicy
from orderflow.core.exceptions import (
    OrderflowError,
    InvalidTransition,
    Unauthorized,
    NoPartnerAvailable,
    RestaurantMismatch,
    NotFound,
    ValidationFailed,
)

__all__ = [
    "get_settings",
    "Settings",
    "EnvironmentMode",
    "AssignmentPolicy",
    "OrderflowError",
    "InvalidTransition",
    "Unauthorized",
    "NoPartnerAvailable",
    "RestaurantMismatch",
    "NotFound",
    "ValidationFailed",
]
