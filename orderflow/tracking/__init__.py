"""Client-side order tracking: view model reducer and the polling/WebSocket driver."""

from orderflow.tracking.client import TrackingClient
from orderflow.tracking.view_model import (
    STEP_LABELS,
    CourierPosition,
    ProgressStep,
    StepState,
    TrackingView,
    TrackingViewModel,
)

__all__ = [
    "TrackingClient",
    "TrackingViewModel",
    "TrackingView",
    "ProgressStep",
    "StepState",
    "CourierPosition",
    "STEP_LABELS",
]
