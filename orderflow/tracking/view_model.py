"""
Tracking View Model

Client-side reducer for the order tracking screen. The last polled
snapshot is the source of truth; live channel messages are overlays:

    order_update     → hint only; the caller should re-fetch the snapshot
    location_update  → courier marker, applied directly

A snapshot whose event trail is shorter than the one already held is a
stale response that lost a race with a newer fetch, and is discarded so
the displayed status never moves backwards.
"""

import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from orderflow.channel.messages import LocationUpdateMessage, OrderUpdateMessage
from orderflow.domain.status import (
    LOCATION_UPDATE,
    STATUS_SEQUENCE,
    OrderStatus,
    status_from_event_type,
)
from orderflow.schemas import OrderEventResponse, OrderSnapshot

logger = logging.getLogger(__name__)

STEP_LABELS: dict[OrderStatus, str] = {
    OrderStatus.PENDING: "Order Placed",
    OrderStatus.CONFIRMED: "Confirmed",
    OrderStatus.PREPARING: "Preparing",
    OrderStatus.READY_FOR_PICKUP: "Ready for Pickup",
    OrderStatus.OUT_FOR_DELIVERY: "Out for Delivery",
    OrderStatus.DELIVERED: "Delivered",
}


class StepState(str, enum.Enum):
    COMPLETED = "completed"
    CURRENT = "current"
    UPCOMING = "upcoming"


@dataclass(frozen=True)
class ProgressStep:
    status: OrderStatus
    label: str
    state: StepState
    reached_at: Optional[datetime] = None


@dataclass(frozen=True)
class CourierPosition:
    latitude: float
    longitude: float


@dataclass(frozen=True)
class TrackingView:
    """What the tracking screen draws."""
    order_id: str
    status: OrderStatus
    cancelled: bool
    steps: tuple[ProgressStep, ...] = field(default_factory=tuple)
    courier_position: Optional[CourierPosition] = None
    cancelled_at: Optional[datetime] = None
    estimated_delivery_at: Optional[datetime] = None
    remaining_minutes: Optional[int] = None


def _minutes_until(eta: datetime, now: datetime) -> int:
    if eta.tzinfo is None:
        eta = eta.replace(tzinfo=timezone.utc)
    return max(0, round((eta - now).total_seconds() / 60))


def _reached_at(events: list[OrderEventResponse], status: OrderStatus) -> Optional[datetime]:
    for event in events:
        if status_from_event_type(event.event_type) == status:
            return event.created_at
    return None


class TrackingViewModel:

    def __init__(self, order_id: str):
        self.order_id = order_id
        self.snapshot: Optional[OrderSnapshot] = None
        self.courier_position: Optional[CourierPosition] = None

    @property
    def status(self) -> Optional[OrderStatus]:
        return self.snapshot.status if self.snapshot else None

    def apply_snapshot(self, snapshot: OrderSnapshot) -> bool:
        """Adopt a freshly fetched snapshot. Returns False if it was discarded."""
        if snapshot.id != self.order_id:
            logger.debug(f"Ignoring snapshot for order {snapshot.id}")
            return False

        if self.snapshot is not None and len(snapshot.events) < len(self.snapshot.events):
            logger.debug(
                f"Discarding stale snapshot for {self.order_id} "
                f"({len(snapshot.events)} < {len(self.snapshot.events)} events)"
            )
            return False

        self.snapshot = snapshot

        if self.courier_position is None:
            # Seed the marker from the trail until the first live report arrives
            for event in reversed(snapshot.events):
                if event.event_type == LOCATION_UPDATE and event.latitude is not None \
                        and event.longitude is not None:
                    self.courier_position = CourierPosition(event.latitude, event.longitude)
                    break

        return True

    def handle_message(self, message) -> bool:
        """
        Fold one live message into the view.

        Returns True when the caller should re-fetch the snapshot now.
        """
        if isinstance(message, OrderUpdateMessage):
            return message.data.order_id == self.order_id

        if isinstance(message, LocationUpdateMessage):
            if message.data.order_id == self.order_id:
                self.courier_position = CourierPosition(
                    message.data.latitude,
                    message.data.longitude,
                )
            return False

        return False

    def render(self, now: Optional[datetime] = None) -> Optional[TrackingView]:
        if self.snapshot is None:
            return None

        status = self.snapshot.status
        events = self.snapshot.events

        if status == OrderStatus.CANCELLED:
            return TrackingView(
                order_id=self.order_id,
                status=status,
                cancelled=True,
                cancelled_at=_reached_at(events, OrderStatus.CANCELLED),
            )

        position = STATUS_SEQUENCE.index(status)
        steps = []
        for index, step_status in enumerate(STATUS_SEQUENCE):
            if index < position:
                state = StepState.COMPLETED
            elif index == position:
                state = StepState.CURRENT
            else:
                state = StepState.UPCOMING

            steps.append(ProgressStep(
                status=step_status,
                label=STEP_LABELS[step_status],
                state=state,
                reached_at=_reached_at(events, step_status) if state != StepState.UPCOMING else None,
            ))

        courier = self.courier_position if status == OrderStatus.OUT_FOR_DELIVERY else None

        # Arrival estimate is set at courier assignment and dropped once delivered
        eta = self.snapshot.estimated_delivery_at if status != OrderStatus.DELIVERED else None
        remaining = None
        if eta is not None:
            remaining = _minutes_until(eta, now or datetime.now(timezone.utc))

        return TrackingView(
            order_id=self.order_id,
            status=status,
            cancelled=False,
            steps=tuple(steps),
            courier_position=courier,
            estimated_delivery_at=eta,
            remaining_minutes=remaining,
        )
