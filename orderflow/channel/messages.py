"""
Live Channel Message Types

Wire format (JSON text frames):
    {"type": "order_update", "data": {"order_id": "...", "status": "confirmed"}}
    {"type": "location_update", "data": {"order_id": "...", "latitude": 40.7, "longitude": -74.0}}

Liveness control frames are bare `{"type": "ping"}` / `{"type": "pong"}`.
"""

import json
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from orderflow.domain.status import OrderStatus

PING = "ping"
PONG = "pong"
PING_FRAME = json.dumps({"type": PING})
PONG_FRAME = json.dumps({"type": PONG})


class OrderUpdateData(BaseModel):
    order_id: str
    status: OrderStatus
    delivery_partner_id: Optional[str] = None


class OrderUpdateMessage(BaseModel):
    type: Literal["order_update"] = "order_update"
    data: OrderUpdateData


class LocationUpdateData(BaseModel):
    order_id: str
    latitude: float
    longitude: float


class LocationUpdateMessage(BaseModel):
    type: Literal["location_update"] = "location_update"
    data: LocationUpdateData


ChannelMessage = Annotated[
    Union[OrderUpdateMessage, LocationUpdateMessage],
    Field(discriminator="type"),
]

_adapter: TypeAdapter[ChannelMessage] = TypeAdapter(ChannelMessage)


def order_update(
    order_id: str,
    status: OrderStatus,
    delivery_partner_id: Optional[str] = None,
) -> OrderUpdateMessage:
    return OrderUpdateMessage(
        data=OrderUpdateData(
            order_id=order_id,
            status=status,
            delivery_partner_id=delivery_partner_id,
        )
    )


def location_update(order_id: str, latitude: float, longitude: float) -> LocationUpdateMessage:
    return LocationUpdateMessage(
        data=LocationUpdateData(order_id=order_id, latitude=latitude, longitude=longitude)
    )


def parse_channel_message(raw: Union[str, bytes]) -> Optional[ChannelMessage]:
    """Decode a data frame; control frames and malformed input return None."""
    try:
        return _adapter.validate_json(raw)
    except ValidationError:
        return None


def frame_type(raw: Union[str, bytes]) -> Optional[str]:
    """Peek at the `type` field of any frame without full validation."""
    try:
        decoded = json.loads(raw)
    except (TypeError, ValueError):
        return None
    if isinstance(decoded, dict):
        return decoded.get("type")
    return None
