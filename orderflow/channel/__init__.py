"""
Live channel: WebSocket fan-out of order and courier location updates.
"""

from orderflow.channel.hub import ChannelHub, Subscriber
from orderflow.channel.messages import (
    ChannelMessage,
    LocationUpdateMessage,
    OrderUpdateMessage,
    location_update,
    order_update,
    parse_channel_message,
)

__all__ = [
    "ChannelHub",
    "Subscriber",
    "ChannelMessage",
    "LocationUpdateMessage",
    "OrderUpdateMessage",
    "location_update",
    "order_update",
    "parse_channel_message",
]
