"""Tests for the live channel hub: fan-out, ordering, liveness and teardown."""

import asyncio
import json
import time

import pytest

from conftest import FakeSocket, drain
from orderflow.channel.hub import ChannelHub
from orderflow.channel.messages import (
    PING_FRAME,
    PONG_FRAME,
    LocationUpdateMessage,
    location_update,
    order_update,
    parse_channel_message,
)
from orderflow.domain.status import OrderStatus


class TestFanOut:
    async def test_every_connection_of_a_recipient_receives(self, hub, listen):
        phone = await listen("alice")
        laptop = await listen("alice")
        bystander = await listen("carol")

        delivered = await hub.publish(["alice"], order_update("o-1", OrderStatus.CONFIRMED))
        await drain(hub)

        assert delivered == 2
        for socket in (phone, laptop):
            assert socket.messages == [{
                "type": "order_update",
                "data": {"order_id": "o-1", "status": "confirmed", "delivery_partner_id": None},
            }]
        assert bystander.sent == []

    async def test_no_listener_is_silent(self, hub):
        assert await hub.publish(["nobody"], order_update("o-1", OrderStatus.CONFIRMED)) == 0

    async def test_duplicate_and_empty_recipients_collapse(self, hub, listen):
        socket = await listen("alice")

        delivered = await hub.publish(
            ["alice", None, "alice", ""], order_update("o-1", OrderStatus.PREPARING)
        )
        await drain(hub)

        assert delivered == 1
        assert len(socket.sent) == 1

    async def test_messages_arrive_in_publish_order(self, hub, listen):
        socket = await listen("alice")
        sequence = [OrderStatus.CONFIRMED, OrderStatus.PREPARING, OrderStatus.READY_FOR_PICKUP]

        for status in sequence:
            await hub.publish(["alice"], order_update("o-1", status))
        await drain(hub)

        assert [m["data"]["status"] for m in socket.messages] == [s.value for s in sequence]

    async def test_location_update_wire_format(self, hub, listen):
        socket = await listen("alice")

        await hub.publish(["alice"], location_update("o-1", 40.7, -74.0))
        await drain(hub)

        message = parse_channel_message(socket.sent[0])
        assert isinstance(message, LocationUpdateMessage)
        assert message.data.latitude == 40.7


class TestConnections:
    async def test_disconnect_one_leaves_the_other(self, hub):
        first, second = FakeSocket(), FakeSocket()
        sub_one = await hub.connect("alice", first)
        await hub.connect("alice", second)

        await hub.disconnect(sub_one)
        await hub.publish(["alice"], order_update("o-1", OrderStatus.CONFIRMED))
        await drain(hub)

        assert first.sent == []
        assert len(second.sent) == 1
        assert first.closed_with == 1000
        assert hub.subscriber_count("alice") == 1

    async def test_stalled_subscriber_is_dropped(self):
        hub = ChannelHub(heartbeat_interval=3600, heartbeat_timeout=75, queue_size=1)
        slow, healthy = FakeSocket(), FakeSocket()
        slow.hold()
        await hub.connect("alice", slow)
        await hub.connect("bob", healthy)

        await hub.publish(["alice"], order_update("o-1", OrderStatus.CONFIRMED))
        await asyncio.sleep(0.01)  # sender takes message 1 and blocks on the socket
        await hub.publish(["alice"], order_update("o-1", OrderStatus.PREPARING))
        delivered = await hub.publish(["alice", "bob"], order_update("o-1", OrderStatus.READY_FOR_PICKUP))
        await drain(hub)

        assert delivered == 1
        assert slow.closed_with == 1008
        assert hub.subscriber_count("alice") == 0
        assert len(healthy.sent) == 1
        await hub.close()

    async def test_failed_send_drops_connection(self, hub):
        broken = FakeSocket(fail=True)
        await hub.connect("alice", broken)

        await hub.publish(["alice"], order_update("o-1", OrderStatus.CONFIRMED))
        await asyncio.sleep(0.01)

        assert hub.subscriber_count("alice") == 0

    async def test_close_shuts_every_connection(self):
        hub = ChannelHub(heartbeat_interval=3600)
        sockets = [FakeSocket(), FakeSocket()]
        await hub.connect("alice", sockets[0])
        await hub.connect("bob", sockets[1])

        await hub.close()

        assert [s.closed_with for s in sockets] == [1001, 1001]
        assert hub.subscriber_count() == 0
        with pytest.raises(RuntimeError):
            await hub.connect("alice", FakeSocket())


class TestLiveness:
    async def test_client_ping_gets_pong(self, hub):
        socket = FakeSocket()
        subscriber = await hub.connect("alice", socket)

        await hub.handle_inbound(subscriber, json.dumps({"type": "ping"}))
        await subscriber.flush()

        assert socket.sent == [PONG_FRAME]

    async def test_sweep_evicts_silent_and_pings_live(self, hub):
        silent, live = FakeSocket(), FakeSocket()
        silent_sub = await hub.connect("alice", silent)
        await hub.connect("bob", live)
        silent_sub.last_seen = time.monotonic() - 120

        evicted = await hub.sweep()
        await drain(hub)

        assert evicted == 1
        assert silent.closed_with == 1001
        assert hub.subscriber_count("alice") == 0
        assert live.sent == [PING_FRAME]

    async def test_any_inbound_frame_counts_as_alive(self, hub):
        socket = FakeSocket()
        subscriber = await hub.connect("alice", socket)
        subscriber.last_seen = time.monotonic() - 120

        await hub.handle_inbound(subscriber, json.dumps({"type": "pong"}))

        assert await hub.sweep() == 0
        assert hub.subscriber_count("alice") == 1

    async def test_heartbeat_loop_runs_sweeps(self):
        hub = ChannelHub(heartbeat_interval=0.01, heartbeat_timeout=0.02)
        socket = FakeSocket()
        await hub.connect("alice", socket)
        await hub.start()

        await asyncio.sleep(0.2)

        assert hub.subscriber_count("alice") == 0
        assert socket.closed_with == 1001
        await hub.close()
