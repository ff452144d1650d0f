"""
Event Distribution Channel

Process-scoped registry of live WebSocket subscribers keyed by user id.
The hub is created and started when the server starts and closed (every
connection closed) on shutdown; nothing about it is module-global.

Delivery guarantees:
    - At-most-once, best-effort. A message for a user with no open
      connection is dropped; clients reconcile by polling.
    - Per connection, messages go out in publish order: publish only
      enqueues onto a bounded FIFO queue, and one sender task per
      connection drains it. A slow socket therefore never blocks
      publishers or other subscribers. A connection whose queue is full
      is considered stalled and is dropped.
    - Connections silent for longer than the heartbeat timeout are
      closed and removed by the periodic liveness sweep.

Example:
    >>> hub = ChannelHub(heartbeat_interval=30, heartbeat_timeout=75)
    >>> await hub.start()
    >>> subscriber = await hub.connect("user-1", websocket)
    >>> await hub.publish(["user-1"], order_update("order-1", OrderStatus.CONFIRMED))
    1
"""

import asyncio
import logging
import time
import uuid
from typing import Awaitable, Callable, Iterable, Optional, Protocol

from pydantic import BaseModel

from orderflow.channel.messages import PING, PING_FRAME, PONG_FRAME, frame_type

logger = logging.getLogger(__name__)


class SocketLike(Protocol):
    """The slice of starlette's WebSocket the hub relies on."""

    async def send_text(self, data: str) -> None: ...

    async def close(self, code: int = 1000) -> None: ...


class Subscriber:
    """One live connection for one identity."""

    def __init__(
        self,
        user_id: str,
        socket: SocketLike,
        queue_size: int,
        on_failure: Callable[["Subscriber"], Awaitable[None]],
    ):
        self.id = uuid.uuid4().hex[:12]
        self.user_id = user_id
        self.socket = socket
        self.queue: asyncio.Queue[str] = asyncio.Queue(maxsize=queue_size)
        self.last_seen = time.monotonic()
        self.closed = False
        self._on_failure = on_failure
        self._sender: Optional[asyncio.Task] = None

    def __repr__(self):
        return f"<Subscriber {self.id} user={self.user_id}>"

    def start(self) -> None:
        self._sender = asyncio.create_task(self._drain(), name=f"ws-sender-{self.id}")

    def touch(self) -> None:
        self.last_seen = time.monotonic()

    def offer(self, payload: str) -> bool:
        """Enqueue without waiting. False means the connection is stalled."""
        if self.closed:
            return False
        try:
            self.queue.put_nowait(payload)
        except asyncio.QueueFull:
            return False
        return True

    async def flush(self) -> None:
        """Wait until everything queued so far has been handed to the socket."""
        await self.queue.join()

    async def _drain(self) -> None:
        while True:
            payload = await self.queue.get()
            try:
                await self.socket.send_text(payload)
            except Exception as e:
                logger.info(f"Send to {self} failed ({e!r}); dropping connection")
                self.queue.task_done()
                await self._on_failure(self)
                return
            self.queue.task_done()

    async def close(self, code: int = 1000) -> None:
        if self.closed:
            return
        self.closed = True

        if self._sender and self._sender is not asyncio.current_task():
            self._sender.cancel()
            try:
                await self._sender
            except asyncio.CancelledError:
                pass

        # Release anyone waiting in flush()
        while not self.queue.empty():
            self.queue.get_nowait()
            self.queue.task_done()

        try:
            await self.socket.close(code=code)
        except Exception as e:
            # Peer already gone; nothing left to release
            logger.debug(f"Close of {self} ignored: {e!r}")


class ChannelHub:
    """Concurrency-safe mapping of identity -> set of live subscribers."""

    def __init__(
        self,
        heartbeat_interval: float = 30.0,
        heartbeat_timeout: float = 75.0,
        queue_size: int = 100,
    ):
        self.heartbeat_interval = heartbeat_interval
        self.heartbeat_timeout = heartbeat_timeout
        self.queue_size = queue_size

        self._subscribers: dict[str, set[Subscriber]] = {}
        self._lock = asyncio.Lock()
        self._heartbeat: Optional[asyncio.Task] = None
        self._closed = False

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def start(self) -> None:
        if self._heartbeat is None:
            self._heartbeat = asyncio.create_task(self._heartbeat_loop(), name="ws-heartbeat")
            logger.info(
                f"Channel hub started (heartbeat={self.heartbeat_interval}s, "
                f"timeout={self.heartbeat_timeout}s)"
            )

    async def close(self) -> None:
        """Stop liveness probing and close every connection."""
        self._closed = True
        if self._heartbeat:
            self._heartbeat.cancel()
            try:
                await self._heartbeat
            except asyncio.CancelledError:
                pass
            self._heartbeat = None

        async with self._lock:
            subscribers = [s for group in self._subscribers.values() for s in group]
            self._subscribers.clear()

        for subscriber in subscribers:
            await subscriber.close(code=1001)
        logger.info(f"Channel hub closed ({len(subscribers)} connections)")

    # =========================================================================
    # CONNECT / DISCONNECT
    # =========================================================================

    async def connect(self, user_id: str, socket: SocketLike) -> Subscriber:
        """Register an already-accepted socket under `user_id`."""
        if self._closed:
            raise RuntimeError("Channel hub is closed")

        subscriber = Subscriber(user_id, socket, self.queue_size, on_failure=self.disconnect)
        async with self._lock:
            self._subscribers.setdefault(user_id, set()).add(subscriber)
        subscriber.start()

        logger.info(f"Subscriber connected: {subscriber}")
        return subscriber

    async def disconnect(self, subscriber: Subscriber, code: int = 1000) -> None:
        """Remove one connection. Other connections of the same user are untouched."""
        async with self._lock:
            group = self._subscribers.get(subscriber.user_id)
            if group is not None:
                group.discard(subscriber)
                if not group:
                    del self._subscribers[subscriber.user_id]

        if not subscriber.closed:
            await subscriber.close(code=code)
            logger.info(f"Subscriber disconnected: {subscriber}")

    # =========================================================================
    # FAN-OUT
    # =========================================================================

    async def publish(self, recipients: Iterable[Optional[str]], message: BaseModel) -> int:
        """
        Fan `message` out to every connection of every recipient.

        Returns the number of connections it was queued for. Zero is a
        normal outcome (nobody listening), not an error.
        """
        payload = message.model_dump_json()
        # Deduplicate while keeping order; a user can be both customer and owner
        targets = list(dict.fromkeys(r for r in recipients if r))

        delivered = 0
        stalled: list[Subscriber] = []
        async with self._lock:
            for user_id in targets:
                for subscriber in self._subscribers.get(user_id, ()):
                    if subscriber.offer(payload):
                        delivered += 1
                    else:
                        stalled.append(subscriber)

        for subscriber in stalled:
            logger.warning(f"Dropping stalled subscriber {subscriber}")
            await self.disconnect(subscriber, code=1008)

        if delivered == 0:
            logger.debug(f"No live subscribers for {targets}; message dropped")
        return delivered

    # =========================================================================
    # LIVENESS
    # =========================================================================

    async def handle_inbound(self, subscriber: Subscriber, raw: str) -> None:
        """Any inbound frame proves liveness; a client ping gets a pong."""
        subscriber.touch()
        if frame_type(raw) == PING:
            subscriber.offer(PONG_FRAME)

    async def sweep(self) -> int:
        """Evict silent connections and ping the rest. Returns evictions."""
        deadline = time.monotonic() - self.heartbeat_timeout
        async with self._lock:
            everyone = [s for group in self._subscribers.values() for s in group]

        expired = [s for s in everyone if s.last_seen < deadline]
        for subscriber in expired:
            logger.info(f"Liveness timeout for {subscriber}")
            await self.disconnect(subscriber, code=1001)

        for subscriber in everyone:
            if subscriber not in expired:
                subscriber.offer(PING_FRAME)

        return len(expired)

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            try:
                await self.sweep()
            except Exception:
                logger.exception("Heartbeat sweep failed")

    # =========================================================================
    # INTROSPECTION
    # =========================================================================

    def subscriber_count(self, user_id: Optional[str] = None) -> int:
        if user_id is not None:
            return len(self._subscribers.get(user_id, ()))
        return sum(len(group) for group in self._subscribers.values())
