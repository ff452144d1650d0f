"""
Tracking Client

Drives a TrackingViewModel against a running server:

    - polling loop: GET /api/orders/{id} every `poll_interval` seconds, or
      immediately when a live `order_update` for the order arrives
    - channel loop: WebSocket at /ws?user_id=..., answering liveness pings,
      reconnecting silently with exponential backoff

When a run of reconnection attempts is exhausted the client stops trying
and keeps tracking through polling alone.

Example:
    >>> async with httpx.AsyncClient(base_url="http://localhost:8001") as http:
    ...     client = TrackingClient(http, order_id, user_id="cust-1")
    ...     task = asyncio.create_task(client.run())
    ...     ...
    ...     await client.stop()
"""

import asyncio
import logging
from typing import Callable, Optional
from urllib.parse import urlencode

import httpx
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from websockets.asyncio.client import connect
from websockets.exceptions import ConnectionClosed, InvalidHandshake

from orderflow.channel.messages import PING, PONG_FRAME, frame_type, parse_channel_message
from orderflow.core.config import get_settings
from orderflow.schemas import OrderSnapshot
from orderflow.tracking.view_model import TrackingView, TrackingViewModel

logger = logging.getLogger(__name__)

# Failures that mean "could not open the socket"; worth another attempt
CONNECT_ERRORS = (OSError, InvalidHandshake, asyncio.TimeoutError)


class TrackingClient:

    def __init__(
        self,
        http: httpx.AsyncClient,
        order_id: str,
        user_id: str,
        role: str = "customer",
        ws_url: Optional[str] = None,
        poll_interval: Optional[float] = None,
        reconnect_attempts: Optional[int] = None,
        on_change: Optional[Callable[[TrackingView], None]] = None,
    ):
        settings = get_settings()

        self.http = http
        self.order_id = order_id
        self.user_id = user_id
        self.role = role
        self.ws_url = ws_url or self._derive_ws_url(str(http.base_url))
        self.poll_interval = poll_interval or settings.poll_interval_seconds
        self.reconnect_attempts = reconnect_attempts or settings.reconnect_attempts
        self.on_change = on_change

        self.model = TrackingViewModel(order_id)
        self.polling_only = False
        self.last_error: Optional[str] = None

        self._refetch = asyncio.Event()
        self._stopped = asyncio.Event()
        self._tasks: list[asyncio.Task] = []

    @staticmethod
    def _derive_ws_url(base_url: str) -> str:
        base = base_url.rstrip("/")
        if base.startswith("https://"):
            return "wss://" + base[len("https://"):] + "/ws"
        if base.startswith("http://"):
            return "ws://" + base[len("http://"):] + "/ws"
        return base + "/ws"

    @property
    def headers(self) -> dict[str, str]:
        return {"X-User-Id": self.user_id, "X-User-Role": self.role}

    # =========================================================================
    # SNAPSHOT
    # =========================================================================

    async def refresh(self) -> bool:
        """Fetch the snapshot once. Returns True if the view changed."""
        response = await self.http.get(f"/api/orders/{self.order_id}", headers=self.headers)
        response.raise_for_status()
        snapshot = OrderSnapshot.model_validate(response.json())

        accepted = self.model.apply_snapshot(snapshot)
        if accepted:
            self._emit()
        return accepted

    def request_refetch(self) -> None:
        self._refetch.set()

    def _emit(self) -> None:
        if self.on_change is None:
            return
        view = self.model.render()
        if view is not None:
            self.on_change(view)

    async def _poll_loop(self) -> None:
        while not self._stopped.is_set():
            self._refetch.clear()
            try:
                await self.refresh()
                self.last_error = None
            except httpx.HTTPError as e:
                self.last_error = str(e)
                logger.warning(f"Snapshot fetch for {self.order_id} failed: {e}")

            try:
                await asyncio.wait_for(self._refetch.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass

    # =========================================================================
    # LIVE CHANNEL
    # =========================================================================

    async def handle_frame(self, raw) -> Optional[str]:
        """Process one inbound frame; returns a reply frame if one is due."""
        if frame_type(raw) == PING:
            return PONG_FRAME

        message = parse_channel_message(raw)
        if message is None:
            return None

        if self.model.handle_message(message):
            self.request_refetch()
        else:
            self._emit()
        return None

    async def _listen(self) -> None:
        url = f"{self.ws_url}?{urlencode({'user_id': self.user_id})}"
        async with connect(url) as socket:
            logger.info(f"Tracking channel open for {self.user_id}")
            # A fresh connection may have missed pushes; catch up
            self.request_refetch()
            try:
                async for raw in socket:
                    reply = await self.handle_frame(raw)
                    if reply is not None:
                        await socket.send(reply)
            except ConnectionClosed as e:
                logger.info(f"Tracking channel closed ({e.rcvd.code if e.rcvd else 'no close frame'})")

    async def _channel_loop(self) -> None:
        while not self._stopped.is_set():
            try:
                async for attempt in AsyncRetrying(
                    reraise=False,
                    stop=stop_after_attempt(self.reconnect_attempts),
                    wait=wait_exponential(multiplier=0.5, min=0.5, max=10),
                    retry=retry_if_exception_type(CONNECT_ERRORS),
                ):
                    with attempt:
                        await self._listen()
            except RetryError as e:
                logger.warning(
                    f"Tracking channel unreachable after {self.reconnect_attempts} attempts "
                    f"({e.last_attempt.exception()!r}); polling only"
                )
                self.polling_only = True
                return

            # Connection was up and then dropped; start a fresh run of attempts
            await asyncio.sleep(0.5)

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def run(self) -> None:
        self._tasks = [
            asyncio.create_task(self._poll_loop(), name=f"track-poll-{self.order_id}"),
            asyncio.create_task(self._channel_loop(), name=f"track-ws-{self.order_id}"),
        ]
        try:
            await self._stopped.wait()
        finally:
            await self._cancel_tasks()

    async def stop(self) -> None:
        self._stopped.set()
        self._refetch.set()
        await self._cancel_tasks()

    async def _cancel_tasks(self) -> None:
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []
