"""
Realtime Connection

Keeps one websocket open to the server's /ws endpoint, decodes every pushed
event and publishes it on the client's EventBus. Drops are retried with
exponential backoff. Events sent while disconnected are lost, so after each
reconnect the on_reconnect hook runs (normally OrderStore.refresh).
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional
from urllib.parse import urlencode, urlsplit, urlunsplit

import websockets
from pydantic import ValidationError
from websockets.exceptions import WebSocketException

from tableside.client.bus import EventBus
from tableside.schemas import RealtimeEvent

logger = logging.getLogger(__name__)

ReconnectHook = Callable[[], Awaitable[Any]]


def with_role(ws_url: str, role: str) -> str:
    """Append the role query parameter the server logs connections under."""
    parts = urlsplit(ws_url)
    query = f"{parts.query}&" if parts.query else ""
    return urlunsplit(parts._replace(query=query + urlencode({"role": role})))


class RealtimeClient:
    """Auto-reconnecting subscriber for server-pushed events."""

    def __init__(
        self,
        ws_url: str,
        bus: EventBus,
        role: str = "customer",
        on_reconnect: Optional[ReconnectHook] = None,
        reconnect_delay: float = 1.0,
        reconnect_max_delay: float = 30.0,
        connect: Callable[..., Any] = websockets.connect,
    ):
        self.url = with_role(ws_url, role)
        self.bus = bus
        self.on_reconnect = on_reconnect
        self.reconnect_delay = reconnect_delay
        self.reconnect_max_delay = reconnect_max_delay
        self._connect = connect

        self.connected = asyncio.Event()
        self.connections = 0
        self._stopped = False
        self._ws = None

    async def run(self) -> None:
        """Connect, relay events and reconnect until stop() is called."""
        delay = self.reconnect_delay
        while not self._stopped:
            try:
                async with self._connect(self.url) as ws:
                    self._ws = ws
                    self.connections += 1
                    self.connected.set()
                    delay = self.reconnect_delay
                    logger.info(f"Realtime channel connected ({self.url})")

                    if self.connections > 1:
                        await self._resync()

                    async for message in ws:
                        self.handle_message(message)
            except (OSError, asyncio.TimeoutError, WebSocketException) as e:
                logger.warning(f"Realtime channel dropped: {e!r}")
            finally:
                self._ws = None
                self.connected.clear()

            if self._stopped:
                break
            logger.info(f"Reconnecting realtime channel in {delay:.1f}s")
            await asyncio.sleep(delay)
            delay = min(delay * 2, self.reconnect_max_delay)

        logger.info("Realtime channel stopped")

    async def stop(self) -> None:
        self._stopped = True
        if self._ws is not None:
            await self._ws.close()

    def handle_message(self, message: Any) -> Optional[RealtimeEvent]:
        """Decode one frame and publish it; malformed frames are dropped."""
        if isinstance(message, bytes):
            message = message.decode("utf-8", errors="replace")
        if message == "pong":
            return None
        try:
            event = RealtimeEvent.model_validate_json(message)
        except ValidationError as e:
            logger.warning(f"Dropping malformed realtime frame: {e.error_count()} error(s)")
            return None
        self.bus.publish(event)
        return event

    async def _resync(self) -> None:
        if self.on_reconnect is None:
            return
        try:
            await self.on_reconnect()
        except Exception:
            logger.exception("Resync after reconnect failed")
