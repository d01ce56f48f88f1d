"""
WebSocket connection manager.

Tracks every realtime client (kitchen display, waiter panel, admin
back-office, customer screen) and relays broker events to all of them.
Every connected client receives every event; a role is recorded only for
logging and stats.
"""

import asyncio
import logging
import random
from typing import Any, Optional

from fastapi import WebSocket
from starlette.websockets import WebSocketState

from tableside.schemas import RealtimeEvent
from tableside.services.events import BaseEventBroker

logger = logging.getLogger(__name__)

RELAY_BASE_DELAY = 0.5
RELAY_MAX_DELAY = 30.0
RELAY_JITTER_FACTOR = 0.1


def _is_ws_connected(ws: WebSocket) -> bool:
    """True when the socket can still be written to."""
    return (
        ws.client_state == WebSocketState.CONNECTED
        and ws.application_state == WebSocketState.CONNECTED
    )


class ConnectionManager:
    """
    Registry of open websockets.

    Uses an asyncio.Lock for registry changes; broadcasts iterate over a
    snapshot so a disconnect during a send cannot break the loop.
    """

    def __init__(self, accept_timeout: float = 5.0):
        self.accept_timeout = accept_timeout
        self._connections: dict[WebSocket, str] = {}
        self._lock = asyncio.Lock()
        self._shutdown = False

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    def count_by_role(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for role in self._connections.values():
            counts[role] = counts.get(role, 0) + 1
        return counts

    async def connect(self, websocket: WebSocket, role: str) -> None:
        """
        Accept a websocket and register it.

        Raises:
            ConnectionError: during shutdown or when the handshake times out
        """
        if self._shutdown:
            raise ConnectionError("Server is shutting down")
        try:
            await asyncio.wait_for(websocket.accept(), timeout=self.accept_timeout)
        except asyncio.TimeoutError:
            raise ConnectionError("WebSocket accept timed out")

        async with self._lock:
            self._connections[websocket] = role
        logger.info(f"Realtime client connected (role={role}, total={self.connection_count})")

    async def disconnect(self, websocket: WebSocket) -> None:
        async with self._lock:
            role = self._connections.pop(websocket, None)
        if role is not None:
            logger.info(
                f"Realtime client disconnected (role={role}, total={self.connection_count})"
            )

    async def broadcast(self, payload: dict[str, Any]) -> int:
        """
        Send a JSON payload to every connected client.

        Returns:
            Number of connections that received the message.
        """
        sent = 0
        for ws in list(self._connections):
            if not _is_ws_connected(ws):
                logger.debug("Skipping send to disconnected socket")
                continue
            try:
                await ws.send_json(payload)
                sent += 1
            except Exception as e:
                logger.warning(f"Failed to send realtime event: {e}")
                await self.disconnect(ws)
        return sent

    async def shutdown(self) -> None:
        """Close every connection and refuse new ones."""
        self._shutdown = True
        async with self._lock:
            connections = list(self._connections)
            self._connections.clear()
        for ws in connections:
            if _is_ws_connected(ws):
                try:
                    await ws.close(code=1001, reason="Server shutting down")
                except Exception as e:
                    logger.debug(f"Error closing websocket during shutdown: {e}")
        logger.info(f"Closed {len(connections)} realtime connection(s)")


def relay_backoff(error_count: int, base: float, maximum: float) -> float:
    """Exponential delay with jitter after error_count consecutive failures."""
    delay = min(base * (2 ** (error_count - 1)), maximum)
    return delay + delay * RELAY_JITTER_FACTOR * random.random()


async def relay_events(
    broker: BaseEventBroker,
    manager: ConnectionManager,
    ready: Optional[asyncio.Event] = None,
    retry_base_delay: float = RELAY_BASE_DELAY,
    retry_max_delay: float = RELAY_MAX_DELAY,
) -> None:
    """
    Forward every broker event to every connected websocket.

    Runs for the lifetime of the API process. A failure while handling one
    event is logged and does not stop the relay. When the broker stream
    itself fails (Redis restarted, network drop) the relay backs off and
    subscribes again.
    """
    logger.info(f"Realtime relay started ({broker.provider_name} broker)")
    error_count = 0
    while True:
        stream = None
        try:
            stream = broker.subscribe()
            if ready is not None:
                ready.set()
            async for event in stream:
                error_count = 0
                try:
                    sent = await manager.broadcast(_encode(event))
                    logger.debug(f"Relayed {event.type.value} to {sent} client(s)")
                except Exception:
                    logger.exception(f"Error relaying {event.type.value}")
            logger.warning("Broker stream ended, subscribing again")
            await asyncio.sleep(retry_base_delay)
        except asyncio.CancelledError:
            logger.info("Realtime relay cancelled")
            raise
        except Exception as e:
            error_count += 1
            delay = relay_backoff(error_count, retry_base_delay, retry_max_delay)
            logger.error(
                f"Broker stream failed ({error_count} in a row): {e!r}; "
                f"resubscribing in {delay:.2f}s"
            )
            await asyncio.sleep(delay)
        finally:
            if stream is not None:
                try:
                    await stream.aclose()
                except Exception as e:
                    logger.debug(f"Error closing broker stream: {e!r}")


def _encode(event: RealtimeEvent) -> dict[str, Any]:
    return event.model_dump(mode="json")
