"""
                        Services Module

Server-side business logic.

Services:
    - orders: order aggregate (create-or-merge, status pipeline, bills)
    - events: realtime event broker (in-memory in development, Redis otherwise)
    - connections: websocket registry and broker relay
"""

from tableside.services.events import get_event_broker
from tableside.services.orders import OrderService, TableLockRegistry

__all__ = ["get_event_broker", "OrderService", "TableLockRegistry"]
