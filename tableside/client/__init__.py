"""
Client synchronisation core.

Everything a role-specific screen (customer, kitchen, waiter, admin)
embeds: table context, per-table cart, local orders and bills, realtime
subscription and the durable cache.
"""

from tableside.client.api import ApiClient
from tableside.client.bus import EventBus
from tableside.client.cache import DurableCache, JsonFileCache, MemoryCache, open_cache
from tableside.client.cart import CartLine, CartStore, MenuProduct
from tableside.client.context import ClientContext
from tableside.client.errors import (
    ApiAuthError,
    ApiRejectedError,
    ApiUnavailableError,
    ClientError,
    OrderValidationError,
)
from tableside.client.ledger import BillLedger, dedupe
from tableside.client.notifications import NotificationCenter
from tableside.client.orders import OrderStore, Submission, SubmissionState
from tableside.client.realtime import RealtimeClient
from tableside.client.session import ClientFlags, Role, SessionHolder, TableSession

__all__ = [
    "ApiClient",
    "EventBus",
    "DurableCache",
    "JsonFileCache",
    "MemoryCache",
    "open_cache",
    "CartLine",
    "CartStore",
    "MenuProduct",
    "ClientContext",
    "ClientError",
    "ApiAuthError",
    "ApiRejectedError",
    "ApiUnavailableError",
    "OrderValidationError",
    "BillLedger",
    "dedupe",
    "NotificationCenter",
    "OrderStore",
    "Submission",
    "SubmissionState",
    "RealtimeClient",
    "ClientFlags",
    "Role",
    "SessionHolder",
    "TableSession",
]
