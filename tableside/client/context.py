"""
Client Context

Builds the stores one screen needs and wires them together. Screens get
their stores from here instead of from module globals, so two contexts
(say, a waiter panel and a kitchen display in one test) never share state.

Usage:
    context = ClientContext.build(role=Role.WAITER)
    context.table.resolve({"table": "7"})
    context.cart.add_item(product)
    await context.start()
    submission = await context.checkout()
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx

from tableside.client.api import ApiClient
from tableside.client.bus import EventBus
from tableside.client.cache import DurableCache, MemoryCache, open_cache
from tableside.client.cart import CartStore
from tableside.client.ledger import BillLedger
from tableside.client.notifications import NotificationCenter
from tableside.client.orders import OrderStore, Submission
from tableside.client.realtime import RealtimeClient
from tableside.client.session import ClientFlags, Role, SessionHolder, TableSession
from tableside.core.config import ClientSettings, get_client_settings

logger = logging.getLogger(__name__)


@dataclass
class ClientContext:
    settings: ClientSettings
    session: SessionHolder
    cache: DurableCache
    table: TableSession
    flags: ClientFlags
    cart: CartStore
    bus: EventBus
    notifications: NotificationCenter
    ledger: BillLedger
    api: ApiClient
    orders: OrderStore
    realtime: RealtimeClient
    _realtime_task: Optional[asyncio.Task] = field(default=None, repr=False)

    @classmethod
    def build(
        cls,
        role: Role = Role.CUSTOMER,
        settings: Optional[ClientSettings] = None,
        session: Optional[SessionHolder] = None,
        cache: Optional[DurableCache] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "ClientContext":
        settings = settings or get_client_settings()
        session = session or SessionHolder(role=role)
        if cache is None:
            cache = open_cache(settings.cache_dir, lock_timeout=settings.cache_lock_timeout)

        table = TableSession(cache)
        bus = EventBus()
        notifications = NotificationCenter()
        ledger = BillLedger(cache)
        api = ApiClient(
            settings.api_base_url,
            session=session,
            timeout=settings.request_timeout,
            transport=transport,
        )
        orders = OrderStore(
            api,
            cache,
            ledger,
            notifications,
            orders_fetch_limit=settings.orders_fetch_limit,
            bills_fetch_limit=settings.bills_fetch_limit,
        )
        orders.bind(bus)

        realtime = RealtimeClient(
            settings.ws_url,
            bus,
            role=role.value,
            on_reconnect=orders.refresh,
            reconnect_delay=settings.reconnect_delay,
            reconnect_max_delay=settings.reconnect_max_delay,
        )

        return cls(
            settings=settings,
            session=session,
            cache=cache,
            table=table,
            flags=ClientFlags(cache, MemoryCache()),
            cart=CartStore(cache, table),
            bus=bus,
            notifications=notifications,
            ledger=ledger,
            api=api,
            orders=orders,
            realtime=realtime,
        )

    async def start(self, realtime: bool = True) -> None:
        """Paint from the cache, reconcile with the server, then listen."""
        self.orders.hydrate()
        await self.orders.refresh()
        if realtime and self._realtime_task is None:
            self._realtime_task = asyncio.create_task(self.realtime.run())

    async def checkout(self, notes: Optional[str] = None, **details: Any) -> Submission:
        """
        Submit the active cart.

        An "add more items" link (merge=<order id>) makes the submission
        merge into that order; TAKEAWAY and DELIVERY orders merge no other way.
        """
        return await self.orders.submit(
            self.cart,
            notes=notes,
            merge_target=self.table.merge_target,
            **details,
        )

    async def close(self) -> None:
        if self._realtime_task is not None:
            await self.realtime.stop()
            self._realtime_task.cancel()
            try:
                await self._realtime_task
            except asyncio.CancelledError:
                pass
            self._realtime_task = None
        await self.api.aclose()
        logger.info("Client context closed")
