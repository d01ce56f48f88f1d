"""
Client Session State

- SessionHolder: role and bearer credential of the signed-in user
- TableSession: the active table key of this screen
- ClientFlags: first-visit flags kept in the cache
"""

import logging
from enum import Enum
from typing import Callable, List, Mapping, Optional

from tableside.client.cache import DurableCache, MemoryCache
from tableside.tables import TableResolution, normalize_table_key, resolve_table_key

logger = logging.getLogger(__name__)

LAST_USED_TABLE_KEY = "last_used_table"
MENU_LOADER_FLAG = "has_seen_menu_loader"
PROMO_FLAG = "has_seen_promo"

TableChangeListener = Callable[[Optional[str], str], None]


class Role(str, Enum):
    ADMIN = "admin"
    KITCHEN = "kitchen"
    WAITER = "waiter"
    CUSTOMER = "customer"


class SessionHolder:
    """Opaque credential holder. The core only asks whether it is valid."""

    def __init__(self, role: Optional[Role] = None, token: Optional[str] = None):
        self.role = role
        self.token = token

    @property
    def is_authenticated(self) -> bool:
        return bool(self.token)

    def sign_in(self, role: Role, token: str) -> None:
        self.role = role
        self.token = token

    def clear(self) -> None:
        if self.token:
            logger.info(f"Clearing {self.role.value if self.role else 'anonymous'} session")
        self.role = None
        self.token = None


class TableSession:
    """
    Active table context of one screen.

    The key comes from link parameters or, failing that, the last key this
    browser used. It changes only through resolve() or select(); every
    change is persisted and announced to listeners (the cart store swaps
    carts on it).
    """

    def __init__(self, cache: DurableCache):
        self.cache = cache
        self.table_key: Optional[str] = None
        self.resolution: Optional[TableResolution] = None
        self._listeners: List[TableChangeListener] = []

    def on_change(self, listener: TableChangeListener) -> None:
        self._listeners.append(listener)

    @property
    def last_used(self) -> Optional[str]:
        value = self.cache.get(LAST_USED_TABLE_KEY)
        return value if isinstance(value, str) else None

    @property
    def merge_target(self) -> Optional[int]:
        return self.resolution.merge_target if self.resolution else None

    def resolve(self, params: Mapping[str, str]) -> TableResolution:
        """Resolve link parameters and activate the resulting key, if any."""
        resolution = resolve_table_key(params, last_used=self.last_used)
        self.resolution = resolution
        if resolution.is_resolved:
            self._activate(resolution.table_key)
        else:
            logger.info("No table key in link or cache, waiting for a selection")
        return resolution

    def select(self, raw: str) -> str:
        """
        Explicit re-selection by the user.

        Raises:
            ValueError: when raw holds no usable table key
        """
        key = normalize_table_key(raw)
        if key is None:
            raise ValueError(f"Not a table key: {raw!r}")
        self.resolution = TableResolution(table_key=key, deliberate=True)
        self._activate(key)
        return key

    def _activate(self, key: str) -> None:
        self.cache.set(LAST_USED_TABLE_KEY, key)
        if key == self.table_key:
            return
        previous, self.table_key = self.table_key, key
        logger.info(f"Active table changed {previous} -> {key}")
        for listener in list(self._listeners):
            listener(previous, key)


class ClientFlags:
    """
    First-visit flags.

    has_seen_menu_loader survives restarts; has_seen_promo lives in a
    session cache and is shown again in the next session.
    """

    def __init__(self, cache: DurableCache, session_cache: Optional[DurableCache] = None):
        self.cache = cache
        self.session_cache = session_cache or MemoryCache()

    @property
    def has_seen_menu_loader(self) -> bool:
        return bool(self.cache.get(MENU_LOADER_FLAG, False))

    def mark_menu_loader_seen(self) -> None:
        self.cache.set(MENU_LOADER_FLAG, True)

    @property
    def has_seen_promo(self) -> bool:
        return bool(self.session_cache.get(PROMO_FLAG, False))

    def mark_promo_seen(self) -> None:
        self.session_cache.set(PROMO_FLAG, True)
