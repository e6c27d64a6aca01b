"""Shared state management for MCP server.

FastMCP's Context is per-request, so we need a shared state mechanism
to persist data (loaded orders, the last RFM analysis, the repository)
across tool calls.
"""

import threading
from typing import Any

from customer_order_rfm.storage import CustomerRepository, create_store

from analytics.services.mcp_server.config import ServiceSettings

#: Keys used by the tools
ORDERS_KEY = "orders"
RFM_ANALYSIS_KEY = "rfm_analysis"
LAST_UPLOAD_KEY = "last_upload"
REPOSITORY_KEY = "repository"


class SharedState:
    """Thread-safe shared state storage for MCP tools.

    Uses threading.RLock for thread-safe access to shared data.
    Implements basic size-based eviction to prevent unbounded memory growth.

    Protected keys (orders, repository, etc.) are only evicted as a last
    resort when all keys in the store are protected.
    """

    MAX_ITEMS = 100

    PROTECTED_KEYS = frozenset(
        {ORDERS_KEY, RFM_ANALYSIS_KEY, LAST_UPLOAD_KEY, REPOSITORY_KEY}
    )

    def __init__(self):
        self._store: dict[str, Any] = {}
        self._lock = threading.RLock()

    def set(self, key: str, value: Any) -> None:
        """Store a value, evicting the oldest unprotected key when full."""
        with self._lock:
            if len(self._store) >= self.MAX_ITEMS and key not in self._store:
                victim = next(
                    (k for k in self._store if k not in self.PROTECTED_KEYS),
                    next(iter(self._store)),
                )
                del self._store[victim]
            self._store[key] = value

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._store.get(key, default)

    def has(self, key: str) -> bool:
        with self._lock:
            return key in self._store

    def pop(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._store.pop(key, default)

    def clear(self) -> None:
        with self._lock:
            self._store.clear()

    def keys(self) -> list[str]:
        """Return a copy of the stored keys."""
        with self._lock:
            return list(self._store.keys())


_shared_state = SharedState()


def get_shared_state() -> SharedState:
    """Get the global shared state instance."""
    return _shared_state


def get_repository(settings: ServiceSettings | None = None) -> CustomerRepository:
    """Return the process-wide repository, creating it from settings once."""
    state = get_shared_state()
    with state._lock:
        repository = state.get(REPOSITORY_KEY)
        if repository is None:
            settings = settings or ServiceSettings.from_env()
            repository = CustomerRepository(
                create_store(settings.store_url),
                batch_size=settings.batch_size,
                batch_delay=settings.batch_delay,
            )
            state.set(REPOSITORY_KEY, repository)
        return repository
