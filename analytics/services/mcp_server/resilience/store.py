"""Repository wrapper that routes every store call through a circuit breaker.

The read-only latest-date query is additionally retried with exponential
backoff on transient connection errors; writes are never retried since a
batch may have been partially committed.
"""

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from customer_order_rfm.storage import CustomerRepository
from pybreaker import CircuitBreaker
from sqlalchemy.exc import OperationalError
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from analytics.services.mcp_server.resilience.circuit_breakers import (
    DOCUMENT_STORE,
    get_circuit_breaker,
)

# tenacity expects a stdlib logger
_retry_logger = logging.getLogger(__name__)

TRANSIENT_STORE_ERRORS = (ConnectionError, TimeoutError, OperationalError)


class ResilientRepository:
    """Proxy for :class:`CustomerRepository` guarded by a circuit breaker."""

    def __init__(
        self,
        repository: CustomerRepository,
        breaker: CircuitBreaker | None = None,
    ):
        self._repository = repository
        self._breaker = breaker or get_circuit_breaker(DOCUMENT_STORE)

    @property
    def repository(self) -> CustomerRepository:
        return self._repository

    def __getattr__(self, name: str) -> Any:
        attr = getattr(self._repository, name)
        if not callable(attr):
            return attr

        def guarded(*args, **kwargs):
            return self._breaker.call(attr, *args, **kwargs)

        return guarded

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        retry=retry_if_exception_type(TRANSIENT_STORE_ERRORS),
        before_sleep=before_sleep_log(_retry_logger, logging.WARNING),
        reraise=True,
    )
    def latest_order_date(self) -> datetime | None:
        return self._breaker.call(self._repository.latest_order_date)

    def call(self, func: Callable[..., Any], *args, **kwargs) -> Any:
        """Run an arbitrary store-bound callable through the breaker."""
        return self._breaker.call(func, *args, **kwargs)
