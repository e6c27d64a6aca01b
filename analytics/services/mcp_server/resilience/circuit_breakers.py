"""Circuit breakers around the document store.

Circuit breaker states:
- CLOSED: Normal operation, requests flow through
- OPEN: Failure threshold exceeded, requests fail fast
- HALF_OPEN: Testing if the dependency recovered

Usage:
    >>> breaker = get_circuit_breaker("document_store")
    >>> customers = breaker.call(repository.load_customers)
"""

from collections.abc import Callable
from typing import Any

import structlog
from pybreaker import CircuitBreaker

logger = structlog.get_logger(__name__)

DOCUMENT_STORE = "document_store"

_circuit_breakers: dict[str, CircuitBreaker] = {}


def get_circuit_breaker(
    name: str,
    fail_max: int = 5,
    timeout_duration: int = 60,
    exclude: list[type[BaseException]] | None = None,
) -> CircuitBreaker:
    """Get or create a circuit breaker by name.

    Circuit breakers are singletons per name; arguments only apply on creation.

    Args:
        name: Unique name for this circuit breaker (e.g., "document_store")
        fail_max: Failures before the circuit opens
        timeout_duration: Seconds to keep the circuit open before retrying
        exclude: Exception types that are caller errors and never count as failures
    """
    if name not in _circuit_breakers:
        logger.info(
            "creating_circuit_breaker",
            name=name,
            fail_max=fail_max,
            timeout_duration=timeout_duration,
        )
        _circuit_breakers[name] = CircuitBreaker(
            fail_max=fail_max,
            reset_timeout=timeout_duration,
            exclude=exclude or [],
            name=name,
            listeners=[_CircuitBreakerListener(name)],
        )
    return _circuit_breakers[name]


class _CircuitBreakerListener:
    """Logs state transitions and failures."""

    def __init__(self, name: str):
        self.name = name

    def before_call(self, cb: CircuitBreaker, func: Callable, *args, **kwargs):
        logger.debug(
            "circuit_breaker_before_call",
            name=self.name,
            state=cb.current_state,
            fail_count=cb.fail_counter,
        )

    def success(self, cb: CircuitBreaker):
        logger.debug("circuit_breaker_success", name=self.name, state=cb.current_state)

    def failure(self, cb: CircuitBreaker, exc: BaseException):
        logger.warning(
            "circuit_breaker_failure",
            name=self.name,
            state=cb.current_state,
            fail_count=cb.fail_counter,
            error_type=type(exc).__name__,
            error=str(exc),
        )

    def state_change(self, cb: CircuitBreaker, old_state, new_state):
        logger.warning(
            "circuit_breaker_state_change",
            name=self.name,
            old_state=old_state.name if old_state else None,
            new_state=new_state.name,
            fail_count=cb.fail_counter,
        )


def get_circuit_breaker_status() -> dict[str, dict[str, Any]]:
    """Return ``{name: {state, fail_count, fail_max, timeout_duration}}``."""
    return {
        name: {
            "state": str(breaker.current_state).lower(),
            "fail_count": breaker.fail_counter,
            "fail_max": breaker.fail_max,
            "timeout_duration": breaker.reset_timeout,
        }
        for name, breaker in _circuit_breakers.items()
    }


def reset_all_circuit_breakers() -> None:
    """Close every breaker; used by tests and after maintenance."""
    logger.info("resetting_all_circuit_breakers", count=len(_circuit_breakers))
    for breaker in _circuit_breakers.values():
        breaker.close()


# Store outages (connection refused, disk full) trip the breaker; bad input does not
document_store_breaker = get_circuit_breaker(
    name=DOCUMENT_STORE,
    fail_max=5,
    timeout_duration=60,
    exclude=[ValueError],
)
