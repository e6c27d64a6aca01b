"""Tests for circuit breakers and the resilient repository proxy."""

from datetime import datetime
from unittest.mock import MagicMock

import pytest
from pybreaker import CircuitBreaker, CircuitBreakerError

from customer_order_rfm.storage import CustomerRepository, InMemoryDocumentStore

from analytics.services.mcp_server.resilience import (
    ResilientRepository,
    get_circuit_breaker,
    get_circuit_breaker_status,
    reset_all_circuit_breakers,
)


@pytest.fixture
def breaker():
    return CircuitBreaker(fail_max=2, reset_timeout=60, exclude=[ValueError])


class TestCircuitBreakers:
    def test_breakers_are_singletons(self):
        assert get_circuit_breaker("document_store") is get_circuit_breaker("document_store")

    def test_status_and_reset(self):
        get_circuit_breaker("document_store").open()

        assert get_circuit_breaker_status()["document_store"]["state"] == "open"

        reset_all_circuit_breakers()
        assert get_circuit_breaker_status()["document_store"]["state"] == "closed"


class TestResilientRepository:
    """Breaker routing and retries."""

    def test_calls_pass_through(self, breaker):
        repository = CustomerRepository(InMemoryDocumentStore(), batch_delay=0)
        proxy = ResilientRepository(repository, breaker=breaker)

        assert proxy.load_customers() == []
        assert proxy.batch_size == repository.batch_size
        assert proxy.repository is repository

    def test_store_failures_open_the_circuit(self, breaker):
        repository = MagicMock(spec=CustomerRepository)
        repository.load_customers.side_effect = OSError("disk unavailable")
        proxy = ResilientRepository(repository, breaker=breaker)

        with pytest.raises(OSError):
            proxy.load_customers()
        with pytest.raises((OSError, CircuitBreakerError)):
            proxy.load_customers()
        with pytest.raises(CircuitBreakerError):
            proxy.load_customers()

        assert breaker.current_state == "open"

    def test_caller_errors_do_not_count(self, breaker):
        repository = MagicMock(spec=CustomerRepository)
        repository.clear.side_effect = ValueError("bad request")
        proxy = ResilientRepository(repository, breaker=breaker)

        for _ in range(3):
            with pytest.raises(ValueError):
                proxy.clear()

        assert breaker.current_state == "closed"

    def test_latest_order_date_retries_transient_errors(self, breaker):
        repository = MagicMock(spec=CustomerRepository)
        repository.latest_order_date.side_effect = [
            ConnectionError("reset by peer"),
            datetime(2024, 5, 1),
        ]
        proxy = ResilientRepository(repository, breaker=breaker)

        assert proxy.latest_order_date() == datetime(2024, 5, 1)
        assert repository.latest_order_date.call_count == 2
