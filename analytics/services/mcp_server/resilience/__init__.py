"""Resilience patterns for MCP Server

- Circuit breakers: fail fast while the document store is down
- Retry logic: read-only store queries retry with exponential backoff (resilience/store.py)
"""

from analytics.services.mcp_server.resilience.circuit_breakers import (
    DOCUMENT_STORE,
    get_circuit_breaker,
    get_circuit_breaker_status,
    reset_all_circuit_breakers,
)
from analytics.services.mcp_server.resilience.store import ResilientRepository

__all__ = [
    "DOCUMENT_STORE",
    "ResilientRepository",
    "get_circuit_breaker",
    "get_circuit_breaker_status",
    "reset_all_circuit_breakers",
]
