"""Helpers shared by the MCP tools."""

from pathlib import Path

from pybreaker import CircuitBreakerError

from analytics.services.mcp_server.resilience import ResilientRepository
from analytics.services.mcp_server.state import get_repository


def resilient_repository() -> ResilientRepository:
    """The shared repository, guarded by the document store circuit breaker."""
    return ResilientRepository(get_repository())


def resolve_input_file(path: str) -> Path:
    """Resolve a user-supplied spreadsheet path and check that it exists."""
    resolved = Path(path).expanduser().resolve()
    if not resolved.is_file():
        raise FileNotFoundError(f"Spreadsheet not found: {resolved}")
    return resolved


def store_unavailable(exc: CircuitBreakerError) -> RuntimeError:
    return RuntimeError(
        f"Document store unavailable (circuit open), try again later: {exc}"
    )
