"""Health Check MCP Tool

Checks:
1. MCP server status and uptime
2. Shared state availability and what the session holds
3. Document store reachability (through the circuit breaker)
4. Circuit breaker states
"""

import time
from datetime import datetime

import structlog
from fastmcp import Context
from pybreaker import CircuitBreakerError
from pydantic import BaseModel, Field

from analytics.services.mcp_server.instance import mcp
from analytics.services.mcp_server.resilience import get_circuit_breaker_status
from analytics.services.mcp_server.state import (
    LAST_UPLOAD_KEY,
    ORDERS_KEY,
    RFM_ANALYSIS_KEY,
    get_shared_state,
)
from analytics.services.mcp_server.tools._common import resilient_repository

logger = structlog.get_logger(__name__)


class HealthCheckResponse(BaseModel):
    """Health check response with system status."""

    status: str = Field(
        description="Overall health status: 'healthy', 'degraded', or 'unhealthy'"
    )
    timestamp: str = Field(description="ISO timestamp of health check")
    checks: dict[str, str] = Field(description="Individual component health checks")
    uptime_seconds: float
    session_data: dict[str, bool] = Field(description="What the session holds")
    circuit_breakers: dict[str, dict] = Field(default_factory=dict)


_SERVER_START_TIME = time.time()


async def _health_check_impl(ctx: Context) -> HealthCheckResponse:
    logger.info("health_check_starting")

    checks: dict[str, str] = {"mcp_server": "healthy"}
    status = "healthy"

    shared_state = get_shared_state()
    session_data = {
        key: shared_state.has(key)
        for key in (ORDERS_KEY, RFM_ANALYSIS_KEY, LAST_UPLOAD_KEY)
    }
    checks["shared_state"] = "healthy"

    try:
        repository = resilient_repository()
        stored = repository.call(lambda: len(repository.store.list_documents()))
        checks["document_store"] = f"healthy ({stored} customers)"
    except CircuitBreakerError as e:
        checks["document_store"] = f"unavailable: {e}"
        status = "degraded"
    except Exception as e:
        checks["document_store"] = f"unhealthy: {e}"
        status = "degraded"
        logger.error("document_store_check_failed", error=str(e))

    breakers = get_circuit_breaker_status()
    open_breakers = [name for name, info in breakers.items() if info["state"] == "open"]
    checks["circuit_breakers"] = (
        f"open: {', '.join(open_breakers)}" if open_breakers else "all closed"
    )
    if open_breakers:
        status = "degraded"

    uptime_seconds = time.time() - _SERVER_START_TIME
    logger.info("health_check_complete", status=status, checks=checks)

    return HealthCheckResponse(
        status=status,
        timestamp=datetime.now().isoformat(),
        checks=checks,
        uptime_seconds=uptime_seconds,
        session_data=session_data,
        circuit_breakers=breakers,
    )


@mcp.tool()
async def health_check(ctx: Context) -> HealthCheckResponse:
    """
    Check health of the MCP server, the document store and circuit breakers.

    Returns:
        HealthCheckResponse with per-component checks
    """
    return await _health_check_impl(ctx)
