"""Service settings read from the environment.

Variables:
- RFM_STORE_URL: document store URL (SQLAlchemy URL, or ``memory://``)
- RFM_BATCH_SIZE / RFM_BATCH_DELAY: write batching for the repository
- RFM_AGENTS_FILE: JSON mapping of POS user email to sales agent
- OTLP_ENDPOINT / ENVIRONMENT / SAMPLING_RATE: tracing setup
"""

import os

from pydantic import BaseModel, Field


class ServiceSettings(BaseModel):
    """Runtime configuration for the MCP service."""

    store_url: str = Field(
        default="memory://", description="Document store URL for customer documents"
    )
    batch_size: int = Field(default=100, gt=0, description="Customers per write batch")
    batch_delay: float = Field(
        default=0.1, ge=0.0, description="Seconds to pause between write batches"
    )
    agents_file: str | None = Field(
        default=None, description="Optional JSON file with the sales agent mapping"
    )
    otlp_endpoint: str | None = Field(
        default=None, description="OTLP gRPC endpoint; console export when unset"
    )
    environment: str = Field(default="development")
    sampling_rate: float = Field(default=1.0, ge=0.0, le=1.0)

    @classmethod
    def from_env(cls) -> "ServiceSettings":
        return cls(
            store_url=os.getenv("RFM_STORE_URL", "memory://"),
            batch_size=int(os.getenv("RFM_BATCH_SIZE", "100")),
            batch_delay=float(os.getenv("RFM_BATCH_DELAY", "0.1")),
            agents_file=os.getenv("RFM_AGENTS_FILE") or None,
            otlp_endpoint=os.getenv("OTLP_ENDPOINT") or None,
            environment=os.getenv("ENVIRONMENT", "development"),
            sampling_rate=float(os.getenv("SAMPLING_RATE", "1.0")),
        )
