"""
Observability configuration for MCP Server

This module configures OpenTelemetry tracing and structured logging for the
Customer RFM Analytics MCP server. Spans go to the console by default and to
an OTLP collector when an endpoint is configured.
"""

import sys

import structlog
from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.sdk.trace.sampling import ParentBasedTraceIdRatio, TraceIdRatioBased

from analytics.services.mcp_server.instance import VERSION

logger = structlog.get_logger(__name__)

SERVICE_NAME = "mcp-customer-rfm"


def configure_observability(
    service_name: str = SERVICE_NAME,
    environment: str = "development",
    otlp_endpoint: str | None = None,
    sampling_rate: float = 1.0,
):
    """
    Configure OpenTelemetry tracing for the service.

    Args:
        service_name: Name of the service for telemetry identification
        environment: Deployment environment (development, staging, production)
        otlp_endpoint: OTLP gRPC endpoint (e.g., 'localhost:4317'); console
                      export when None
        sampling_rate: Trace sampling rate (0.0-1.0)

    Returns:
        Tracer for creating spans
    """
    resource = Resource.create(
        {
            "service.name": service_name,
            "service.version": VERSION,
            "deployment.environment": environment,
        }
    )
    provider = TracerProvider(resource=resource, sampler=_create_sampler(sampling_rate))

    if otlp_endpoint:
        logger.info(
            "configuring_otlp_tracing",
            endpoint=otlp_endpoint,
            environment=environment,
            sampling_rate=sampling_rate,
        )
        try:
            from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (
                OTLPSpanExporter,
            )

            provider.add_span_processor(
                BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint, insecure=True))
            )
        except ImportError as e:
            logger.warning(
                "otlp_exporter_not_available_falling_back_to_console",
                error=str(e),
                message="Install the 'otlp' extra for OTLP export",
            )
            provider.add_span_processor(
                BatchSpanProcessor(ConsoleSpanExporter(out=sys.stderr))
            )
    else:
        logger.info("configuring_console_tracing", environment=environment)
        provider.add_span_processor(
            BatchSpanProcessor(ConsoleSpanExporter(out=sys.stderr))
        )

    trace.set_tracer_provider(provider)

    logger.info(
        "observability_configured",
        service_name=service_name,
        environment=environment,
        otlp_enabled=otlp_endpoint is not None,
        sampling_rate=sampling_rate,
    )
    return trace.get_tracer(service_name)


def _create_sampler(sampling_rate: float):
    if sampling_rate <= 0.0:
        return TraceIdRatioBased(0.0)
    return ParentBasedTraceIdRatio(min(sampling_rate, 1.0))


def get_tracer():
    """Tracer for tool spans; a no-op tracer until observability is configured."""
    return trace.get_tracer(SERVICE_NAME)
