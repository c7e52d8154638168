"""OpenTelemetry setup for unillm.

The library only creates spans through the global tracer; nothing is
exported until an application calls :func:`init_telemetry`.
"""

from __future__ import annotations

import logging
import os
from typing import Optional

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
    SimpleSpanProcessor,
)

from . import __version__

logger = logging.getLogger(__name__)

DEFAULT_OTLP_ENDPOINT = "http://localhost:4317"

_provider: Optional[TracerProvider] = None


def init_telemetry(
    service_name: Optional[str] = None,
    otlp_endpoint: Optional[str] = None,
    *,
    console: bool = False,
) -> TracerProvider:
    """Install a global tracer provider exporting unillm spans.

    Args:
        service_name: Service name for traces (default: OTEL_SERVICE_NAME or "unillm")
        otlp_endpoint: OTLP gRPC collector (default: OTEL_EXPORTER_OTLP_ENDPOINT
            or http://localhost:4317)
        console: Print spans to stdout instead of exporting over OTLP

    Calling it again returns the already installed provider.
    """
    global _provider
    if _provider is not None:
        return _provider

    service_name = service_name or os.getenv("OTEL_SERVICE_NAME", "unillm")
    resource = Resource.create(
        {
            "service.name": service_name,
            "service.version": __version__,
            "deployment.environment": os.getenv("DEPLOYMENT_ENV", "development"),
        }
    )
    provider = TracerProvider(resource=resource)

    if console:
        provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))
        target = "console"
    else:
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter

        target = otlp_endpoint or os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", DEFAULT_OTLP_ENDPOINT)
        provider.add_span_processor(
            BatchSpanProcessor(
                OTLPSpanExporter(endpoint=target, insecure=True),
                schedule_delay_millis=1000,
            )
        )

    trace.set_tracer_provider(provider)
    _provider = provider
    logger.info("OpenTelemetry initialized: service=%s, exporter=%s", service_name, target)
    return provider


def shutdown_telemetry() -> None:
    """Flush pending spans and shut the exporter down."""
    global _provider
    if _provider is None:
        return
    _provider.shutdown()
    _provider = None
    logger.info("OpenTelemetry shutdown complete")


__all__ = ["init_telemetry", "shutdown_telemetry"]
