"""
OpenTelemetry provider setup for the CLI.

Spans are always created through ``trace.get_tracer`` and are no-ops until a
provider is installed. configure_tracing() installs an SDK TracerProvider
with an OTLP gRPC exporter; flush_tracing() must run before the process
exits so batched spans are not lost.
"""

from __future__ import annotations

import logging

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from bootcore.contracts.timeouts import OTEL_FLUSH_TIMEOUT_MS

logger = logging.getLogger(__name__)

__all__ = ["configure_tracing", "flush_tracing"]

SERVICE_NAME = "bootcore"


def configure_tracing(endpoint: str, insecure: bool = True) -> TracerProvider:
    """
    Install a global TracerProvider exporting to ``endpoint``.

    Args:
        endpoint: OTLP gRPC endpoint (e.g., localhost:4317)
        insecure: Use a plaintext channel

    Returns:
        The installed provider
    """
    resource = Resource.create({
        "service.name": SERVICE_NAME,
        "service.namespace": "bootstrap",
    })
    provider = TracerProvider(resource=resource)
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint, insecure=insecure)))
    trace.set_tracer_provider(provider)
    logger.debug("Tracing to %s", endpoint)
    return provider


def flush_tracing() -> None:
    """Flush and shut down the global provider if it is an SDK provider."""
    provider = trace.get_tracer_provider()
    if isinstance(provider, TracerProvider):
        provider.force_flush(timeout_millis=OTEL_FLUSH_TIMEOUT_MS)
        provider.shutdown()
