"""
OpenTelemetry tracing for the explanation proxy, exported to Langfuse.

Langfuse ingests OTLP over HTTP/protobuf at /api/public/otel/v1/traces only;
the gRPC port is not served.
"""
import base64
import logging
from typing import Optional

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

logger = logging.getLogger(__name__)

LANGFUSE_OTEL_PATH = "/api/public/otel/v1/traces"

_tracer_provider: Optional[TracerProvider] = None


def langfuse_endpoint(host: str) -> str:
    return f"{host.rstrip('/')}{LANGFUSE_OTEL_PATH}"


def setup_tracing(
    service_name: str,
    langfuse_host: str = "http://localhost:3001",
    public_key: str = "",
    secret_key: str = "",
    attributes: Optional[dict] = None,
) -> TracerProvider:
    """
    Install a global tracer provider.

    With both Langfuse keys present spans go to Langfuse using
    Basic base64(public_key:secret_key) auth; otherwise they are printed
    by a console exporter so local runs still show request spans.

    `attributes` are added to the resource, so every span carries them (the
    proxy sets its provider and model here).
    """
    global _tracer_provider

    resource = Resource.create({**(attributes or {}), "service.name": service_name})
    provider = TracerProvider(resource=resource)

    if public_key and secret_key:
        auth = base64.b64encode(f"{public_key}:{secret_key}".encode()).decode()
        endpoint = langfuse_endpoint(langfuse_host)
        exporter = OTLPSpanExporter(
            endpoint=endpoint,
            headers={"Authorization": f"Basic {auth}"},
        )
        provider.add_span_processor(BatchSpanProcessor(exporter))
        logger.info(f"Langfuse tracing enabled: {endpoint}")
    else:
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
        logger.warning("Langfuse keys not set, exporting spans to console")

    trace.set_tracer_provider(provider)
    _tracer_provider = provider
    return provider


def get_tracer(name: str) -> trace.Tracer:
    return trace.get_tracer(name)


def shutdown_tracing() -> None:
    """Flush pending spans and drop the provider."""
    global _tracer_provider
    if _tracer_provider:
        _tracer_provider.shutdown()
        _tracer_provider = None
