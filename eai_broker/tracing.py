"""OpenTelemetry tracing helpers for source workers, destination workers and the sweeper.

Spans are exported to the console. The W3C trace context active at publish
time is stored on the message row (``trace_context``) so the destination span
that processes it continues the producer's trace.
"""

from __future__ import annotations

from typing import Any, Dict, Mapping

from opentelemetry import trace  # type: ignore
from opentelemetry.sdk.resources import Resource  # type: ignore
from opentelemetry.sdk.trace import TracerProvider  # type: ignore
from opentelemetry.sdk.trace.export import ConsoleSpanExporter, SimpleSpanProcessor  # type: ignore
from opentelemetry.trace import Tracer  # type: ignore
from opentelemetry.propagate import get_global_textmap, set_global_textmap, inject  # type: ignore
from opentelemetry.trace.propagation.tracecontext import TraceContextTextMapPropagator  # type: ignore


def start_tracing(service_name: str = "eai-broker") -> Tracer:
    """Initialize a TracerProvider with a console exporter."""
    resource = Resource.create({"service.name": service_name})
    provider = TracerProvider(resource=resource)
    provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))
    trace.set_tracer_provider(provider)

    set_global_textmap(TraceContextTextMapPropagator())

    return trace.get_tracer(service_name)


def get_tracer(service_name: str = "eai-broker") -> Tracer:
    return trace.get_tracer(service_name)


def inject_trace_context(carrier: Dict[str, str] | None = None) -> Dict[str, str]:
    """Return the current context as W3C headers (empty when no span is active)."""
    headers: Dict[str, str] = {} if carrier is None else dict(carrier)
    inject(headers)
    return headers


def extract_trace_context(message: Any):
    """Return a context object extracted from a message's stored trace headers.

    Accepts a ``MessageBoxMessage`` (or anything with ``trace_context``) or a
    plain mapping of headers.
    """
    headers: Mapping[str, Any] | None
    if isinstance(message, Mapping):
        headers = message
    else:
        headers = getattr(message, "trace_context", None)
    carrier: Dict[str, str] = {}
    if headers:
        for k, v in headers.items():
            carrier[str(k)] = v if isinstance(v, str) else str(v)
    return get_global_textmap().extract(carrier)
