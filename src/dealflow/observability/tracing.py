"""
OpenTelemetry Tracing

Spans around transition attempts, carrying the deal id as correlation id.
"""

import asyncio
import contextvars
import logging
from contextlib import contextmanager
from functools import wraps
from typing import Any, Callable, Dict, Optional

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.trace import Span, Status, StatusCode

logger = logging.getLogger(__name__)

_tracer: Optional[trace.Tracer] = None
_correlation_id: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "dealflow_correlation_id", default=None
)


def init_tracing(
    service_name: str = "dealflow",
    service_version: str = "0.1.0",
    otlp_endpoint: Optional[str] = None,
    console_export: bool = False
) -> trace.Tracer:
    """
    Initialize OpenTelemetry tracing.

    Args:
        service_name: Name of the service
        service_version: Version of the service
        otlp_endpoint: OTLP exporter endpoint (e.g., "http://localhost:4317")
        console_export: Enable console export for debugging

    Returns:
        Configured tracer
    """
    global _tracer

    resource = Resource.create({
        SERVICE_NAME: service_name,
        SERVICE_VERSION: service_version,
    })
    provider = TracerProvider(resource=resource)

    if otlp_endpoint:
        provider.add_span_processor(
            BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint, insecure=True))
        )
        logger.info(f"OTel tracing: OTLP exporter configured -> {otlp_endpoint}")

    if console_export:
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
        logger.info("OTel tracing: Console exporter enabled")

    trace.set_tracer_provider(provider)
    _tracer = trace.get_tracer(service_name, service_version)

    logger.info(f"OTel tracing initialized: {service_name} v{service_version}")
    return _tracer


def get_tracer() -> trace.Tracer:
    """Get the global tracer."""
    global _tracer
    if _tracer is None:
        _tracer = trace.get_tracer("dealflow")
    return _tracer


def get_current_span() -> Optional[Span]:
    return trace.get_current_span()


def get_trace_id() -> Optional[str]:
    """Get the current trace ID as hex string."""
    span = get_current_span()
    if span and span.get_span_context().is_valid:
        return format(span.get_span_context().trace_id, '032x')
    return None


@contextmanager
def create_span(name: str, attributes: Optional[Dict[str, Any]] = None):
    """
    Create a new span as context manager.

    Usage:
        with create_span("deal.stage_transition", {"deal_id": deal.id}) as span:
            span.set_attribute("outcome", "committed")
    """
    with get_tracer().start_as_current_span(name, attributes=attributes or {}) as span:
        try:
            yield span
        except Exception as e:
            span.set_status(Status(StatusCode.ERROR, str(e)))
            span.record_exception(e)
            raise


def traced(name: Optional[str] = None) -> Callable:
    """Decorator that wraps a sync or async function in a span."""
    def decorator(func: Callable) -> Callable:
        span_name = name or func.__qualname__

        @wraps(func)
        async def async_wrapper(*args, **kwargs):
            with create_span(span_name, {"function.name": func.__name__}):
                return await func(*args, **kwargs)

        @wraps(func)
        def sync_wrapper(*args, **kwargs):
            with create_span(span_name, {"function.name": func.__name__}):
                return func(*args, **kwargs)

        if asyncio.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator


def add_correlation_id_to_span(deal_id: str, span: Optional[Span] = None):
    """Tag the current span with the deal id."""
    span = span or get_current_span()
    if span:
        span.set_attribute("correlation_id", deal_id)
        span.set_attribute("deal_id", deal_id)


def get_correlation_id() -> Optional[str]:
    """Deal id bound by the innermost enclosing correlation_scope, if any."""
    return _correlation_id.get()


@contextmanager
def correlation_scope(deal_id: str):
    """
    Bind a deal id as correlation id for the enclosed block.

    The current span is tagged and log records emitted inside the block
    pick the id up through TraceContextFilter.
    """
    add_correlation_id_to_span(deal_id)
    token = _correlation_id.set(deal_id)
    try:
        yield deal_id
    finally:
        _correlation_id.reset(token)
