"""
Observability Module

Provides tracing, metrics collection, and structured logging.
"""

from .tracing import (
    init_tracing,
    get_tracer,
    get_current_span,
    get_trace_id,
    create_span,
    traced,
    add_correlation_id_to_span,
    correlation_scope,
    get_correlation_id,
)
from .metrics import (
    init_metrics,
    get_meter,
    record_counter,
    record_histogram,
)
from .logging import configure_logging, StructuredFormatter, TraceContextFilter
from .setup import init_observability

__all__ = [
    # Tracing
    "init_tracing",
    "get_tracer",
    "get_current_span",
    "get_trace_id",
    "create_span",
    "traced",
    "add_correlation_id_to_span",
    "correlation_scope",
    "get_correlation_id",
    # Metrics
    "init_metrics",
    "get_meter",
    "record_counter",
    "record_histogram",
    # Logging
    "configure_logging",
    "StructuredFormatter",
    "TraceContextFilter",
    # Setup
    "init_observability",
]
