"""
Structured Logging with Trace Correlation

Log records carry the trace id and, inside a correlation_scope, the id
of the deal being worked on.
"""

import json
import logging
import sys
from datetime import datetime, timezone

from .tracing import get_correlation_id, get_current_span, get_trace_id

NO_TRACE = "no-trace"
NO_DEAL = "-"

_RESERVED = frozenset((
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "pathname", "process", "processName", "relativeCreated",
    "stack_info", "exc_info", "exc_text", "thread", "threadName",
    "correlation_id", "message", "taskName", "trace_id",
))

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(trace_id)s] [deal=%(correlation_id)s] %(message)s"


class StructuredFormatter(logging.Formatter):
    """
    JSON structured log formatter with trace context.
    """

    def format(self, record: logging.LogRecord) -> str:
        span = get_current_span()
        span_id = None
        if span and span.get_span_context().is_valid:
            span_id = format(span.get_span_context().span_id, '016x')

        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "trace_id": get_trace_id(),
            "span_id": span_id,
        }

        # Set by TraceContextFilter, or read directly when the formatter is used alone
        correlation_id = getattr(record, "correlation_id", None) or get_correlation_id()
        if correlation_id and correlation_id != NO_DEAL:
            log_entry["correlation_id"] = correlation_id

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        # Extra fields passed via logger.x(..., extra={...})
        for key, value in record.__dict__.items():
            if key in _RESERVED or key.startswith("_"):
                continue
            try:
                json.dumps(value)
                log_entry[key] = value
            except (TypeError, ValueError):
                log_entry[key] = str(value)

        return json.dumps(log_entry)


class TraceContextFilter(logging.Filter):
    """
    Stamps records with the trace id and the bound deal id.

    Both attributes are always set so plain-text format strings can
    reference them.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        record.trace_id = get_trace_id() or NO_TRACE
        if not getattr(record, "correlation_id", None):
            record.correlation_id = get_correlation_id() or NO_DEAL
        return True


def configure_logging(
    level: str = "INFO",
    structured: bool = True,
    service_name: str = "dealflow"
):
    """
    Configure application logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        structured: Use JSON structured format
        service_name: Service name for logs
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(getattr(logging, level.upper()))
    handler.setFormatter(StructuredFormatter() if structured else logging.Formatter(TEXT_FORMAT))
    handler.addFilter(TraceContextFilter())
    root_logger.addHandler(handler)

    logging.getLogger("opentelemetry").setLevel(logging.WARNING)

    logging.info(f"Logging configured: {service_name}, level={level}, structured={structured}")
