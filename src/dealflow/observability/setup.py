"""
Observability Initialization

One call for hosts embedding the engines: logging first, then tracing and
metrics when an OTLP endpoint or console export is configured.
"""

import logging
from typing import Optional

from ..config import DealflowConfig, config as default_config
from .logging import configure_logging
from .metrics import init_metrics
from .tracing import init_tracing

logger = logging.getLogger(__name__)


def init_observability(cfg: Optional[DealflowConfig] = None) -> bool:
    """
    Initialize observability components (logging, tracing, metrics).

    Returns:
        True when OpenTelemetry providers were installed
    """
    cfg = cfg or default_config

    configure_logging(
        level=cfg.LOG_LEVEL,
        structured=cfg.LOG_STRUCTURED,
        service_name=cfg.SERVICE_NAME,
    )

    for issue in cfg.validate():
        logger.warning(f"Configuration: {issue}")

    if not (cfg.OTLP_ENDPOINT or cfg.OTEL_CONSOLE_EXPORT):
        return False

    init_tracing(
        service_name=cfg.SERVICE_NAME,
        otlp_endpoint=cfg.OTLP_ENDPOINT,
        console_export=cfg.OTEL_CONSOLE_EXPORT,
    )
    init_metrics(
        service_name=cfg.SERVICE_NAME,
        otlp_endpoint=cfg.OTLP_ENDPOINT,
        console_export=cfg.OTEL_CONSOLE_EXPORT,
    )
    logger.info("OpenTelemetry observability initialized")
    return True
