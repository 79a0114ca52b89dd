"""
OpenTelemetry Metrics

Counters and histograms for lifecycle transitions and the timeline ledger.
Recording before init_metrics() is a no-op.
"""

import logging
from typing import Any, Dict, Optional

from opentelemetry import metrics
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import (
    ConsoleMetricExporter,
    MetricReader,
    PeriodicExportingMetricReader,
)
from opentelemetry.sdk.resources import SERVICE_NAME, Resource

logger = logging.getLogger(__name__)

_meter: Optional[metrics.Meter] = None

_counters: Dict[str, metrics.Counter] = {}
_histograms: Dict[str, metrics.Histogram] = {}

COUNTERS = {
    "stage_transitions_total": "Stage transition attempts by outcome",
    "status_transitions_total": "Status transition attempts by outcome",
    "transition_rollbacks_total": "Transitions rolled back",
    "lifecycle_events_emitted_total": "Lifecycle events handed to the sink",
    "timeline_entries_pruned_total": "Timeline entries pruned on overflow",
}

HISTOGRAMS = {
    "transition_duration_seconds": "Transition attempt duration",
}


def init_metrics(
    service_name: str = "dealflow",
    otlp_endpoint: Optional[str] = None,
    console_export: bool = False,
    export_interval_ms: int = 60000,
    extra_readers: Optional[list[MetricReader]] = None
) -> metrics.Meter:
    """
    Initialize OpenTelemetry metrics.

    Args:
        service_name: Name of the service
        otlp_endpoint: OTLP exporter endpoint
        console_export: Enable console export for debugging
        export_interval_ms: Export interval in milliseconds
        extra_readers: Additional readers (e.g. an in-memory reader in tests)

    Returns:
        Configured meter
    """
    global _meter

    readers: list[MetricReader] = list(extra_readers or [])

    if otlp_endpoint:
        readers.append(PeriodicExportingMetricReader(
            OTLPMetricExporter(endpoint=otlp_endpoint, insecure=True),
            export_interval_millis=export_interval_ms
        ))
        logger.info(f"OTel metrics: OTLP exporter configured -> {otlp_endpoint}")

    if console_export:
        readers.append(PeriodicExportingMetricReader(
            ConsoleMetricExporter(),
            export_interval_millis=export_interval_ms
        ))
        logger.info("OTel metrics: Console exporter enabled")

    provider = MeterProvider(
        resource=Resource.create({SERVICE_NAME: service_name}),
        metric_readers=readers
    )
    metrics.set_meter_provider(provider)
    _meter = provider.get_meter(service_name)

    _init_instruments(_meter)

    logger.info(f"OTel metrics initialized: {service_name}")
    return _meter


def _init_instruments(meter: metrics.Meter):
    for name, description in COUNTERS.items():
        _counters[name] = meter.create_counter(name, description=description, unit="1")
    for name, description in HISTOGRAMS.items():
        _histograms[name] = meter.create_histogram(name, description=description, unit="s")


def get_meter() -> metrics.Meter:
    """Get the global meter."""
    global _meter
    if _meter is None:
        _meter = metrics.get_meter("dealflow")
    return _meter


def record_counter(name: str, value: int = 1, attributes: Optional[Dict[str, Any]] = None):
    """Record a counter metric."""
    if name in _counters:
        _counters[name].add(value, attributes or {})


def record_histogram(name: str, value: float, attributes: Optional[Dict[str, Any]] = None):
    """Record a histogram metric."""
    if name in _histograms:
        _histograms[name].record(value, attributes or {})
