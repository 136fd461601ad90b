"""
OpenTelemetry metrics definitions for codegate.

This module provides metrics instrumentation using OpenTelemetry SDK,
with configurable exporter backends (Prometheus, OTLP, Console, etc.).
Every record_* helper is a no-op until init_metrics() has run.
"""

import time
from typing import Optional, List
from enum import Enum


class ExporterType(str, Enum):
    """Supported metrics exporter types."""
    PROMETHEUS = "prometheus"
    OTLP = "otlp"
    OTLP_HTTP = "otlp_http"
    CONSOLE = "console"
    NONE = "none"  # For testing or disabled metrics


# Global state
_meter = None
_meter_provider = None
_initialized = False

# Metric instruments
_execution_counter = None
_execution_duration = None
_execution_in_progress = None

_api_call_counter = None
_quota_rejected_counter = None
_token_refresh_counter = None

_http_request_counter = None
_http_request_duration = None


def _create_exporter(
    exporter_type: ExporterType,
    **kwargs,
):
    """
    Create a metric reader based on the exporter type.

    Args:
        exporter_type: Type of exporter to create
        **kwargs: Additional arguments for the exporter
            - endpoint: OTLP endpoint URL
            - headers: OTLP headers dict
            - export_interval_millis: Export interval for periodic exporters

    Returns:
        A metric reader instance
    """
    from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader

    export_interval = kwargs.pop("export_interval_millis", 10000)

    if exporter_type == ExporterType.PROMETHEUS:
        from opentelemetry.exporter.prometheus import PrometheusMetricReader
        return PrometheusMetricReader()

    elif exporter_type == ExporterType.OTLP:
        from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
        exporter = OTLPMetricExporter(**kwargs)
        return PeriodicExportingMetricReader(
            exporter,
            export_interval_millis=export_interval,
        )

    elif exporter_type == ExporterType.OTLP_HTTP:
        from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
        exporter = OTLPMetricExporter(**kwargs)
        return PeriodicExportingMetricReader(
            exporter,
            export_interval_millis=export_interval,
        )

    elif exporter_type == ExporterType.CONSOLE:
        from opentelemetry.sdk.metrics.export import ConsoleMetricExporter
        exporter = ConsoleMetricExporter()
        return PeriodicExportingMetricReader(
            exporter,
            export_interval_millis=export_interval,
        )

    elif exporter_type == ExporterType.NONE:
        return None

    else:
        raise ValueError(f"Unknown exporter type: {exporter_type}")


def init_metrics(
    service_name: str = "codegate",
    exporter_type: str | ExporterType = ExporterType.PROMETHEUS,
    additional_exporters: Optional[List[tuple]] = None,
    **exporter_kwargs,
):
    """
    Initialize OpenTelemetry metrics with the specified exporter(s).

    Args:
        service_name: Name of the service for resource identification
        exporter_type: Primary exporter type ("prometheus", "otlp", "otlp_http", "console", "none")
        additional_exporters: List of (exporter_type, kwargs) tuples for additional exporters
        **exporter_kwargs: Additional arguments for the primary exporter

    Returns:
        The configured MeterProvider

    Example:
        # Prometheus only (default)
        init_metrics()

        # OTLP gRPC
        init_metrics(exporter_type="otlp", endpoint="http://localhost:4317")
    """
    global _meter, _meter_provider, _initialized
    global _execution_counter, _execution_duration, _execution_in_progress
    global _api_call_counter, _quota_rejected_counter, _token_refresh_counter
    global _http_request_counter, _http_request_duration

    if _initialized:
        return _meter_provider

    from opentelemetry import metrics
    from opentelemetry.sdk.metrics import MeterProvider
    from opentelemetry.sdk.resources import Resource, SERVICE_NAME

    # Convert string to enum if needed
    if isinstance(exporter_type, str):
        exporter_type = ExporterType(exporter_type)

    resource = Resource.create({SERVICE_NAME: service_name})

    readers = []

    primary_reader = _create_exporter(exporter_type, **exporter_kwargs)
    if primary_reader is not None:
        readers.append(primary_reader)

    if additional_exporters:
        for exp_type, exp_kwargs in additional_exporters:
            if isinstance(exp_type, str):
                exp_type = ExporterType(exp_type)
            reader = _create_exporter(exp_type, **exp_kwargs)
            if reader is not None:
                readers.append(reader)

    _meter_provider = MeterProvider(resource=resource, metric_readers=readers)
    metrics.set_meter_provider(_meter_provider)

    _meter = _meter_provider.get_meter("codegate.metrics", version="0.1.0")

    # Execution metrics
    _execution_counter = _meter.create_counter(
        name="codegate_execution_total",
        description="Total number of script executions by outcome",
        unit="1",
    )

    _execution_duration = _meter.create_histogram(
        name="codegate_execution_duration_seconds",
        description="Script execution duration in seconds",
        unit="s",
    )

    _execution_in_progress = _meter.create_up_down_counter(
        name="codegate_execution_in_progress",
        description="Number of currently running executions",
        unit="1",
    )

    # Capability metrics
    _api_call_counter = _meter.create_counter(
        name="codegate_api_call_total",
        description="Remote API calls issued by sandboxed scripts",
        unit="1",
    )

    _quota_rejected_counter = _meter.create_counter(
        name="codegate_quota_rejected_total",
        description="Calls rejected because the per-execution quota was spent",
        unit="1",
    )

    _token_refresh_counter = _meter.create_counter(
        name="codegate_token_refresh_total",
        description="Access token refresh attempts by outcome",
        unit="1",
    )

    # HTTP surface metrics
    _http_request_counter = _meter.create_counter(
        name="codegate_http_request_total",
        description="Total number of HTTP requests served",
        unit="1",
    )

    _http_request_duration = _meter.create_histogram(
        name="codegate_http_request_duration_seconds",
        description="HTTP request duration in seconds",
        unit="s",
    )

    _initialized = True
    return _meter_provider


def shutdown_metrics() -> None:
    """Shutdown the meter provider and flush metrics."""
    global _meter_provider, _initialized
    global _execution_counter, _execution_duration, _execution_in_progress
    global _api_call_counter, _quota_rejected_counter, _token_refresh_counter
    global _http_request_counter, _http_request_duration
    if _meter_provider is not None:
        _meter_provider.shutdown()
        _meter_provider = None
    _execution_counter = _execution_duration = _execution_in_progress = None
    _api_call_counter = _quota_rejected_counter = _token_refresh_counter = None
    _http_request_counter = _http_request_duration = None
    _initialized = False


def is_initialized() -> bool:
    """Check if metrics have been initialized."""
    return _initialized


def get_meter_provider():
    """Get the current meter provider."""
    return _meter_provider


def get_meter():
    """Get the current meter instance."""
    return _meter


# =============================================================================
# Execution Metrics Helper Functions
# =============================================================================


def record_execution_started() -> None:
    if _execution_in_progress is not None:
        _execution_in_progress.add(1)


def record_execution_finished(outcome: str, duration: float) -> None:
    """Record a finished execution.

    outcome is "success", "preflight_rejected" or an ErrorKind value.
    """
    if _execution_counter is not None:
        _execution_counter.add(1, {"outcome": outcome})
    if _execution_duration is not None:
        _execution_duration.record(duration, {"outcome": outcome})
    if _execution_in_progress is not None:
        _execution_in_progress.add(-1)


# =============================================================================
# Capability Metrics Helper Functions
# =============================================================================


def record_api_call(verb: str, status_code: int) -> None:
    if _api_call_counter is not None:
        _api_call_counter.add(1, {"verb": verb, "status_code": str(status_code)})


def record_quota_rejected() -> None:
    if _quota_rejected_counter is not None:
        _quota_rejected_counter.add(1)


def record_token_refresh(succeeded: bool) -> None:
    if _token_refresh_counter is not None:
        _token_refresh_counter.add(1, {"status": "success" if succeeded else "failed"})


# =============================================================================
# HTTP Metrics Helper Functions
# =============================================================================


def record_http_request(method: str, endpoint: str, status_code: int, duration: float) -> None:
    """Record an HTTP request served by the API."""
    attributes = {
        "method": method,
        "endpoint": endpoint,
        "status_code": str(status_code),
    }
    if _http_request_counter is not None:
        _http_request_counter.add(1, attributes)
    if _http_request_duration is not None:
        _http_request_duration.record(duration, {"method": method, "endpoint": endpoint})


# =============================================================================
# Context Managers
# =============================================================================


class ExecutionTimer:
    """Context manager for timing one execution.

    Set ``outcome`` before leaving the block; it defaults to "ExecutionError"
    when the block raises.
    """

    def __init__(self):
        self.start_time: Optional[float] = None
        self.outcome: str = "success"

    def __enter__(self) -> "ExecutionTimer":
        self.start_time = time.time()
        record_execution_started()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self.start_time is None:
            return
        duration = time.time() - self.start_time
        if exc_type is not None:
            self.outcome = "ExecutionError"
        record_execution_finished(self.outcome, duration)

    @property
    def elapsed_ms(self) -> int:
        if self.start_time is None:
            return 0
        return int((time.time() - self.start_time) * 1000)
