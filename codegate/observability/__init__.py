"""
codegate observability module.

Provides OpenTelemetry-based metrics for executions, remote calls, quota
rejections and token refreshes. Supports multiple exporter backends
(Prometheus, OTLP, Console).
"""

from codegate.observability.metrics import (
    # Initialization
    init_metrics,
    shutdown_metrics,
    is_initialized,
    get_meter_provider,
    get_meter,
    ExporterType,
    # Execution metrics
    record_execution_started,
    record_execution_finished,
    # Capability metrics
    record_api_call,
    record_quota_rejected,
    record_token_refresh,
    # HTTP metrics
    record_http_request,
    # Context managers
    ExecutionTimer,
)

__all__ = [
    "init_metrics",
    "shutdown_metrics",
    "is_initialized",
    "get_meter_provider",
    "get_meter",
    "ExporterType",
    "record_execution_started",
    "record_execution_finished",
    "record_api_call",
    "record_quota_rejected",
    "record_token_refresh",
    "record_http_request",
    "ExecutionTimer",
]
