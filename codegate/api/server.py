"""
FastAPI server for codegate.
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware

from codegate import __version__
from codegate.api.dependencies import set_gateway
from codegate.api.routes import execute
from codegate.gateway import CodeGateway
from codegate.observability import init_metrics, shutdown_metrics
from codegate.observability.middleware import MetricsMiddleware

logger = logging.getLogger(__name__)


def create_app(
    gateway: CodeGateway,
    metrics_enabled: bool = True,
    metrics_exporter: str = "prometheus",
    metrics_endpoint: Optional[str] = None,
) -> FastAPI:
    """
    Create and configure the codegate FastAPI application.

    Args:
        gateway: The gateway every request executes through.
        metrics_enabled: Whether to enable metrics collection
        metrics_exporter: Metrics exporter type ("prometheus", "otlp", "otlp_http", "console")
        metrics_endpoint: OTLP endpoint URL (required for otlp/otlp_http exporters)

    Returns:
        Configured FastAPI application
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        set_gateway(None)
        if metrics_enabled:
            shutdown_metrics()

    app = FastAPI(
        title="codegate API",
        description="Sandboxed code-execution gateway for a mail REST API",
        version=__version__,
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    set_gateway(gateway)
    app.include_router(execute.router)

    if metrics_enabled:
        exporter_kwargs = {}
        if metrics_endpoint and metrics_exporter in ("otlp", "otlp_http"):
            exporter_kwargs["endpoint"] = metrics_endpoint

        init_metrics(
            service_name="codegate",
            exporter_type=metrics_exporter,
            **exporter_kwargs,
        )
        app.add_middleware(MetricsMiddleware)

        # Add /metrics endpoint for Prometheus scraping
        if metrics_exporter == "prometheus":
            @app.get("/metrics", include_in_schema=False)
            async def metrics():
                """Expose Prometheus metrics via OpenTelemetry."""
                from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
                return Response(
                    content=generate_latest(),
                    media_type=CONTENT_TYPE_LATEST,
                )

    return app
