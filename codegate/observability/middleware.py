"""
FastAPI middleware for OpenTelemetry metrics collection.
"""

import re
import time
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from codegate.observability.metrics import record_http_request


_NUMERIC_ID_PATTERN = re.compile(r"/\d+(/|$)")


class MetricsMiddleware(BaseHTTPMiddleware):
    """Middleware to collect HTTP request metrics using OpenTelemetry."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        # Skip metrics endpoint to avoid recursion
        if request.url.path == "/metrics":
            return await call_next(request)

        method = request.method
        path = _NUMERIC_ID_PATTERN.sub("/{id}\\1", request.url.path)

        start_time = time.time()
        status_code = 500  # Default for exceptions

        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            record_http_request(method, path, status_code, time.time() - start_time)
