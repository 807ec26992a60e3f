"""Request metrics middleware: feeds every HTTP request into the collector."""

from __future__ import annotations

import logging
import time

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

logger = logging.getLogger(__name__)


def route_path(request: Request) -> str:
    """The matched route template (``/health/dependency/{name}``), else the raw path."""
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.url.path


class RequestMetricsMiddleware(BaseHTTPMiddleware):
    """Record method, route, duration and status of each request.

    An exception escaping the handler is recorded as a 500 and re-raised.
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        monitor = getattr(request.app.state, "monitor", None)
        t0 = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            if monitor is not None:
                monitor.collector.record_http_request(
                    request.method,
                    route_path(request),
                    (time.perf_counter() - t0) * 1000,
                    status_code,
                )
