"""Metrics endpoints: JSON views plus Prometheus text exposition."""

from __future__ import annotations

import logging
import time
from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from vitals.health.models import utcnow_iso
from vitals.metrics import CONTENT_TYPE

logger = logging.getLogger(__name__)

metrics_router = APIRouter()


def _failed(t0: float, error: str) -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content={
            "error": error,
            "timestamp": utcnow_iso(),
            "responseTime": round((time.perf_counter() - t0) * 1000, 2),
        },
    )


def _view(request: Request, build: str, error: str) -> JSONResponse:
    t0 = time.perf_counter()
    try:
        body: dict[str, Any] = getattr(request.app.state.monitor, build)()
    except Exception:
        logger.exception("%s", error)
        return _failed(t0, error)
    body["responseTime"] = round((time.perf_counter() - t0) * 1000, 2)
    return JSONResponse(content=body)


@metrics_router.get("/metrics")
def metrics(request: Request) -> JSONResponse:
    return _view(request, "get_metrics", "Metrics collection failed")


@metrics_router.get("/metrics/performance")
def metrics_performance(request: Request) -> JSONResponse:
    return _view(request, "performance_report", "Performance metrics collection failed")


@metrics_router.get("/metrics/resources")
def metrics_resources(request: Request) -> JSONResponse:
    return _view(request, "resource_report", "Resource metrics collection failed")


@metrics_router.get("/metrics/prometheus")
def metrics_prometheus(request: Request) -> PlainTextResponse:
    try:
        body = request.app.state.monitor.prometheus_text()
    except Exception:
        logger.exception("Prometheus exposition failed")
        return PlainTextResponse("# Error generating metrics\n", status_code=500)
    return PlainTextResponse(body, headers={"Content-Type": CONTENT_TYPE})
