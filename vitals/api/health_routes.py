"""Health endpoints.

Endpoints:
  GET  /health  overall status (503 when unhealthy)
  GET  /health/detailed  checks, summary, system and performance excerpts
  GET  /health/ready  readiness of the critical dependencies
  GET  /health/live  process liveness
  GET  /health/history  recent aggregate verdicts
  GET  /health/dependency/{name}  probe one dependency now
  POST /health/check  run a manual sweep
  GET  /health/stream  SSE stream of sweep results
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse, StreamingResponse

from vitals.events import EventBus, MonitorEvent
from vitals.health import Status
from vitals.health.models import utcnow_iso

logger = logging.getLogger(__name__)

health_router = APIRouter()


def _elapsed(t0: float) -> float:
    return round((time.perf_counter() - t0) * 1000, 2)


def _unavailable(t0: float, error: str, **extra: Any) -> JSONResponse:
    return JSONResponse(
        status_code=503,
        content={
            "status": Status.UNHEALTHY.value,
            "timestamp": utcnow_iso(),
            "responseTime": _elapsed(t0),
            "error": error,
            **extra,
        },
    )


# ── SSE broadcaster ──────────────────────────────────────────────────────────


class SseBroadcaster:
    """Fans sweep results out to per-client bounded queues."""

    def __init__(self, maxsize: int = 50) -> None:
        self.maxsize = maxsize
        self.queues: list[asyncio.Queue[dict[str, Any]]] = []
        self.dropped = 0

    def attach(self, events: EventBus) -> None:
        events.subscribe(MonitorEvent.HEALTH_CHECK, self.broadcast)
        events.subscribe(MonitorEvent.STATUS_CHANGE, self.broadcast)

    def subscribe(self) -> asyncio.Queue[dict[str, Any]]:
        queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=self.maxsize)
        self.queues.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[dict[str, Any]]) -> None:
        if queue in self.queues:
            self.queues.remove(queue)

    def broadcast(self, event: MonitorEvent, payload: dict[str, Any]) -> None:
        data = {"event": event.value, **payload}
        for q in self.queues:
            try:
                q.put_nowait(data)
            except asyncio.QueueFull:
                self.dropped += 1  # slow consumer, drop


# ── Status endpoints ─────────────────────────────────────────────────────────


@health_router.get("/health")
def health(request: Request) -> JSONResponse:
    """Basic health: overall status only."""
    t0 = time.perf_counter()
    try:
        snap = request.app.state.monitor.get_health_status()
        body = {
            "status": snap.status.value,
            "timestamp": snap.timestamp,
            "uptime": snap.uptime,
            "version": snap.version,
            "environment": snap.environment,
            "responseTime": _elapsed(t0),
        }
        code = 503 if snap.status == Status.UNHEALTHY else 200
        return JSONResponse(status_code=code, content=body)
    except Exception:
        logger.exception("Health endpoint failed")
        return _unavailable(t0, "Health check system unavailable")


@health_router.get("/health/detailed")
def health_detailed(request: Request) -> JSONResponse:
    t0 = time.perf_counter()
    try:
        body = request.app.state.monitor.detailed_health()
        body["responseTime"] = _elapsed(t0)
        code = 503 if body["status"] == Status.UNHEALTHY.value else 200
        return JSONResponse(status_code=code, content=body)
    except Exception:
        logger.exception("Detailed health endpoint failed")
        return _unavailable(t0, "Detailed health check system unavailable")


@health_router.get("/health/ready")
def health_ready(request: Request) -> JSONResponse:
    t0 = time.perf_counter()
    try:
        body = request.app.state.monitor.readiness()
        body["responseTime"] = _elapsed(t0)
        return JSONResponse(status_code=200 if body["ready"] else 503, content=body)
    except Exception:
        logger.exception("Readiness endpoint failed")
        return JSONResponse(
            status_code=503,
            content={
                "ready": False,
                "status": "not_ready",
                "timestamp": utcnow_iso(),
                "responseTime": _elapsed(t0),
                "error": "Readiness check system unavailable",
            },
        )


@health_router.get("/health/live")
def health_live(request: Request) -> dict[str, Any]:
    t0 = time.perf_counter()
    body = request.app.state.monitor.liveness()
    body["responseTime"] = _elapsed(t0)
    return body


@health_router.get("/health/history")
def health_history(request: Request) -> JSONResponse:
    t0 = time.perf_counter()
    try:
        body = request.app.state.monitor.health_history()
        body["timestamp"] = utcnow_iso()
        body["responseTime"] = _elapsed(t0)
        return JSONResponse(content=body)
    except Exception:
        logger.exception("Health history endpoint failed")
        return _unavailable(t0, "Health history unavailable")


@health_router.get("/health/dependency/{name}")
async def health_dependency(name: str, request: Request) -> JSONResponse:
    """Probe a single dependency on demand."""
    monitor = request.app.state.monitor
    if name not in monitor.registry:
        raise HTTPException(status_code=404, detail=f"Dependency not found: {name}")

    t0 = time.perf_counter()
    try:
        result = await monitor.check_dependency(name)
    except Exception:
        logger.exception("Dependency check failed for %s", name)
        return _unavailable(t0, f"Dependency check failed: {name}", dependency=name)

    body = {
        "dependency": name,
        **result.to_dict(),
        "timestamp": utcnow_iso(),
        "responseTime": _elapsed(t0),
    }
    code = 503 if result.status == Status.UNHEALTHY else 200
    return JSONResponse(status_code=code, content=body)


@health_router.post("/health/check")
async def health_check_now(request: Request) -> JSONResponse:
    """Run every enabled probe now and return the fresh snapshot."""
    t0 = time.perf_counter()
    try:
        snap = await request.app.state.monitor.perform_manual_check()
    except Exception:
        logger.exception("Manual health check failed")
        return _unavailable(t0, "Manual health check failed")
    body = {**snap.to_dict(), "responseTime": _elapsed(t0)}
    return JSONResponse(status_code=503 if snap.status == Status.UNHEALTHY else 200, content=body)


# ── SSE stream ───────────────────────────────────────────────────────────────


@health_router.get("/health/stream")
async def health_stream(request: Request) -> StreamingResponse:
    """Server-Sent Events stream of sweep results and status changes."""
    broadcaster: SseBroadcaster = request.app.state.broadcaster
    queue = broadcaster.subscribe()

    async def event_generator():
        try:
            snap = request.app.state.monitor.get_health_status()
            yield f"event: init\ndata: {json.dumps(snap.to_dict())}\n\n"

            while True:
                if await request.is_disconnected():
                    break

                try:
                    data = await asyncio.wait_for(queue.get(), timeout=30)
                    yield f"event: {data['event']}\ndata: {json.dumps(data)}\n\n"
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
        finally:
            broadcaster.unsubscribe(queue)

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
