"""FastAPI server exposing the health and metrics endpoints."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from vitals.api.health_routes import SseBroadcaster, health_router
from vitals.api.metrics_routes import metrics_router
from vitals.api.middleware import RequestMetricsMiddleware
from vitals.config import settings
from vitals.monitor import Monitor, build_monitor
from vitals.notifications import AlertNotifier

logger = logging.getLogger(__name__)


def wire_state(app: FastAPI, monitor: Monitor) -> None:
    """Attach the monitor and its event consumers to ``app.state``."""
    app.state.monitor = monitor

    broadcaster = SseBroadcaster()
    broadcaster.attach(monitor.events)
    app.state.broadcaster = broadcaster

    notifier = AlertNotifier()
    notifier.attach(monitor.events)
    app.state.notifier = notifier


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build (unless injected), start and finally stop the monitor."""
    monitor: Monitor | None = getattr(app.state, "monitor", None)
    if monitor is None:
        monitor = build_monitor()
        wire_state(app, monitor)

    try:
        await monitor.start()
    except Exception:
        logger.exception("Monitor failed to start")

    yield

    app.state.notifier.detach()
    await monitor.stop()


def create_app(monitor: Monitor | None = None) -> FastAPI:
    app = FastAPI(
        title=f"{settings.app_name} - Health & Metrics",
        version=settings.app_version,
        lifespan=lifespan,
    )
    if monitor is not None:
        wire_state(app, monitor)

    app.add_middleware(RequestMetricsMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health_router)
    app.include_router(metrics_router)

    return app


app = create_app()
