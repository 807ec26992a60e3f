"""Alert delivery to Slack and Telegram.

The notifier listens on the monitor's event bus and turns three events into
chat messages:

- ``status_change``: overall verdict moved (a return to healthy is a recovery)
- ``high_memory_usage`` / ``high_cpu_usage``: a sampler threshold was crossed

Delivery failures are logged and never reach the emitter.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from enum import Enum
from typing import Any

import httpx

from vitals.config import settings
from vitals.events import EventBus, MonitorEvent

logger = logging.getLogger(__name__)

TELEGRAM_API = "https://api.telegram.org"
CRITICAL_USAGE_PCT = 95


class NotifyLevel(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"
    RECOVERY = "recovery"


_EMOJI = {
    NotifyLevel.INFO: "ℹ️",
    NotifyLevel.WARNING: "⚠️",
    NotifyLevel.CRITICAL: "🔴",
    NotifyLevel.RECOVERY: "✅",
}

_STATUS_LEVEL = {
    "unhealthy": NotifyLevel.CRITICAL,
    "degraded": NotifyLevel.WARNING,
}


class AlertNotifier:
    """Posts monitor alerts to whichever chat channels are configured."""

    def __init__(
        self,
        slack_webhook: str = "",
        telegram_token: str = "",
        telegram_chat_id: str = "",
        app_name: str = "",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.slack_webhook = slack_webhook or settings.slack_webhook_url
        self.telegram_token = telegram_token or settings.telegram_bot_token
        self.telegram_chat_id = telegram_chat_id or settings.telegram_chat_id
        self.app_name = app_name or settings.app_name
        self._transport = transport
        self._unsubscribers: list[Callable[[], None]] = []

    @property
    def telegram_ready(self) -> bool:
        return bool(self.telegram_token and self.telegram_chat_id)

    @property
    def is_enabled(self) -> bool:
        return bool(self.slack_webhook) or self.telegram_ready

    def status(self) -> dict[str, Any]:
        return {
            "enabled": self.is_enabled,
            "slack": bool(self.slack_webhook),
            "telegram": self.telegram_ready,
        }

    # ── Event wiring ────────────────────────────────────────────────────────

    def attach(self, events: EventBus) -> None:
        if not self.is_enabled:
            logger.debug("Alert notifier disabled: no chat channel configured")
            return
        self._unsubscribers = [
            events.subscribe(MonitorEvent.STATUS_CHANGE, self._on_status_change),
            events.subscribe(MonitorEvent.HIGH_MEMORY_USAGE, self._on_resource),
            events.subscribe(MonitorEvent.HIGH_CPU_USAGE, self._on_resource),
        ]
        logger.info("Alert notifier attached: %s", self.status())

    def detach(self) -> None:
        while self._unsubscribers:
            self._unsubscribers.pop()()

    def _on_status_change(self, event: MonitorEvent, payload: dict[str, Any]):
        return self.notify_health_change(payload["from"], payload["to"])

    def _on_resource(self, event: MonitorEvent, payload: dict[str, Any]):
        kind = "memory" if event == MonitorEvent.HIGH_MEMORY_USAGE else "CPU"
        return self.notify_resource_pressure(kind, payload["percentage"], payload["threshold"])

    # ── Messages ────────────────────────────────────────────────────────────

    async def notify_health_change(self, old_status: str, new_status: str) -> None:
        level = _STATUS_LEVEL.get(new_status)
        if level is None:
            if old_status == new_status or old_status not in _STATUS_LEVEL:
                return
            level = NotifyLevel.RECOVERY

        title = "Recovered" if level == NotifyLevel.RECOVERY else "Health Alert"
        await self._send(
            f"{_EMOJI[level]} *{title}*\n"
            f"Service: `{self.app_name}`\n"
            f"Status: {old_status} → *{new_status}*\n",
        )

    async def notify_resource_pressure(self, kind: str, pct_used: float, threshold: float) -> None:
        level = NotifyLevel.CRITICAL if pct_used >= CRITICAL_USAGE_PCT else NotifyLevel.WARNING
        await self._send(
            f"{_EMOJI[level]} *High {kind} usage*\n"
            f"Service: `{self.app_name}`\n"
            f"Usage: {pct_used:.1f}% (threshold {threshold:.0f}%)\n",
        )

    # ── Delivery ────────────────────────────────────────────────────────────

    def _targets(self, text: str) -> list[tuple[str, str, dict[str, Any]]]:
        targets = []
        if self.slack_webhook:
            targets.append(("slack", self.slack_webhook, {"text": text, "mrkdwn": True}))
        if self.telegram_ready:
            targets.append((
                "telegram",
                f"{TELEGRAM_API}/bot{self.telegram_token}/sendMessage",
                {"chat_id": self.telegram_chat_id, "text": text, "parse_mode": "Markdown"},
            ))
        return targets

    async def _send(self, text: str) -> None:
        targets = self._targets(text)
        if not targets:
            return
        async with httpx.AsyncClient(timeout=10, transport=self._transport) as client:
            await asyncio.gather(
                *(self._post(client, channel, url, body) for channel, url, body in targets)
            )

    async def _post(
        self, client: httpx.AsyncClient, channel: str, url: str, body: dict[str, Any],
    ) -> None:
        try:
            resp = await client.post(url, json=body)
        except httpx.HTTPError as exc:
            logger.warning("%s alert failed: %s", channel, exc)
            return
        if resp.is_error:
            logger.warning("%s alert rejected (%d): %s", channel, resp.status_code, resp.text[:200])
