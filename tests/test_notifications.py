"""Tests for Slack / Telegram alert notifications."""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from vitals.events import EventBus, MonitorEvent
from vitals.notifications import AlertNotifier


@pytest.fixture
def posted() -> list[tuple[str, dict]]:
    return []


@pytest.fixture
def transport(posted) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        posted.append((str(request.url), json.loads(request.content)))
        return httpx.Response(200)

    return httpx.MockTransport(handler)


class TestAlertNotifier:
    def test_disabled_without_configuration(self, monkeypatch) -> None:
        monkeypatch.setattr("vitals.notifications.settings.slack_webhook_url", "")
        monkeypatch.setattr("vitals.notifications.settings.telegram_bot_token", "")
        notifier = AlertNotifier()
        bus = EventBus()
        notifier.attach(bus)
        assert not notifier.is_enabled
        assert bus.subscriber_count(MonitorEvent.STATUS_CHANGE) == 0

    def test_status_change_posts_to_slack(self, transport, posted) -> None:
        notifier = AlertNotifier(
            slack_webhook="https://hooks.slack.test/abc", app_name="api", transport=transport,
        )
        asyncio.run(notifier.notify_health_change("healthy", "unhealthy"))

        assert len(posted) == 1
        url, body = posted[0]
        assert url == "https://hooks.slack.test/abc"
        assert "healthy → *unhealthy*" in body["text"]
        assert "`api`" in body["text"]

    def test_recovery_and_noop(self, transport, posted) -> None:
        notifier = AlertNotifier(slack_webhook="https://hooks.slack.test/abc", transport=transport)

        async def scenario():
            await notifier.notify_health_change("degraded", "healthy")
            await notifier.notify_health_change("healthy", "healthy")

        asyncio.run(scenario())
        assert len(posted) == 1
        assert "✅" in posted[0][1]["text"]

    def test_telegram(self, transport, posted) -> None:
        notifier = AlertNotifier(
            telegram_token="T0KEN", telegram_chat_id="42", transport=transport,
        )
        asyncio.run(notifier.notify_resource_pressure("memory", 91.0, 85))

        url, body = posted[0]
        assert url == "https://api.telegram.org/botT0KEN/sendMessage"
        assert body["chat_id"] == "42"
        assert "High memory usage" in body["text"]

    def test_failed_webhook_is_swallowed(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("down", request=request)

        notifier = AlertNotifier(
            slack_webhook="https://hooks.slack.test/abc", transport=httpx.MockTransport(handler),
        )
        asyncio.run(notifier.notify_health_change("healthy", "degraded"))

    def test_attached_to_events(self, transport, posted) -> None:
        notifier = AlertNotifier(slack_webhook="https://hooks.slack.test/abc", transport=transport)
        bus = EventBus()
        notifier.attach(bus)

        async def scenario():
            bus.emit(MonitorEvent.STATUS_CHANGE, {"from": "healthy", "to": "degraded"})
            bus.emit(MonitorEvent.HIGH_CPU_USAGE, {"percentage": 97.0, "threshold": 80})
            for _ in range(20):
                await asyncio.sleep(0)
            await asyncio.gather(*bus._pending)

        asyncio.run(scenario())
        texts = [body["text"] for _, body in posted]
        assert any("*degraded*" in t for t in texts)
        assert any("High CPU usage" in t for t in texts)

        notifier.detach()
        assert bus.subscriber_count(MonitorEvent.STATUS_CHANGE) == 0
