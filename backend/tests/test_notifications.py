"""
Tests for booking event publishing when Redis is unreachable.
"""

import pytest
import pytest_asyncio
import redis.asyncio as redis
from prometheus_client import REGISTRY

from tablebook.core.config import get_settings
from tablebook.infrastructure import redis_client
from tablebook.services import notification_service


class FakeRedis:
    def __init__(self, ping_error=None, publish_error=None):
        self.ping_error = ping_error
        self.publish_error = publish_error
        self.published = []
        self.closed = False

    async def ping(self):
        if self.ping_error is not None:
            raise self.ping_error
        return True

    async def publish(self, channel, message):
        if self.publish_error is not None:
            raise self.publish_error
        self.published.append((channel, message))
        return 1

    async def aclose(self):
        self.closed = True


class Connector:
    """Stands in for redis.from_url and records each client it hands out."""

    def __init__(self):
        self.clients = []
        self.next = FakeRedis(ping_error=redis.ConnectionError("Connection refused"))

    def __call__(self, url, **kwargs):
        self.clients.append(self.next)
        return self.next


@pytest_asyncio.fixture
async def connects(monkeypatch):
    connector = Connector()
    monkeypatch.setattr(get_settings(), "REDIS_ENABLED", True)
    monkeypatch.setattr(get_settings(), "REDIS_RETRY_SECONDS", 30.0)
    monkeypatch.setattr(redis_client, "_redis_client", None)
    monkeypatch.setattr(redis_client, "_retry_after", 0.0)
    monkeypatch.setattr(redis_client.redis, "from_url", connector)
    yield connector
    await redis_client.close_redis()


def _publish_errors() -> float:
    return REGISTRY.get_sample_value("tablebook_event_publish_errors_total") or 0.0


@pytest.mark.asyncio
async def test_unreachable_redis_is_not_retried_on_every_event(connects, monkeypatch):
    await notification_service.emit(notification_service.BOOKING_CREATED, {"booking_id": 1}, branch_id=1)
    await notification_service.emit(notification_service.BOOKING_CREATED, {"booking_id": 2}, branch_id=1)

    assert len(connects.clients) == 1
    assert connects.clients[0].closed
    assert await redis_client.get_redis() is None
    assert len(connects.clients) == 1

    # Once the backoff has run out the next event tries again
    monkeypatch.setattr(redis_client, "_retry_after", 0.0)
    await notification_service.emit(notification_service.BOOKING_CREATED, {"booking_id": 3}, branch_id=1)
    assert len(connects.clients) == 2


@pytest.mark.asyncio
async def test_publish_failure_drops_connection_and_backs_off(connects):
    connects.next = FakeRedis(publish_error=redis.ConnectionError("Connection reset by peer"))
    errors_before = _publish_errors()

    await notification_service.emit(notification_service.BOOKING_CONFIRMED, {"booking_id": 1}, branch_id=7)
    assert len(connects.clients) == 1
    assert connects.clients[0].closed
    assert _publish_errors() == errors_before + 1

    await notification_service.emit(notification_service.BOOKING_CONFIRMED, {"booking_id": 2}, branch_id=7)
    assert len(connects.clients) == 1


@pytest.mark.asyncio
async def test_events_reach_the_branch_channel(connects):
    healthy = FakeRedis()
    connects.next = healthy

    await notification_service.emit(notification_service.BOOKING_CANCELLED, {"booking_id": 5}, branch_id=3)
    await notification_service.emit(notification_service.BOOKING_CANCELLED, {"booking_id": 6}, branch_id=3)

    assert len(connects.clients) == 1
    assert [channel for channel, _ in healthy.published] == ["branch:3", "branch:3"]
    assert '"event": "booking-cancelled"' in healthy.published[0][1]


@pytest.mark.asyncio
async def test_health_reports_redis_unavailable_during_backoff(connects):
    assert await redis_client.redis_status() == {"status": "unavailable"}
    assert await redis_client.redis_status() == {"status": "unavailable"}
    assert len(connects.clients) == 1
