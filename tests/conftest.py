"""
Shared fixtures: an injectable clock, isolated settings, the in-memory
hub and backend, and a session repository per test.
"""

import os
from datetime import datetime, timedelta, timezone

import pytest

os.environ["ENV_MODE"] = "development"

from ordersync.core.config import Settings, get_settings
from ordersync.services.alerts import MockAlertService, reset_alert_service
from ordersync.services.backend import reset_order_backend
from ordersync.services.backend.mock import MockOrderBackend
from ordersync.services.realtime import InMemoryRealtimeChannel, InMemoryRealtimeHub, reset_realtime_channel
from ordersync.services.sessions import MemorySessionStorage, SessionRepository, reset_session_repository


class FakeClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime = datetime(2024, 5, 17, 19, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 0, minutes: float = 0) -> datetime:
        self.now += timedelta(seconds=seconds, minutes=minutes)
        return self.now


@pytest.fixture(autouse=True)
def reset_factories():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
    reset_alert_service()
    reset_order_backend()
    reset_realtime_channel()
    reset_session_repository()


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        env_mode="development",
        completed_display_delay_seconds=0.05,
        manual_menu_grace_seconds=10,
        cancelled_order_cooldown_seconds=300,
        sound_enabled=True,
        desktop_notifications_enabled=True,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def hub():
    return InMemoryRealtimeHub()


@pytest.fixture
def backend(hub, clock):
    return MockOrderBackend(hub=hub, clock=clock)


@pytest.fixture
def alerts():
    return MockAlertService()


@pytest.fixture
def make_channel(hub, alerts):
    def factory(**kwargs):
        return InMemoryRealtimeChannel(hub, alerts=alerts, **kwargs)
    return factory


@pytest.fixture
def repository(clock):
    return SessionRepository(MemorySessionStorage(), ttl_seconds=4 * 3600, cancelled_cooldown_seconds=300, clock=clock)
