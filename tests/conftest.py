import asyncio
import os
import sys
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Settings are read at import time: keep tests off MySQL, SMTP and the scheduler
os.environ["MYSQL_ASYNC_URL"] = "disabled"
os.environ["USE_DB"] = "false"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ.pop("SMTP_HOST", None)

# Ensure project root is on sys.path so top-level packages import
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))


from core.errors import TransportFailure, UpstreamErrorKind, UpstreamFailure
from models.weather import WeatherSnapshot
from services.forecast_scheduler import ForecastDispatchScheduler
from services.notification_service import NotificationService
from services.subscription_service import SubscriptionService
from services.subscription_store import InMemorySubscriptionStore
from services.weather_cache import WeatherResolutionCache


PARIS = WeatherSnapshot(temperature=18.5, humidity=60, description="Partly cloudy")
BERLIN = WeatherSnapshot(temperature=11.0, humidity=81, description="Light rain")


class FakeWeatherProvider:
    """Records every upstream call; unknown cities are NOT_FOUND."""

    def __init__(self):
        self.snapshots = {"Paris": PARIS, "Berlin": BERLIN}
        self.failures = {}
        self.delay = 0.0
        self.calls = []

    async def get_weather(self, city: str) -> WeatherSnapshot:
        self.calls.append(city)
        if self.delay:
            await asyncio.sleep(self.delay)
        if city in self.failures:
            raise self.failures[city]
        if city in self.snapshots:
            return self.snapshots[city]
        raise UpstreamFailure(UpstreamErrorKind.NOT_FOUND)


class FakeTransport:
    """Collects sent emails; addresses in fail_for raise TransportFailure."""

    def __init__(self):
        self.sent = []
        self.fail_for = set()

    async def send(self, to: str, subject: str, html_body: str) -> None:
        if to in self.fail_for:
            raise TransportFailure(f"SMTP refused {to}")
        self.sent.append({"to": to, "subject": subject, "body": html_body})

    def sent_to(self):
        return [m["to"] for m in self.sent]


@pytest.fixture()
def weather_provider():
    return FakeWeatherProvider()


@pytest.fixture()
def transport():
    return FakeTransport()


@pytest.fixture()
def store():
    return InMemorySubscriptionStore()


@pytest.fixture()
def weather_cache(weather_provider):
    return WeatherResolutionCache(weather_provider, ttl_sec=3600, fetch_timeout_sec=1.0)


@pytest.fixture()
def notification_service(transport):
    return NotificationService(transport, api_base_url="http://api.test", app_base_url="http://app.test")


@pytest.fixture()
def subscription_service(store, weather_cache, notification_service):
    return SubscriptionService(store, weather_cache, notification_service)


@pytest.fixture()
def scheduler(store, weather_cache, notification_service):
    return ForecastDispatchScheduler(store, weather_cache, notification_service, concurrency=4)


@pytest_asyncio.fixture()
async def api_client(subscription_service, weather_cache, notification_service):
    """Async test client for the API with services wired to the fakes above."""
    from core import singleton
    from main import app

    app.dependency_overrides[singleton.get_subscription_service] = lambda: subscription_service
    app.dependency_overrides[singleton.get_weather_cache] = lambda: weather_cache
    app.dependency_overrides[singleton.get_notification_service] = lambda: notification_service
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as ac:
        yield ac
    app.dependency_overrides.clear()
