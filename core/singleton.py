# core/singleton.py
"""
Composition root: every component is built once here and receives its
collaborators through its constructor.

    store ─┬─────────────────────────────┐
           │                             │
    weather_client -> weather_cache ─────┼─> subscription_service
                                         │
    notifier -> notification_service ────┴─> forecast_scheduler
"""
import logging

from config.settings import settings
from core import db
from services.forecast_scheduler import ForecastDispatchScheduler
from services.notification_service import NotificationService
from services.subscription_service import SubscriptionService
from services.subscription_store import InMemorySubscriptionStore, SubscriptionDBStore
from services.weather_cache import WeatherResolutionCache
from tools.notifier import build_notifier
from tools.weather import WeatherAPIClient

logger = logging.getLogger(__name__)

if db.db_enabled():
    subscription_store = SubscriptionDBStore(db.async_session_maker)
else:
    logger.warning("USE_DB is off or DB disabled; subscriptions are kept in memory for this process.")
    subscription_store = InMemorySubscriptionStore()

weather_client = WeatherAPIClient(
    base_url=settings.WEATHER_API_URL,
    api_key=settings.WEATHER_API_KEY,
    timeout=settings.WEATHER_HTTP_TIMEOUT_SEC,
)
weather_cache = WeatherResolutionCache(
    weather_client,
    ttl_sec=settings.WEATHER_CACHE_TTL_SEC,
    fetch_timeout_sec=settings.WEATHER_FETCH_TIMEOUT_SEC,
)
notification_service = NotificationService(
    build_notifier(settings),
    api_base_url=settings.API_BASE_URL,
    app_base_url=settings.APP_BASE_URL,
)
subscription_service = SubscriptionService(subscription_store, weather_cache, notification_service)
forecast_scheduler = ForecastDispatchScheduler(
    subscription_store,
    weather_cache,
    notification_service,
    concurrency=settings.DISPATCH_CONCURRENCY,
    daily_hour=settings.DAILY_FORECAST_HOUR,
    daily_minute=settings.DAILY_FORECAST_MINUTE,
    timezone=settings.SCHEDULER_TIMEZONE,
)


# FastAPI dependencies (tests swap these through app.dependency_overrides)
def get_subscription_service() -> SubscriptionService:
    return subscription_service


def get_weather_cache() -> WeatherResolutionCache:
    return weather_cache


def get_notification_service() -> NotificationService:
    return notification_service


__all__ = [
    "subscription_store",
    "weather_client",
    "weather_cache",
    "notification_service",
    "subscription_service",
    "forecast_scheduler",
]
