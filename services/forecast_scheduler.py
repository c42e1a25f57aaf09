"""
Scheduled forecast dispatch.

Purpose:
- Run one dispatch cycle per frequency tier: load confirmed subscribers of the
  tier, resolve weather per city through the shared WeatherResolutionCache and
  email one forecast per subscriber
- Isolate failures per subscriber: a weather or send error for one address is
  logged and recorded, the rest of the cycle carries on
- Register the hourly (on the hour) and daily (fixed time) triggers

Only one cycle per tier runs at a time; a trigger that finds its tier still
running is skipped, not queued. The tiers are independent of each other.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Set

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from core.errors import StoreFailure, TransportFailure, UpstreamFailure
from models.subscription import Frequency, Subscription

logger = logging.getLogger(__name__)


@dataclass
class DispatchFailure:
    email: str
    city: str
    stage: str  # "weather" | "send"
    error: str


@dataclass
class DispatchReport:
    frequency: Frequency
    loaded: int = 0
    sent: int = 0
    failures: List[DispatchFailure] = field(default_factory=list)
    aborted: bool = False


class ForecastDispatchScheduler:
    def __init__(self, store, weather_cache, notification_service, concurrency: int = 10,
                 daily_hour: int = 8, daily_minute: int = 0, timezone: str = "UTC"):
        self.store = store
        self.weather_cache = weather_cache
        self.notification_service = notification_service
        self.concurrency = max(1, concurrency)
        self.daily_hour = daily_hour
        self.daily_minute = daily_minute
        self.timezone = timezone
        self._running: Set[Frequency] = set()
        self._scheduler: Optional[AsyncIOScheduler] = None

    def is_running(self, frequency: Frequency) -> bool:
        return Frequency(frequency) in self._running

    async def run_cycle(self, frequency: Frequency) -> Optional[DispatchReport]:
        """
        Dispatch forecasts to every confirmed subscriber of `frequency`.

        Returns a DispatchReport, or None when the tier's previous cycle is
        still running. Never raises for per-subscriber failures; a store error
        while loading the batch aborts this cycle only.
        """
        frequency = Frequency(frequency)
        # check-and-set happens without an await in between
        if frequency in self._running:
            logger.warning("Skipping %s forecast cycle: previous cycle still running", frequency.value)
            return None
        self._running.add(frequency)
        try:
            return await self._dispatch(frequency)
        finally:
            self._running.discard(frequency)

    async def _dispatch(self, frequency: Frequency) -> DispatchReport:
        logger.info("Processing %s forecasts...", frequency.value)
        report = DispatchReport(frequency=frequency)
        await self.weather_cache.purge_expired()

        try:
            subscriptions = await self.store.find_many(confirmed=True, frequency=frequency)
        except StoreFailure as e:
            logger.error("Failed to load %s subscriptions, cycle aborted: %s", frequency.value, e)
            report.aborted = True
            return report

        report.loaded = len(subscriptions)
        semaphore = asyncio.Semaphore(self.concurrency)

        async def _bounded(sub: Subscription):
            async with semaphore:
                await self._dispatch_one(sub, report)

        await asyncio.gather(*(_bounded(sub) for sub in subscriptions))

        logger.info(
            "Finished %s forecasts: loaded=%d sent=%d failed=%d",
            frequency.value, report.loaded, report.sent, len(report.failures),
        )
        return report

    async def _dispatch_one(self, sub: Subscription, report: DispatchReport) -> None:
        # resolve-then-send for one subscriber; weather never crosses subscribers
        stage = "weather"
        try:
            weather = await self.weather_cache.resolve(sub.city)
            stage = "send"
            await self.notification_service.send_forecast(sub, weather)
        except (UpstreamFailure, TransportFailure) as e:
            self._record_failure(report, sub, stage, e)
            return
        except Exception as e:
            logger.exception("Unexpected error dispatching forecast to %s (%s)", sub.email, sub.city)
            self._record_failure(report, sub, stage, e)
            return
        report.sent += 1

    @staticmethod
    def _record_failure(report: DispatchReport, sub: Subscription, stage: str, error: Exception) -> None:
        report.failures.append(DispatchFailure(email=sub.email, city=sub.city, stage=stage, error=str(error)))
        logger.error(
            "Failed to send %s forecast to %s (%s) at stage=%s: %s",
            report.frequency.value, sub.email, sub.city, stage, error,
            extra={"email": sub.email, "city": sub.city, "frequency": report.frequency.value, "stage": stage},
        )

    # ---------------- timers ----------------

    async def _run_scheduled(self, frequency: Frequency) -> None:
        """Timer entry point; no cycle error may take the process down."""
        try:
            await self.run_cycle(frequency)
        except Exception:
            logger.exception("%s forecast cycle failed", Frequency(frequency).value)

    def start(self) -> None:
        """
        Register both tier triggers and start the scheduler on the running loop:
        - hourly: every hour at minute 0
        - daily: every day at daily_hour:daily_minute (scheduler timezone)
        """
        if self._scheduler is not None:
            return
        scheduler = AsyncIOScheduler(timezone=self.timezone)
        scheduler.add_job(
            self._run_scheduled,
            CronTrigger(minute=0, timezone=self.timezone),
            args=[Frequency.HOURLY],
            id="forecast-hourly",
            name="Hourly forecast dispatch",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        scheduler.add_job(
            self._run_scheduled,
            CronTrigger(hour=self.daily_hour, minute=self.daily_minute, timezone=self.timezone),
            args=[Frequency.DAILY],
            id="forecast-daily",
            name="Daily forecast dispatch",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        scheduler.start()
        self._scheduler = scheduler
        logger.info(
            "Forecast scheduler started (hourly at :00, daily at %02d:%02d %s)",
            self.daily_hour, self.daily_minute, self.timezone,
        )

    def get_jobs(self):
        return self._scheduler.get_jobs() if self._scheduler else []

    async def shutdown(self) -> None:
        """Stop the triggers and tear down the weather cache owned by this scheduler."""
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("Forecast scheduler stopped")
        await self.weather_cache.clear()
