import asyncio
import logging
import uuid

import pytest

from core.errors import StoreFailure
from models.subscription import Frequency, Subscription
from services.forecast_scheduler import ForecastDispatchScheduler
from services.subscription_store import InMemorySubscriptionStore


async def add_subscription(store, email, city, frequency=Frequency.DAILY, confirmed=True):
    return await store.save(Subscription(
        id=str(uuid.uuid4()),
        email=email,
        city=city,
        frequency=frequency,
        confirmed=confirmed,
        confirmation_token=str(uuid.uuid4()),
        unsubscribe_token=str(uuid.uuid4()),
    ))


class FailingLoadStore(InMemorySubscriptionStore):
    async def find_many(self, confirmed, frequency):
        raise StoreFailure("connection refused")


@pytest.mark.asyncio
async def test_daily_cycle_isolates_weather_failure(scheduler, store, weather_provider, transport, caplog):
    """Paris resolves, Berlin fails: two sends sharing one Paris lookup, one failure for c@x.com."""
    await add_subscription(store, "a@x.com", "Paris")
    await add_subscription(store, "b@x.com", "Paris")
    await add_subscription(store, "c@x.com", "Berlin")
    weather_provider.snapshots.pop("Berlin")

    with caplog.at_level(logging.ERROR, logger="services.forecast_scheduler"):
        report = await scheduler.run_cycle(Frequency.DAILY)

    assert sorted(transport.sent_to()) == ["a@x.com", "b@x.com"]
    assert weather_provider.calls.count("Paris") == 1
    assert report.loaded == 3
    assert report.sent == 2
    assert [(f.email, f.stage) for f in report.failures] == [("c@x.com", "weather")]

    failure_logs = [r for r in caplog.records if getattr(r, "stage", None) is not None]
    assert len(failure_logs) == 1
    assert failure_logs[0].email == "c@x.com"
    assert failure_logs[0].city == "Berlin"


@pytest.mark.asyncio
async def test_transport_failure_for_one_subscriber_does_not_stop_others(scheduler, store, transport):
    await add_subscription(store, "a@x.com", "Paris")
    await add_subscription(store, "b@x.com", "Berlin")
    await add_subscription(store, "c@x.com", "Paris")
    transport.fail_for.add("b@x.com")

    report = await scheduler.run_cycle(Frequency.DAILY)

    assert sorted(transport.sent_to()) == ["a@x.com", "c@x.com"]
    assert [(f.email, f.stage) for f in report.failures] == [("b@x.com", "send")]


@pytest.mark.asyncio
async def test_cycle_only_targets_confirmed_subscribers_of_the_tier(scheduler, store, transport):
    await add_subscription(store, "daily@x.com", "Paris", Frequency.DAILY)
    await add_subscription(store, "hourly@x.com", "Paris", Frequency.HOURLY)
    await add_subscription(store, "pending@x.com", "Paris", Frequency.HOURLY, confirmed=False)

    report = await scheduler.run_cycle(Frequency.HOURLY)

    assert transport.sent_to() == ["hourly@x.com"]
    assert report.loaded == 1


@pytest.mark.asyncio
async def test_each_forecast_carries_its_own_city_and_unsubscribe_link(scheduler, store, transport):
    paris = await add_subscription(store, "a@x.com", "Paris")
    berlin = await add_subscription(store, "b@x.com", "Berlin")

    await scheduler.run_cycle(Frequency.DAILY)

    by_address = {m["to"]: m for m in transport.sent}
    assert by_address["a@x.com"]["subject"] == "Weather Update for Paris"
    assert "Partly cloudy" in by_address["a@x.com"]["body"]
    assert f"http://app.test/api/unsubscribe/{paris.unsubscribe_token}" in by_address["a@x.com"]["body"]
    assert by_address["b@x.com"]["subject"] == "Weather Update for Berlin"
    assert "Light rain" in by_address["b@x.com"]["body"]
    assert berlin.unsubscribe_token in by_address["b@x.com"]["body"]
    assert paris.unsubscribe_token not in by_address["b@x.com"]["body"]


@pytest.mark.asyncio
async def test_store_failure_aborts_only_the_cycle(weather_cache, notification_service, transport):
    scheduler = ForecastDispatchScheduler(FailingLoadStore(), weather_cache, notification_service)

    report = await scheduler.run_cycle(Frequency.DAILY)

    assert report.aborted is True
    assert transport.sent == []
    assert not scheduler.is_running(Frequency.DAILY)


@pytest.mark.asyncio
async def test_overlapping_cycle_for_same_tier_is_skipped(scheduler, store, weather_provider, transport):
    await add_subscription(store, "a@x.com", "Paris", Frequency.DAILY)
    await add_subscription(store, "h@x.com", "Berlin", Frequency.HOURLY)
    weather_provider.delay = 0.05

    running = asyncio.create_task(scheduler.run_cycle(Frequency.DAILY))
    await asyncio.sleep(0.01)
    assert scheduler.is_running(Frequency.DAILY)

    assert await scheduler.run_cycle(Frequency.DAILY) is None
    # the other tier is independent
    hourly = await scheduler.run_cycle(Frequency.HOURLY)
    assert hourly.sent == 1

    daily = await running
    assert daily.sent == 1
    assert sorted(transport.sent_to()) == ["a@x.com", "h@x.com"]
    assert not scheduler.is_running(Frequency.DAILY)


@pytest.mark.asyncio
async def test_start_registers_hourly_and_daily_triggers(store, weather_cache, notification_service):
    scheduler = ForecastDispatchScheduler(
        store, weather_cache, notification_service, daily_hour=7, daily_minute=30, timezone="UTC"
    )
    scheduler.start()
    try:
        jobs = {job.id: job for job in scheduler.get_jobs()}
        assert set(jobs) == {"forecast-hourly", "forecast-daily"}
        assert jobs["forecast-hourly"].args == (Frequency.HOURLY,)
        assert jobs["forecast-daily"].args == (Frequency.DAILY,)
        assert jobs["forecast-hourly"].next_run_time.minute == 0
        daily_next = jobs["forecast-daily"].next_run_time
        assert (daily_next.hour, daily_next.minute) == (7, 30)
    finally:
        await scheduler.shutdown()
    assert scheduler.get_jobs() == []
