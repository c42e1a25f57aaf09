import asyncio

import pytest

from core.errors import UpstreamErrorKind, UpstreamFailure
from services.weather_cache import WeatherResolutionCache

from conftest import PARIS


@pytest.mark.asyncio
async def test_concurrent_resolves_share_one_upstream_call(weather_provider, weather_cache):
    """Two lookups issued before either completes -> one provider call, same snapshot."""
    weather_provider.delay = 0.05

    first, second = await asyncio.gather(weather_cache.resolve("Paris"), weather_cache.resolve("Paris"))

    assert weather_provider.calls == ["Paris"]
    assert first == second == PARIS


@pytest.mark.asyncio
async def test_concurrent_failure_is_shared_and_not_cached(weather_provider, weather_cache):
    weather_provider.delay = 0.05
    weather_provider.failures["Berlin"] = UpstreamFailure(UpstreamErrorKind.SERVICE_ERROR)

    results = await asyncio.gather(
        weather_cache.resolve("Berlin"), weather_cache.resolve("Berlin"), return_exceptions=True
    )

    assert weather_provider.calls == ["Berlin"]
    assert all(isinstance(r, UpstreamFailure) for r in results)
    assert results[0].kind == UpstreamErrorKind.SERVICE_ERROR
    assert len(weather_cache) == 0

    # the next lookup goes upstream again and can succeed
    del weather_provider.failures["Berlin"]
    snapshot = await weather_cache.resolve("Berlin")
    assert snapshot.description == "Light rain"
    assert weather_provider.calls == ["Berlin", "Berlin"]


@pytest.mark.asyncio
async def test_snapshot_is_not_reused_after_ttl(weather_provider):
    now = [1000.0]
    cache = WeatherResolutionCache(weather_provider, ttl_sec=60, clock=lambda: now[0])

    await cache.resolve("Paris")
    now[0] += 59
    await cache.resolve("Paris")
    assert weather_provider.calls == ["Paris"]

    now[0] += 1
    await cache.resolve("Paris")
    assert weather_provider.calls == ["Paris", "Paris"]


@pytest.mark.asyncio
async def test_city_keys_are_case_sensitive(weather_provider, weather_cache):
    weather_provider.snapshots["paris"] = PARIS

    await weather_cache.resolve("Paris")
    await weather_cache.resolve("paris")

    assert weather_provider.calls == ["Paris", "paris"]


@pytest.mark.asyncio
async def test_slow_lookup_times_out_and_can_be_retried(weather_provider):
    cache = WeatherResolutionCache(weather_provider, ttl_sec=60, fetch_timeout_sec=0.05)
    weather_provider.delay = 1.0

    with pytest.raises(UpstreamFailure) as exc_info:
        await cache.resolve("Paris")
    assert exc_info.value.kind == UpstreamErrorKind.SERVICE_ERROR

    weather_provider.delay = 0.0
    assert await cache.resolve("Paris") == PARIS
    assert weather_provider.calls == ["Paris", "Paris"]


@pytest.mark.asyncio
async def test_cancelled_waiter_does_not_cancel_shared_lookup(weather_provider, weather_cache):
    weather_provider.delay = 0.05

    first = asyncio.create_task(weather_cache.resolve("Paris"))
    second = asyncio.create_task(weather_cache.resolve("Paris"))
    await asyncio.sleep(0.01)
    first.cancel()

    assert await second == PARIS
    assert weather_provider.calls == ["Paris"]
    assert first.cancelled()


@pytest.mark.asyncio
async def test_purge_expired_drops_only_stale_entries(weather_provider):
    now = [0.0]
    cache = WeatherResolutionCache(weather_provider, ttl_sec=60, clock=lambda: now[0])

    await cache.resolve("Paris")
    now[0] = 30
    await cache.resolve("Berlin")
    now[0] = 70

    assert await cache.purge_expired() == 1
    assert len(cache) == 1

    await cache.clear()
    assert len(cache) == 0


class AnyCityProvider:
    async def get_weather(self, city):
        return PARIS


@pytest.mark.asyncio
async def test_entries_from_past_ttl_windows_are_dropped_without_purge():
    now = [0.0]
    cache = WeatherResolutionCache(AnyCityProvider(), ttl_sec=60, clock=lambda: now[0])

    for i in range(500):
        now[0] += 61
        await cache.resolve(f"City-{i}")
        assert len(cache) <= 1

    # entries within one TTL are all kept
    now[0] += 61
    for i in range(3):
        now[0] += 10
        await cache.resolve(f"Town-{i}")
    assert len(cache) == 3
