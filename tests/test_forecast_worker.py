import pytest

from workers import forecast_worker


def test_once_runs_a_single_cycle_and_exits_cleanly(monkeypatch):
    calls = []
    original = forecast_worker.forecast_scheduler.run_cycle

    async def spy(frequency):
        calls.append(frequency)
        return await original(frequency)

    monkeypatch.setattr(forecast_worker.forecast_scheduler, "run_cycle", spy)

    assert forecast_worker.main(["--once", "hourly"]) == 0
    assert [f.value for f in calls] == ["hourly"]


def test_once_rejects_unknown_tier():
    with pytest.raises(SystemExit):
        forecast_worker.main(["--once", "weekly"])
