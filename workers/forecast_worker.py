"""
Forecast dispatch worker.

Purpose:
- Run the hourly/daily forecast triggers in a process of their own, without the HTTP API
- Or run a single dispatch cycle on demand (cron job, manual resend)

Usage:
- python -m workers.forecast_worker                 # run the scheduler until interrupted
- python -m workers.forecast_worker --once daily    # one daily cycle, then exit

Production notes:
- Run exactly one scheduler (this worker OR the API with SCHEDULER_ENABLED=true);
  two schedulers send every forecast twice
"""
import argparse
import asyncio
import logging

from core import db
from core.logging import configure_logging
from core.singleton import forecast_scheduler, weather_client
from models.subscription import Frequency

configure_logging()
logger = logging.getLogger(__name__)


async def run_once(frequency: Frequency) -> int:
    """Run one cycle; exit code 1 if the batch could not be loaded."""
    try:
        report = await forecast_scheduler.run_cycle(frequency)
    finally:
        await weather_client.aclose()
        await db.dispose_engine()
    if report is None or report.aborted:
        return 1
    logger.info("Cycle done: sent=%d failed=%d", report.sent, len(report.failures))
    return 0


async def run_forever() -> None:
    logger.info("Forecast worker started")
    forecast_scheduler.start()
    try:
        await asyncio.Event().wait()
    finally:
        await forecast_scheduler.shutdown()
        await weather_client.aclose()
        await db.dispose_engine()
        logger.info("Forecast worker stopped")


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Weather forecast dispatch worker")
    parser.add_argument("--once", choices=[f.value for f in Frequency],
                        help="run a single dispatch cycle for this tier and exit")
    args = parser.parse_args(argv)

    if args.once:
        return asyncio.run(run_once(Frequency(args.once)))
    try:
        asyncio.run(run_forever())
    except KeyboardInterrupt:
        logger.info("Worker interrupted")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
