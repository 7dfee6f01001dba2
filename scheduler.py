#!/usr/bin/env python3
"""
Standalone Worker Runner - runs the engine workers without the HTTP API
Usage: python scheduler.py

Features:
- Log rotation (keep 7 files, max 50MB per file)
- One asyncio loop; `schedule` decides when each worker ticks
- Leases keep concurrent runners (and API processes) from doubling work
"""

import asyncio
import schedule
from datetime import datetime
import logging

from fiscal_engine.core.config import settings
from fiscal_engine.core.log_config import setup_logging
from fiscal_engine.engine import build_engine

setup_logging("scheduler.log")
logger = logging.getLogger(__name__)


def spawn(worker, running: dict):
    """Start a worker tick in the background unless the previous one is still going"""
    def job():
        task = running.get(worker.NAME)
        if task and not task.done():
            return
        running[worker.NAME] = asyncio.get_running_loop().create_task(worker.tick())
    return job


async def run_forever():
    engine = build_engine(settings)
    running = {}

    logger.info("Fiscal worker runner started")
    logger.info(f"   Instance: {engine.lease.instance_id}")
    logger.info(f"   Storage: {engine.store.BACKEND_NAME}")
    logger.info(f"   Schedule worker: every {settings.SCHEDULE_INTERVAL_SECONDS}s")
    logger.info(f"   Repair worker: every {settings.REPAIR_INTERVAL_SECONDS}s")
    logger.info(f"   Status refresh: daily at {settings.STATUS_REFRESH_AT} ({settings.BUSINESS_TIMEZONE})")

    schedule.every(settings.SCHEDULE_INTERVAL_SECONDS).seconds.do(spawn(engine.schedule_worker, running))
    schedule.every(settings.REPAIR_INTERVAL_SECONDS).seconds.do(spawn(engine.repair_worker, running))
    schedule.every(settings.REFRESH_CHECK_INTERVAL_SECONDS).seconds.do(spawn(engine.refresh_worker, running))
    schedule.every(settings.OUTBOX_INTERVAL_SECONDS).seconds.do(spawn(engine.outbox_dispatcher, running))

    # Schedule worker runs immediately on start, repair after a short delay
    spawn(engine.schedule_worker, running)()
    await asyncio.sleep(settings.REPAIR_FIRST_RUN_DELAY_SECONDS)
    spawn(engine.repair_worker, running)()

    try:
        while True:
            schedule.run_pending()
            await asyncio.sleep(1)
    finally:
        schedule.clear()
        pending = [t for t in running.values() if not t.done()]
        if pending:
            await asyncio.wait(pending, timeout=30)
        await engine.aclose()
        logger.info(f"Fiscal worker runner stopped at {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")


def main():
    try:
        asyncio.run(run_forever())
    except KeyboardInterrupt:
        logger.info("Interrupted")


if __name__ == "__main__":
    main()
