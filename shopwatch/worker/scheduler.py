"""APScheduler job definitions."""

import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from shopwatch.config import settings
from shopwatch.worker.tasks import TaskRunner, task_runner

logger = logging.getLogger(__name__)


def setup_scheduler(runner: Optional[TaskRunner] = None) -> AsyncIOScheduler:
    """
    Setup and configure APScheduler.

    Scheduling overview:
    - Monitor scan every settings.scan_interval_seconds
    - Watch-list report every settings.watchlist_interval_seconds
    - Catalog cache sweep every settings.cache_sweep_interval_seconds

    Returns:
        Configured scheduler instance
    """
    runner = runner or task_runner
    scheduler = AsyncIOScheduler()

    scheduler.add_job(
        runner.scan_all_monitors,
        IntervalTrigger(seconds=max(1, settings.scan_interval_seconds)),
        id="monitor_scan",
        name="Scan monitors for stock changes",
        max_instances=1,  # Prevent overlapping runs
        coalesce=True,
        misfire_grace_time=settings.scan_interval_seconds,
        replace_existing=True,
    )

    scheduler.add_job(
        runner.watchlist_report,
        IntervalTrigger(seconds=max(1, settings.watchlist_interval_seconds)),
        id="watchlist_report",
        name="Report watch-list quantity changes",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )

    scheduler.add_job(
        runner.sweep_cache,
        IntervalTrigger(seconds=max(1, settings.cache_sweep_interval_seconds)),
        id="cache_sweep",
        name="Evict expired catalog cache entries",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )

    logger.info(
        "Scheduler configured: monitor scan every %ds, watch-list report every %ds, "
        "cache sweep every %ds",
        settings.scan_interval_seconds,
        settings.watchlist_interval_seconds,
        settings.cache_sweep_interval_seconds,
    )

    return scheduler
