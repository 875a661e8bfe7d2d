"""
APScheduler-based interval scheduler for thread eviction.

The thread store never cleans up after itself; eviction is an explicit operation. This
module owns the deployment's trigger for it: an `AsyncIOScheduler` running one sweep every
`threads.sweep_interval_minutes` (60 by default) with the `threads.max_age_hours` cutoff.
The job is a coroutine so it runs on the application's event loop, next to the turns it
shares the dispatcher with. Failures are logged and never crash the application; the
scheduler keeps triggering future runs. Start and stop are wired to the app's startup
and shutdown events in `main.py`.
"""

from __future__ import annotations

import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from config import CONFIG

SWEEP_JOB_ID = "thread_eviction_sweep"


async def run_sweep_job(target, max_age_hours: float, logger: logging.Logger) -> Optional[int]:
    """
    Execute one eviction sweep and log a concise summary; never raise exceptions.

    Args:
        target: Anything exposing `evict(max_age_hours) -> int`, normally the dispatcher.
        max_age_hours (float): Age cutoff passed to `evict`.
        logger (logging.Logger): Destination of the summary line.

    Returns:
        Optional[int]: Number of evicted threads, or None when the sweep failed.
    """
    try:
        evicted = target.evict(max_age_hours)
    except Exception as exc:
        logger.warning("thread sweep failed: %s", exc, exc_info=True)
        return None
    logger.info("thread sweep summary: evicted=%s max_age_hours=%s", evicted, max_age_hours)
    return evicted


def start_thread_sweeper(app, target) -> AsyncIOScheduler:
    """
    Start the eviction scheduler and store it on the app state.

    Args:
        app: The FastAPI application; receives `app.state.thread_sweeper`.
        target: Object whose `evict(max_age_hours)` is called on every run.

    Returns:
        AsyncIOScheduler: The running scheduler.
    """
    threads_cfg = CONFIG.get('threads', {}) or {}
    interval_minutes = float(threads_cfg.get('sweep_interval_minutes', 60))
    max_age_hours = float(threads_cfg.get('max_age_hours', 24))

    scheduler = AsyncIOScheduler()
    logger = logging.getLogger(__name__)
    scheduler.add_job(
        run_sweep_job,
        trigger=IntervalTrigger(minutes=interval_minutes),
        args=[target, max_age_hours, logger],
        id=SWEEP_JOB_ID,
        coalesce=True,
        max_instances=1,
        misfire_grace_time=600,
    )
    scheduler.start()
    setattr(app.state, "thread_sweeper", scheduler)
    logger.info(
        "thread sweeper started: interval_minutes=%s max_age_hours=%s", interval_minutes, max_age_hours
    )
    return scheduler


def shutdown_thread_sweeper(app) -> None:
    """
    Stop the eviction scheduler if it was started.

    Shutdown errors are logged rather than raised so that application teardown completes.
    """
    scheduler = getattr(app.state, "thread_sweeper", None)
    if scheduler is None:
        return
    try:
        scheduler.shutdown(wait=False)
    except Exception as exc:
        logging.getLogger(__name__).warning("thread sweeper shutdown failed: %s", exc)
    setattr(app.state, "thread_sweeper", None)
