"""
Tests for `services/thread_sweeper.py`.

Focus:
- The job evicts through its target and reports the count
- Failures are logged, never raised
- Scheduler lifecycle: start registers one interval job on app.state, shutdown clears it
"""

import asyncio
import logging
from types import SimpleNamespace
from unittest.mock import MagicMock

from apscheduler.triggers.interval import IntervalTrigger

from services.thread_sweeper import (
    SWEEP_JOB_ID,
    run_sweep_job,
    shutdown_thread_sweeper,
    start_thread_sweeper,
)
from shared.models import RequestContext, ThreadCategory, ThreadStatus


def test_run_sweep_job_evicts(store, clock):
    thread = store.create_thread("S1", ThreadCategory.REQUEST, RequestContext(), "towels")
    store.set_status(thread.id, ThreadStatus.RESOLVED)
    clock.advance(hours=25)

    evicted = asyncio.run(run_sweep_job(store, 24, logging.getLogger("test")))

    assert evicted == 1
    assert store.session_codes() == []


def test_run_sweep_job_never_raises(caplog):
    target = MagicMock()
    target.evict.side_effect = RuntimeError("boom")

    with caplog.at_level(logging.WARNING):
        result = asyncio.run(run_sweep_job(target, 24, logging.getLogger("test")))

    assert result is None
    target.evict.assert_called_once_with(24)
    assert "thread sweep failed" in caplog.text


def test_scheduler_lifecycle():
    app = SimpleNamespace(state=SimpleNamespace())
    target = MagicMock()

    async def lifecycle():
        scheduler = start_thread_sweeper(app, target)
        job = scheduler.get_job(SWEEP_JOB_ID)
        running = scheduler.running
        shutdown_thread_sweeper(app)
        return job, running

    job, running = asyncio.run(lifecycle())

    assert running is True
    assert isinstance(job.trigger, IntervalTrigger)
    assert job.trigger.interval.total_seconds() == 60 * 60
    assert job.max_instances == 1
    assert app.state.thread_sweeper is None


def test_shutdown_without_start_is_a_noop():
    app = SimpleNamespace(state=SimpleNamespace())
    shutdown_thread_sweeper(app)
