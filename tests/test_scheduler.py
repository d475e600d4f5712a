import threading

import pytest
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from retry import RetryPolicy
from scheduler import JobAlreadyRunningError, JobSpec, SchedulerManager, default_jobs


def test_default_jobs_cover_every_periodic_job():
    jobs = {job.id: job for job in default_jobs("UTC")}
    assert set(jobs) == {"budget-alerts", "recurring-materialize", "monthly-reports"}
    assert all(isinstance(job.trigger, CronTrigger) for job in jobs.values())

    fields = {
        f.name: str(f) for f in jobs["monthly-reports"].trigger.fields if not f.is_default
    }
    assert fields == {"day": "1", "hour": "0", "minute": "0"}
    budget_fields = {
        f.name: str(f) for f in jobs["budget-alerts"].trigger.fields if not f.is_default
    }
    assert budget_fields["hour"] == "*/6"


def test_register_adds_one_non_overlapping_job_per_descriptor():
    manager = SchedulerManager(
        jobs=default_jobs("UTC"),
        scheduler=BackgroundScheduler(timezone="UTC"),
        policy=RetryPolicy(max_attempts=1, backoff=lambda attempt: 0.0),
    )
    manager.register()
    registered = {job.id: job for job in manager.scheduler.get_jobs()}
    assert set(registered) == {
        "budget-alerts",
        "recurring-materialize",
        "monthly-reports",
    }
    assert all(job.max_instances == 1 for job in registered.values())
    assert registered["budget-alerts"].args == ("budget-alerts", "cron")


def test_run_now_applies_retry_policy():
    calls = []

    def handler():
        calls.append(1)
        if len(calls) == 1:
            raise ConnectionError("smtp down")
        return 3

    manager = SchedulerManager(
        jobs=[JobSpec(id="flaky", trigger=CronTrigger(hour=1), handler=handler)],
        scheduler=BackgroundScheduler(timezone="UTC"),
        policy=RetryPolicy(max_attempts=2, backoff=lambda attempt: 0.0),
    )
    assert manager.run_now("flaky") == 3
    assert len(calls) == 2


def test_manual_run_is_refused_while_the_same_job_is_running():
    started = threading.Event()
    release = threading.Event()
    calls = []

    def slow_handler():
        calls.append(1)
        started.set()
        release.wait(timeout=5)
        return "done"

    manager = SchedulerManager(
        jobs=[JobSpec(id="alerts", trigger=CronTrigger(hour=1), handler=slow_handler)],
        scheduler=BackgroundScheduler(timezone="UTC"),
        policy=RetryPolicy(max_attempts=1, backoff=lambda attempt: 0.0),
    )
    worker = threading.Thread(target=manager._run_job, args=("alerts", "cron"))
    worker.start()
    assert started.wait(timeout=5)

    with pytest.raises(JobAlreadyRunningError):
        manager.run_now("alerts")
    assert manager._run_job("alerts", "cron") is None

    release.set()
    worker.join(timeout=5)
    assert len(calls) == 1

    assert manager.run_now("alerts") == "done"
    assert len(calls) == 2
