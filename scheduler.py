import logging
import threading
from dataclasses import dataclass
from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.schedulers.base import BaseScheduler
from apscheduler.triggers.base import BaseTrigger
from apscheduler.triggers.cron import CronTrigger

from config import get_settings
from jobs import check_budget_alerts, materialize_recurring, send_monthly_reports
from retry import RetryPolicy, run_with_retry


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class JobAlreadyRunningError(RuntimeError):
    pass


@dataclass(frozen=True)
class JobSpec:
    id: str
    trigger: BaseTrigger
    handler: Callable[[], object]
    misfire_grace_time: int = 3600


def default_jobs(timezone: Optional[str] = None) -> list[JobSpec]:
    tz = timezone or get_settings().timezone
    return [
        JobSpec(
            id="budget-alerts",
            trigger=CronTrigger(hour="*/6", minute=0, timezone=tz),
            handler=check_budget_alerts,
            misfire_grace_time=1800,
        ),
        JobSpec(
            id="recurring-materialize",
            trigger=CronTrigger(hour=0, minute=0, timezone=tz),
            handler=materialize_recurring,
        ),
        JobSpec(
            id="monthly-reports",
            trigger=CronTrigger(day=1, hour=0, minute=0, timezone=tz),
            handler=send_monthly_reports,
            misfire_grace_time=6 * 3600,
        ),
    ]


class SchedulerManager:
    def __init__(
        self,
        jobs: Optional[list[JobSpec]] = None,
        scheduler: Optional[BaseScheduler] = None,
        policy: Optional[RetryPolicy] = None,
    ) -> None:
        settings = get_settings()
        self.scheduler = scheduler or BackgroundScheduler(timezone=settings.timezone)
        self.jobs = {job.id: job for job in (jobs or default_jobs(settings.timezone))}
        self.policy = policy or RetryPolicy.from_settings()
        self._locks = {job_id: threading.Lock() for job_id in self.jobs}

    def _run_job(self, job_id: str, source: str = "manual") -> object:
        job = self.jobs.get(job_id)
        if job is None:
            raise KeyError(f"Unknown job: {job_id}")
        # Shared by cron and manual runs: a job never overlaps itself.
        lock = self._locks[job_id]
        if not lock.acquire(blocking=False):
            logger.warning(f"scheduler_run: job={job_id} source={source} already running")
            if source == "cron":
                return None
            raise JobAlreadyRunningError(f"Job {job_id} is already running")
        try:
            logger.info(f"scheduler_run: job={job_id} source={source}")
            result = run_with_retry(job.handler, self.policy, name=job_id)
        finally:
            lock.release()
        logger.info(f"scheduler_run: job={job_id} source={source} result={result!r}")
        return result

    def run_now(self, job_id: str) -> object:
        return self._run_job(job_id, "manual")

    def register(self) -> None:
        for job in self.jobs.values():
            self.scheduler.add_job(
                self._run_job,
                job.trigger,
                args=[job.id, "cron"],
                id=job.id,
                replace_existing=True,
                max_instances=1,
                coalesce=True,
                misfire_grace_time=job.misfire_grace_time,
            )

    def start(self) -> None:
        self.register()
        self.scheduler.start()
        logger.info(f"Scheduler started with jobs: {', '.join(sorted(self.jobs))}")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
