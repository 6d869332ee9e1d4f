"""APScheduler wrapper triggering the daily collection explicitly."""

from __future__ import annotations

from typing import Callable

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from ..logging_conf import configure_logging

DAILY_COLLECTION_JOB = "collector::daily"


def parse_time_of_day(value: str) -> tuple[int, int]:
    hour_text, _, minute_text = value.strip().partition(":")
    hour, minute = int(hour_text), int(minute_text or 0)
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ValueError(f"Invalid time of day: {value!r}")
    return hour, minute


class APSchedulerAdapter:
    """Manage the APScheduler job that runs the collector."""

    def __init__(self, scheduler: BackgroundScheduler | None = None) -> None:
        self.scheduler = scheduler or BackgroundScheduler()
        self.logger = configure_logging().bind(component="scheduler")
        self.started = False

    def start(self) -> None:
        if not self.started:
            self.scheduler.start()
            self.started = True
            self.logger.info("apscheduler_started")

    def shutdown(self) -> None:
        if self.started:
            self.scheduler.shutdown(wait=False)
            self.started = False
            self.logger.info("apscheduler_stopped")

    def schedule_daily(self, callback: Callable[[], object], time_of_day: str) -> None:
        hour, minute = parse_time_of_day(time_of_day)
        trigger = CronTrigger(hour=hour, minute=minute)
        self.scheduler.add_job(
            callback,
            trigger=trigger,
            id=DAILY_COLLECTION_JOB,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.logger.info("job_scheduled", job=DAILY_COLLECTION_JOB, time=f"{hour:02d}:{minute:02d}")

    def cancel_daily(self) -> None:
        try:
            self.scheduler.remove_job(DAILY_COLLECTION_JOB)
        except Exception:  # noqa: BLE001
            self.logger.warning("job_remove_failed", job=DAILY_COLLECTION_JOB)

    def list_jobs(self) -> list[dict]:
        jobs = []
        for job in self.scheduler.get_jobs():
            jobs.append(
                {
                    "id": job.id,
                    "next_run_time": getattr(job, "next_run_time", None),
                    "trigger": str(job.trigger),
                }
            )
        return jobs


__all__ = ["APSchedulerAdapter", "DAILY_COLLECTION_JOB", "parse_time_of_day"]
