from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from datetime import datetime, timezone

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger


logger = logging.getLogger("subly.renewal.scheduler")

RENEWAL_JOB_ID = "subscription_renewal"


class RenewalScheduler:
    """Process-wide timer firing the renewal job once at start and then every interval.

    ``start`` is idempotent: a second call while running leaves the existing timer alone.
    """

    def __init__(self, job: Callable[[], object], *, interval_minutes: int) -> None:
        self._job = job
        self._interval_minutes = interval_minutes
        self._scheduler: BackgroundScheduler | None = None
        self._guard = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    @property
    def scheduler(self) -> BackgroundScheduler | None:
        return self._scheduler

    def start(self) -> bool:
        with self._guard:
            if self._scheduler is not None:
                logger.info("renewal_scheduler_already_started", extra={"interval_minutes": self._interval_minutes})
                return False

            scheduler = BackgroundScheduler(timezone=timezone.utc)
            scheduler.add_job(
                self._job,
                IntervalTrigger(minutes=self._interval_minutes, timezone=timezone.utc),
                id=RENEWAL_JOB_ID,
                next_run_time=datetime.now(timezone.utc),
                max_instances=1,
                coalesce=True,
                replace_existing=True,
            )
            scheduler.start()
            self._scheduler = scheduler
            logger.info("renewal_scheduler_started", extra={"interval_minutes": self._interval_minutes})
            return True

    def shutdown(self, wait: bool = False) -> None:
        with self._guard:
            if self._scheduler is None:
                return
            self._scheduler.shutdown(wait=wait)
            self._scheduler = None
            logger.info("renewal_scheduler_stopped")
