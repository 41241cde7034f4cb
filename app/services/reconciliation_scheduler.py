# app/services/reconciliation_scheduler.py
from __future__ import annotations

import logging
from typing import Callable, List, Optional

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

logger = logging.getLogger(__name__)

_JOB_PREFIX = "reconcile:"


class ReconciliationScheduler:
    """
    One background polling job per in-progress batch.

    The orchestrator registers a job when a batch starts calling and
    cancels it when the batch completes or is deleted. Jobs never overlap
    with themselves (`max_instances=1`) and missed runs are coalesced.
    """

    def __init__(
        self,
        interval_seconds: int = 30,
        scheduler: Optional[BackgroundScheduler] = None,
    ):
        self.interval_seconds = interval_seconds
        self.scheduler = scheduler or BackgroundScheduler()

    def start(self) -> None:
        if not self.scheduler.running:
            self.scheduler.start()
            logger.info("Reconciliation scheduler started")

    def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Reconciliation scheduler stopped")

    def schedule(self, batch_id: str, func: Callable[[], None]) -> None:
        if not self.scheduler.running:
            # replace_existing is only honoured once the scheduler runs
            self.cancel(batch_id)
        self.scheduler.add_job(
            func=func,
            trigger=IntervalTrigger(seconds=self.interval_seconds),
            id=_JOB_PREFIX + batch_id,
            name=f"Reconcile batch {batch_id}",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        logger.debug("Scheduled reconciliation", extra={"batch_id": batch_id})

    def cancel(self, batch_id: str) -> None:
        try:
            self.scheduler.remove_job(_JOB_PREFIX + batch_id)
        except JobLookupError:
            return
        logger.debug("Cancelled reconciliation", extra={"batch_id": batch_id})

    def scheduled_batch_ids(self) -> List[str]:
        return [
            job.id[len(_JOB_PREFIX):]
            for job in self.scheduler.get_jobs()
            if job.id.startswith(_JOB_PREFIX)
        ]
