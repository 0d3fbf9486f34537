"""Background scheduler for the pending-embedding sweep.

Wraps an APScheduler AsyncIOScheduler with one interval job that calls
ReindexService.requeue_unembedded(), so chunks whose event was dropped or
whose embedding failed are retried without an operator-triggered reindex.

Exports:
    ReindexScheduler: Interval job runner for the pending sweep.
"""

from __future__ import annotations

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
import structlog

from src.knowledge.reindex.service import ReindexService

logger = structlog.get_logger(__name__)

PENDING_SWEEP_JOB_ID = "knowledge_pending_sweep"


class ReindexScheduler:
    """Runs the pending-embedding sweep on a fixed interval.

    Args:
        reindex: Service whose ``requeue_unembedded`` is invoked.
        interval_minutes: Minutes between sweeps.
        batch_size: Maximum chunks republished per sweep.
    """

    def __init__(
        self,
        reindex: ReindexService,
        interval_minutes: int = 15,
        batch_size: int = 500,
    ) -> None:
        self._reindex = reindex
        self._interval_minutes = interval_minutes
        self._batch_size = batch_size
        self._scheduler: AsyncIOScheduler | None = None
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    def start(self) -> bool:
        """Start the scheduler on the running event loop. Returns False if already started."""
        if self._started:
            return False

        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            self._pending_sweep,
            trigger=IntervalTrigger(minutes=self._interval_minutes),
            id=PENDING_SWEEP_JOB_ID,
            name="Republish events for unembedded chunks",
            max_instances=1,
            coalesce=True,
            misfire_grace_time=300,
        )
        self._scheduler.start()
        self._started = True
        logger.info(
            "reindex_scheduler_started",
            jobs=["pending_sweep"],
            interval_minutes=self._interval_minutes,
        )
        return True

    def stop(self) -> None:
        """Shut down the scheduler without waiting for a running sweep."""
        if self._scheduler is not None and self._started:
            self._scheduler.shutdown(wait=False)
            logger.info("reindex_scheduler_stopped")
        self._started = False

    async def _pending_sweep(self) -> None:
        logger.info("pending_sweep_triggered")
        try:
            await self._reindex.requeue_unembedded(limit=self._batch_size)
        except Exception as exc:
            logger.error("pending_sweep_failed", error=str(exc))
