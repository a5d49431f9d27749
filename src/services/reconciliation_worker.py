"""Background drain of the reconciliation outbox."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

from src.core.exceptions import InventoryAdjustmentError, ReconciliationError
from src.models.reconciliation_job import JobStatus

if TYPE_CHECKING:
    from src.core.config import Settings
    from src.services.order_store import OrderStore
    from src.services.reconciliation_service import ReconciliationEngine

logger = logging.getLogger(__name__)


@dataclass
class WorkerConfig:
    """Configuration for the outbox drain loop."""

    interval_seconds: float = 10.0
    batch_size: int = 25
    max_attempts: int = 8
    lease_seconds: int = 300

    @classmethod
    def from_settings(cls, settings: Settings) -> "WorkerConfig":
        """Create config from application settings."""
        return cls(
            interval_seconds=settings.reconciliation_worker_interval_seconds,
            batch_size=settings.reconciliation_job_batch_size,
            max_attempts=settings.reconciliation_job_max_attempts,
            lease_seconds=settings.reconciliation_job_lease_seconds,
        )


@dataclass
class DrainStats:
    """Counts from one drain pass."""

    requeued: int = 0
    claimed: int = 0
    completed: int = 0
    retried: int = 0
    dead: int = 0
    unacknowledged: int = 0


class ReconciliationWorker:
    """Replays queued secondary effects until they succeed or run out of attempts."""

    def __init__(
        self,
        store: OrderStore,
        engine: ReconciliationEngine,
        config: WorkerConfig | None = None,
    ) -> None:
        self.store = store
        self.engine = engine
        self.config = config or WorkerConfig()
        self._task: asyncio.Task | None = None

    async def start(self) -> None:
        """Start the background drain task."""
        if self._task is None:
            self._task = asyncio.create_task(self._run_loop())
            logger.info("Reconciliation worker started (interval=%ss)", self.config.interval_seconds)

    async def stop(self) -> None:
        """Stop the background drain task."""
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            logger.info("Reconciliation worker stopped")

    async def _run_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.interval_seconds)
            try:
                stats = await self.run_once()
            except ReconciliationError as e:
                logger.error("Error processing reconciliation jobs: %s", e)
                continue
            except Exception:
                logger.exception("Unexpected error in reconciliation worker pass")
                continue
            if stats.claimed:
                logger.info(
                    "Reconciliation pass: %d claimed, %d completed, %d retried, %d dead, %d unacknowledged",
                    stats.claimed,
                    stats.completed,
                    stats.retried,
                    stats.dead,
                    stats.unacknowledged,
                )

    async def run_once(self) -> DrainStats:
        """Run a single drain pass.

        Returns:
            DrainStats: What the pass did.

        Raises:
            TransientStoreError: The queue itself could not be read or claimed.
        """
        stats = DrainStats()

        cutoff = datetime.now(timezone.utc) - timedelta(seconds=self.config.lease_seconds)
        stats.requeued = self.store.requeue_stale_jobs(cutoff)
        if stats.requeued:
            logger.warning("Requeued %d reconciliation jobs with expired leases", stats.requeued)

        jobs = self.store.claim_jobs(self.config.batch_size)
        stats.claimed = len(jobs)

        for job in jobs:
            status = await self._process(job)
            if status is JobStatus.COMPLETED:
                stats.completed += 1
            elif status is JobStatus.DEAD:
                stats.dead += 1
            elif status is JobStatus.PROCESSING:
                stats.unacknowledged += 1
            else:
                stats.retried += 1

        return stats

    async def _process(self, job: dict[str, Any]) -> JobStatus:
        try:
            await self.engine.replay_job(job)
        except InventoryAdjustmentError as e:
            return self._release(job, str(e), {"lines": e.remaining})
        except ReconciliationError as e:
            return self._release(job, str(e))
        except Exception as e:
            logger.exception("Unexpected error replaying %s job for order %s", job.get("job_type"), job.get("order_id"))
            return self._release(job, f"{type(e).__name__}: {e}")

        try:
            self.store.complete_job(job["id"])
        except ReconciliationError as e:
            # Left PROCESSING; requeued and replayed once its lease expires.
            logger.warning("Could not mark %s job for order %s completed: %s", job["job_type"], job["order_id"], e)
            return JobStatus.PROCESSING

        logger.info("Completed %s job for order %s", job["job_type"], job["order_id"])
        return JobStatus.COMPLETED

    def _release(self, job: dict[str, Any], error: str, payload: dict[str, Any] | None = None) -> JobStatus:
        job_type, order_id = job.get("job_type"), job.get("order_id")
        try:
            status = self.store.release_job(job, error, self.config.max_attempts, payload)
        except ReconciliationError as e:
            logger.warning("Could not release %s job for order %s: %s", job_type, order_id, e)
            return JobStatus.PROCESSING

        if status is JobStatus.DEAD:
            logger.error(
                "Giving up on %s job for order %s after %d attempts: %s",
                job_type,
                order_id,
                self.config.max_attempts,
                error,
            )
        else:
            logger.warning("Retrying %s job for order %s later: %s", job_type, order_id, error)
        return status
