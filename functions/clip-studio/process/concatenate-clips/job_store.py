import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from dynamodb_helper import DynamoDBHelper
from exceptions import DynamoDBError
from schemas import ProcessingJob, ProgressEvent, ProgressPhase

logger = logging.getLogger(__name__)

# Every field except the key may be rewritten by save()
_MUTABLE_FIELDS = (
    "clips",
    "status",
    "phase",
    "progress",
    "temporary_asset_ids",
    "temporary_asset_kinds",
    "strategy",
    "degraded",
    "public_url",
    "filename",
    "error",
)

_PHASE_RANK = {
    ProgressPhase.PENDING: 0,
    ProgressPhase.RESOLVING: 1,
    ProgressPhase.DOWNLOADING: 2,
    ProgressPhase.TRIMMING: 3,
    ProgressPhase.CONCATENATING: 4,
    ProgressPhase.RENDERING: 5,
    ProgressPhase.FINALIZING: 6,
    ProgressPhase.COMPLETED: 7,
    ProgressPhase.FAILED: 7,
}


class JobStore:
    """ProcessingJob records, one DynamoDB item per job keyed by `job_id`."""

    def __init__(self, db: DynamoDBHelper):
        self.db = db

    @staticmethod
    def _to_item(job: ProcessingJob) -> Dict[str, Any]:
        item = job.model_dump(mode="json")
        # DynamoDB rejects empty sets
        item["temporary_asset_ids"] = sorted(job.temporary_asset_ids)
        return item

    @staticmethod
    def _from_item(item: Dict[str, Any]) -> ProcessingJob:
        return ProcessingJob.model_validate(item)

    def create(self, job: ProcessingJob) -> ProcessingJob:
        self.db.put_item(self._to_item(job))
        logger.info(f"Created job record {job.job_id}")
        return job

    def load(self, job_id: str) -> Optional[ProcessingJob]:
        item = self.db.get_item({"job_id": job_id})
        if item is None:
            return None
        return self._from_item(item)

    def save(self, job: ProcessingJob, fields: Iterable[str] = None) -> None:
        job.updated_at = datetime.now(timezone.utc).isoformat()
        item = self._to_item(job)
        names = list(fields) if fields else list(_MUTABLE_FIELDS)
        updates = {name: item[name] for name in names}
        updates["updated_at"] = item["updated_at"]
        self.db.update_item({"job_id": job.job_id}, updates)

    def request_cancellation(self, job_id: str) -> Optional[ProcessingJob]:
        """Flag a running job for cancellation. Returns None for unknown jobs."""
        job = self.load(job_id)
        if job is None:
            return None
        if job.is_terminal:
            logger.info(f"Job {job_id} already {job.status.value}. Ignoring cancellation.")
            return job
        self.db.update_item({"job_id": job_id}, {"cancel_requested": True})
        job.cancel_requested = True
        logger.info(f"Cancellation requested for job {job_id}")
        return job

    def is_cancel_requested(self, job_id: str) -> bool:
        item = self.db.get_item({"job_id": job_id})
        return bool(item and item.get("cancel_requested"))


class ProgressTracker:
    """
    Turns phase events from the pipeline into the client-facing progress
    contract: percent and phase never move backwards, and every accepted
    change is written to the job record.
    """

    def __init__(self, job: ProcessingJob, store: JobStore = None,
                 on_progress: Callable[[ProgressEvent], Awaitable[None]] = None):
        self.job = job
        self.store = store
        self.on_progress = on_progress
        self.events: List[ProgressEvent] = []

    async def _persist(self) -> None:
        if self.store is None:
            return
        try:
            await asyncio.to_thread(self.store.save, self.job, ("phase", "progress"))
        except DynamoDBError as e:
            logger.warning(f"Could not persist progress for job {self.job.job_id}: {e}")

    async def emit(self, phase: ProgressPhase, percent: int) -> None:
        percent = max(self.job.progress, min(100, max(0, int(percent))))
        if _PHASE_RANK[phase] < _PHASE_RANK[self.job.phase]:
            phase = self.job.phase

        if phase == self.job.phase and percent == self.job.progress:
            return

        self.job.phase = phase
        self.job.progress = percent
        event = ProgressEvent(phase=phase, percent=percent)
        self.events.append(event)
        logger.info(f"Job {self.job.job_id}: {phase.value} {percent}%")

        await self._persist()
        if self.on_progress is not None:
            await self.on_progress(event)

    async def complete(self) -> None:
        await self.emit(ProgressPhase.COMPLETED, 100)

    async def fail(self) -> None:
        """Failed keeps the last percentage; the bar just stops."""
        if self.job.phase == ProgressPhase.FAILED:
            return
        self.job.phase = ProgressPhase.FAILED
        event = ProgressEvent(phase=ProgressPhase.FAILED, percent=self.job.progress)
        self.events.append(event)
        if self.on_progress is not None:
            await self.on_progress(event)
