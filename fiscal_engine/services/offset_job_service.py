"""
Offset Job Service - queue of deferred offset receipts

Stored as one document: fiscal/offset_jobs.json = {"jobs": [...]}.
Removal re-reads the queue so jobs enqueued during a worker pass survive.
"""
from typing import Iterable, List
import logging

from pydantic import ValidationError

from fiscal_engine.schemas.sale import OffsetJob
from fiscal_engine.storage import BlobStore

logger = logging.getLogger(__name__)


class OffsetJobStore:
    JOBS_KEY = "fiscal/offset_jobs.json"

    def __init__(self, store: BlobStore):
        self.store = store

    async def load(self) -> List[OffsetJob]:
        data = await self.store.get_json(self.JOBS_KEY, default={}) or {}
        jobs = []
        for raw in data.get("jobs", []) if isinstance(data, dict) else []:
            try:
                jobs.append(OffsetJob.model_validate(raw))
            except ValidationError as e:
                logger.warning(f"Skipping unreadable offset job {raw.get('id')}: {e.error_count()} errors")
        return jobs

    async def save(self, jobs: List[OffsetJob]) -> None:
        await self.store.put_json(self.JOBS_KEY, {"jobs": [j.model_dump(mode="json") for j in jobs]})

    async def enqueue(self, job: OffsetJob) -> bool:
        """Add the job unless one with the same id is queued"""
        jobs = await self.load()
        if any(j.id == job.id for j in jobs):
            return False
        jobs.append(job)
        await self.save(jobs)
        logger.info(f"Offset job {job.id} queued, due {job.due_at.isoformat()}")
        return True

    async def remove(self, job_ids: Iterable[str]) -> int:
        ids = set(job_ids)
        jobs = await self.load()
        remaining = [j for j in jobs if j.id not in ids]
        removed = len(jobs) - len(remaining)
        if removed:
            await self.save(remaining)
        return removed
