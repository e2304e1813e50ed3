"""Background job tracking for backup and restore operations."""
import asyncio
import os
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from .._utils import logger
from .lock import OperationLease
from .models import JobRecord, JobState, JobStatus, OperationKind

Work = Callable[[OperationLease], Awaitable[Optional[Dict[str, Any]]]]


class JobRunner:
    """Runs lease-holding work on asyncio tasks and tracks the outcome.

    Records live in memory; with a Redis client they are mirrored under
    `backup_job:{job_id}` with a TTL so other tooling can inspect them.
    """

    def __init__(self, redis_client: Optional[redis.Redis] = None, max_jobs: int = 1000):
        self.redis = redis_client
        # Configurable TTL via environment variable (default: 7 days)
        self.job_ttl = int(os.getenv("REDIS_JOB_TTL", "604800"))
        self.max_jobs = max_jobs
        self._jobs: Dict[str, JobRecord] = {}
        self._tasks: Dict[str, asyncio.Task] = {}

    async def submit(self, kind: OperationKind, lease: OperationLease, work: Work) -> JobRecord:
        """Schedule `work(lease)` and return the pending record immediately.

        The lease is released when the work finishes, fails or is cancelled.
        """
        job_id = str(uuid.uuid4())
        record = JobRecord(
            job_id=job_id,
            kind=kind,
            status=JobStatus.PENDING,
            created_at=datetime.now(timezone.utc),
        )
        self._jobs[job_id] = record
        self._prune()

        try:
            await self._persist(record)
            task = asyncio.create_task(self._run(job_id, lease, work), name=f"{kind.value}-{job_id}")
        except BaseException:
            lease.release()
            self._jobs.pop(job_id, None)
            raise

        self._tasks[job_id] = task
        task.add_done_callback(lambda t: self._on_done(job_id, lease, t))

        logger.info(f"Created {kind.value} job {job_id}")
        return record.model_copy()

    async def _run(self, job_id: str, lease: OperationLease, work: Work) -> None:
        record = self._jobs[job_id]

        try:
            async with lease:
                record.status = JobStatus.PROCESSING
                await self._persist(record)
                result = await work(lease)
        except asyncio.CancelledError:
            record.status = JobStatus.FAILED
            record.error = "Cancelled"
            raise
        except Exception as e:
            logger.error(f"Job {job_id} failed: {e}")
            record.status = JobStatus.FAILED
            record.error = str(e) or type(e).__name__
        else:
            record.status = JobStatus.COMPLETED
            record.result = result or {}
        finally:
            record.completed_at = datetime.now(timezone.utc)
            await self._persist(record)

        logger.info(f"Updated job {job_id} status to {record.status.value}")

    def _on_done(self, job_id: str, lease: OperationLease, task: asyncio.Task) -> None:
        self._tasks.pop(job_id, None)
        if lease.released:
            return

        # Cancelled before the task body ran
        lease.finish(
            JobState.FAILED,
            f"{lease.kind.value.capitalize()} failed: Cancelled",
            error="Cancelled",
        )
        lease.release()
        record = self._jobs.get(job_id)
        if record is not None and record.completed_at is None:
            record.status = JobStatus.FAILED
            record.error = "Cancelled"
            record.completed_at = datetime.now(timezone.utc)
        logger.warning(f"Job {job_id} was cancelled before it started")

    def _prune(self) -> None:
        """Forget finished jobs older than the TTL, then the oldest finished
        ones while more than `max_jobs` records are kept."""
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=self.job_ttl)
        finished = [job_id for job_id, record in self._jobs.items() if record.completed_at is not None]
        expired = [job_id for job_id in finished if self._jobs[job_id].completed_at < cutoff]

        excess = len(self._jobs) - len(expired) - self.max_jobs
        if excess > 0:
            expired += [job_id for job_id in finished if job_id not in expired][:excess]

        for job_id in expired:
            del self._jobs[job_id]

    async def _persist(self, record: JobRecord) -> None:
        if not self.redis:
            return
        try:
            await self.redis.setex(
                f"backup_job:{record.job_id}",
                self.job_ttl,
                record.model_dump_json(),
            )
        except RedisError as e:
            logger.warning(f"Failed to mirror job {record.job_id} to Redis: {e}")

    def get_job(self, job_id: str) -> Optional[JobRecord]:
        record = self._jobs.get(job_id)
        return record.model_copy() if record else None

    def list_jobs(self, limit: int = 100) -> List[JobRecord]:
        # Submission order, newest first
        jobs = list(self._jobs.values())[::-1]
        return [job.model_copy() for job in jobs[:limit]]

    async def wait(self, job_id: str) -> Optional[JobRecord]:
        """Wait for a job to finish and return its final record."""
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.shield(task)
        return self.get_job(job_id)

    async def drain(self) -> None:
        """Wait for every running job; used on shutdown."""
        tasks = list(self._tasks.values())
        if tasks:
            logger.info(f"Waiting for {len(tasks)} running job(s)")
            await asyncio.gather(*tasks, return_exceptions=True)
