from __future__ import annotations
"""Durable job records — create, partial update, point lookup.

Updates are last-writer-wins per field set, except that a job in a terminal
status is never written again: the UPDATE itself carries the guard, so a
duplicate delivery or a concurrent recovery pass cannot undo a result.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from talkinghead.errors import JobFinished, JobNotFound
from talkinghead.models.job import TERMINAL_STATUSES, Job, JobStatus, new_job_id
from talkinghead.services import progress as job_progress

logger = logging.getLogger(__name__)

_TERMINAL_VALUES = sorted(s.value for s in TERMINAL_STATUSES)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _encode(fields: dict[str, Any]) -> dict[str, Any]:
    """Serialize structured fields into their column representation."""
    values = dict(fields)
    if "progress" in values:
        prog = values["progress"]
        if isinstance(prog, job_progress.Progress):
            prog = prog.to_dict()
        values["progress"] = json.dumps(prog) if prog is not None else None
    if "labels" in values and values["labels"] is not None:
        values["labels"] = json.dumps(list(values["labels"]))
    if "status" in values and isinstance(values["status"], JobStatus):
        values["status"] = values["status"].value
    return values


class JobStore:
    """Async SQLAlchemy-backed job repository."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def create(self, **initial_fields: Any) -> str:
        """Insert a new pending job and return its id."""
        now = _utcnow()
        values = {
            "status": JobStatus.PENDING,
            "progress": job_progress.queued(),
            **initial_fields,
        }
        job = Job(id=new_job_id(), created_at=now, updated_at=now, **_encode(values))
        async with self._session_factory() as session:
            session.add(job)
            await session.commit()
        logger.info("Job %s created", job.id)
        return job.id

    async def update(self, job_id: str, **fields: Any) -> None:
        """Merge ``fields`` into a non-terminal job record, stamping ``updated_at``.

        Raises:
            JobNotFound: no such job.
            JobFinished: the job is already completed or failed.
        """
        values = _encode(fields)
        values["updated_at"] = _utcnow()
        async with self._session_factory() as session:
            result = await session.execute(
                update(Job)
                .where(Job.id == job_id, Job.status.notin_(_TERMINAL_VALUES))
                .values(**values)
            )
            await session.commit()
        if result.rowcount == 0:
            job = await self.get(job_id)
            if job is None:
                raise JobNotFound(f"Job {job_id} not found")
            raise JobFinished(f"Job {job_id} is already {job.status}", job.status)

    async def get(self, job_id: str) -> Job | None:
        async with self._session_factory() as session:
            return await session.get(Job, job_id)

    async def list_by_status(self, *statuses: JobStatus) -> list[Job]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Job)
                .where(Job.status.in_([s.value for s in statuses]))
                .order_by(Job.created_at)
            )
            return list(result.scalars().all())

    async def fail_interrupted(self, message: str) -> int:
        """Fail every job left pending/processing by a previous process.

        Only meaningful for in-process dispatch, where nothing will ever
        resume those jobs. Returns the number of jobs failed.
        """
        failed = 0
        for job in await self.list_by_status(JobStatus.PENDING, JobStatus.PROCESSING):
            if await self._fail_job(job, message):
                logger.warning("Job %s failed by startup recovery (was %s)", job.id, job.status)
                failed += 1
        return failed

    async def fail(self, job_id: str, message: str) -> bool:
        """Move a non-terminal job to failed, keeping the step it stopped at."""
        job = await self.get(job_id)
        if job is None or job.is_terminal:
            return False
        return await self._fail_job(job, message)

    async def _fail_job(self, job: Job, message: str) -> bool:
        job_progress.check_transition(job.status, JobStatus.FAILED)
        try:
            await self.update(
                job.id,
                status=JobStatus.FAILED,
                error_message=message,
                video_url=None,
                completed_at=_utcnow(),
                progress=job_progress.failed_at(
                    job_progress.Progress.from_dict(job.progress_data), message
                ),
            )
        except JobFinished as exc:
            logger.info("Job %s finished before it could be failed (%s)", job.id, exc.status)
            return False
        return True
