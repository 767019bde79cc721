from __future__ import annotations
"""Dispatch layer — decides where a submitted job runs.

inline  In-process asyncio task per job. The dispatcher owns every task
        handle and cancellation token, so jobs can be cancelled and are
        stopped cleanly on shutdown. Not durable: a crash abandons the
        job, which startup recovery then marks failed.
queue   The job is enqueued on Celery; a worker process runs it and the
        queue's retry/backoff policy supplies the resilience.
"""

import asyncio
import logging
from typing import Callable, Protocol

from talkinghead.config import Settings
from talkinghead.errors import DispatchError
from talkinghead.schemas.job import GenerationTask
from talkinghead.services.job_runner import JobRunner, RunOutcome
from talkinghead.services.job_store import JobStore
from talkinghead.services.poller import CancellationToken
from talkinghead.services.uploads import GenerationInputs

logger = logging.getLogger(__name__)


class Dispatcher(Protocol):
    mode: str

    async def submit(self, task: GenerationTask, inputs: GenerationInputs) -> None: ...

    def cancel(self, job_id: str, reason: str = ...) -> bool: ...

    async def shutdown(self) -> None: ...


class InlineDispatcher:
    """Runs each job as an asyncio task in this process."""

    mode = "inline"

    def __init__(self, runner: JobRunner):
        self.runner = runner
        self._jobs: dict[str, tuple[asyncio.Task[RunOutcome], CancellationToken]] = {}

    async def submit(self, task: GenerationTask, inputs: GenerationInputs) -> None:
        job_id = task.job_id
        if job_id in self._jobs:
            logger.warning("Job %s is already running in this process", job_id)
            return
        token = CancellationToken()
        handle = asyncio.create_task(
            self.runner.run(job_id, inputs, cancel=token), name=f"job-{job_id}"
        )
        self._jobs[job_id] = (handle, token)
        handle.add_done_callback(lambda t, jid=job_id: self._finished(jid, t))
        logger.info("Job %s started in-process (%d active)", job_id, len(self._jobs))

    def task_for(self, job_id: str) -> asyncio.Task[RunOutcome] | None:
        entry = self._jobs.get(job_id)
        return entry[0] if entry else None

    def active_jobs(self) -> list[str]:
        return list(self._jobs)

    def cancel(self, job_id: str, reason: str = "cancelled by request") -> bool:
        entry = self._jobs.get(job_id)
        if entry is None:
            return False
        entry[1].cancel(reason)
        logger.info("Job %s cancellation requested: %s", job_id, reason)
        return True

    async def shutdown(self, grace_seconds: float = 5.0) -> None:
        """Cancel every running job and wait for the runners to record it."""
        if not self._jobs:
            return
        logger.warning("Stopping %d in-process job(s)", len(self._jobs))
        handles = []
        for handle, token in list(self._jobs.values()):
            token.cancel("service shutting down")
            handles.append(handle)
        _, pending = await asyncio.wait(handles, timeout=grace_seconds)
        for handle in pending:
            handle.cancel()
        await asyncio.gather(*handles, return_exceptions=True)

    def _finished(self, job_id: str, handle: asyncio.Task[RunOutcome]) -> None:
        self._jobs.pop(job_id, None)
        if handle.cancelled():
            logger.warning("Job %s task was cancelled", job_id)
            return
        exc = handle.exception()
        if exc is not None:
            logger.error("Job %s task crashed: %s", job_id, exc, exc_info=exc)
            return
        outcome = handle.result()
        logger.info(
            "Job %s finished in-process: %s",
            job_id, outcome.status.value if outcome.status else "unknown",
        )


def _celery_enqueue(task: GenerationTask) -> str:
    from talkinghead.tasks.generation_task import run_generation_task

    result = run_generation_task.apply_async(
        args=[task.model_dump()], task_id=f"job-{task.job_id}"
    )
    return result.id


class QueueDispatcher:
    """Hands jobs to the durable Celery queue."""

    mode = "queue"

    def __init__(
        self,
        store: JobStore,
        enqueue: Callable[[GenerationTask], str] | None = None,
    ):
        self.store = store
        self._enqueue = enqueue or _celery_enqueue

    async def submit(self, task: GenerationTask, inputs: GenerationInputs) -> None:
        try:
            message_id = await asyncio.to_thread(self._enqueue, task)
        except Exception as exc:
            message = f"Could not enqueue job: {exc}"
            logger.error("Job %s: %s", task.job_id, message)
            try:
                await self.store.fail(task.job_id, message)
            except Exception:
                logger.warning("Failed to mark job %s as failed", task.job_id, exc_info=True)
            raise DispatchError(message) from exc
        logger.info("Job %s enqueued as %s", task.job_id, message_id)

    def cancel(self, job_id: str, reason: str = "cancelled by request") -> bool:
        # Queued jobs run in another process; no cancellation hook yet
        return False

    async def shutdown(self) -> None:
        return None


def build_dispatcher(settings: Settings, store: JobStore, runner: JobRunner | None) -> Dispatcher:
    """Pick the execution strategy configured by DISPATCH_MODE."""
    if settings.DISPATCH_MODE == "queue":
        return QueueDispatcher(store)
    if runner is None:
        raise DispatchError("In-process dispatch needs a configured provider client")
    return InlineDispatcher(runner)
