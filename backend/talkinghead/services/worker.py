from __future__ import annotations
"""Worker entry point shared by the Celery task and the HTTP worker callback.

A delivery loads the stored input artifacts, runs the job synchronously and
turns the RunOutcome into an ack/nack decision:

  ok         → ack (job completed, or was already terminal)
  retryable  → the final state could not be persisted (or the job never
               started because of an infrastructure error); redelivery is
               worth it, and a redelivered job resumes from its video id
  otherwise  → failure surfaced, but a redelivery would be a no-op
"""

import logging

import httpx

from talkinghead.config import Settings
from talkinghead.database import get_session_factory
from talkinghead.errors import ConfigurationError, InputValidationError, JobNotFound
from talkinghead.models.job import JobStatus
from talkinghead.schemas.job import GenerationTask, WorkerOutcome
from talkinghead.services.job_runner import JobRunner, RunOutcome
from talkinghead.services.job_store import JobStore
from talkinghead.services.uploads import GenerationInputs, load_artifact
from talkinghead.services.visionstory_client import VisionStoryClient

logger = logging.getLogger(__name__)


def to_worker_outcome(outcome: RunOutcome) -> WorkerOutcome:
    status = outcome.status.value if outcome.status else None
    if outcome.status is None:
        # Unknown job: nothing will ever make this delivery succeed.
        # Unreadable store: the job was not touched, try again later.
        return WorkerOutcome(
            job_id=outcome.job_id,
            ok=False,
            error_message=outcome.error_message,
            retryable=outcome.error_type != JobNotFound.__name__,
        )
    if outcome.skipped:
        return WorkerOutcome(
            job_id=outcome.job_id,
            ok=True,
            status=status,
            video_url=outcome.video_url,
            error_message=outcome.error_message,
        )
    return WorkerOutcome(
        job_id=outcome.job_id,
        ok=outcome.status == JobStatus.COMPLETED and outcome.persisted,
        status=status,
        video_url=outcome.video_url,
        error_message=outcome.error_message,
        retryable=not outcome.persisted,
    )


async def process_generation_task(
    task: GenerationTask, runner: JobRunner, media_volume: str
) -> WorkerOutcome:
    """Run one delivered task to completion with an already-built runner."""
    logger.info("Worker received job %s", task.job_id)
    try:
        inputs = GenerationInputs(
            image=load_artifact(
                media_volume, task.image_path, task.image_filename, task.image_mime_type
            ),
            audio=load_artifact(
                media_volume, task.audio_path, task.audio_filename, task.audio_mime_type
            ),
        )
    except (OSError, InputValidationError) as exc:
        message = f"Input artifacts unavailable: {exc}"
        logger.error("Job %s: %s", task.job_id, message)
        failed = await runner.fail(task.job_id, message)
        return WorkerOutcome(
            job_id=task.job_id,
            ok=False,
            status=JobStatus.FAILED.value if failed else None,
            error_message=message,
        )

    outcome = await runner.run(task.job_id, inputs)
    return to_worker_outcome(outcome)


async def handle_generation_task(
    task: GenerationTask,
    settings: Settings,
    store: JobStore | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> WorkerOutcome:
    """Build client + store + runner from settings and process one task."""
    store = store or JobStore(get_session_factory())
    try:
        client = VisionStoryClient.from_settings(settings, http_client=http_client)
    except ConfigurationError as exc:
        logger.error("Job %s cannot run: %s", task.job_id, exc)
        await store.fail(task.job_id, str(exc))
        return WorkerOutcome(job_id=task.job_id, ok=False, error_message=str(exc))

    async with client:
        runner = JobRunner.from_settings(settings, store, client)
        return await process_generation_task(task, runner, settings.MEDIA_VOLUME)
