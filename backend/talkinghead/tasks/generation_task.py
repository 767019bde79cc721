from __future__ import annotations
"""Celery task for queue-dispatched generation jobs.

The task:
1. Rebuilds the GenerationTask from the JSON message
2. Runs the job synchronously (client + store + runner per delivery)
3. Acks when the outcome is final, retries with exponential backoff when
   the worker could not reach a persisted final state
"""

import logging

from celery import shared_task

from talkinghead.config import get_settings
from talkinghead.schemas.job import GenerationTask, WorkerOutcome
from talkinghead.services.worker import handle_generation_task
from talkinghead.tasks import run_async

logger = logging.getLogger(__name__)
settings = get_settings()


@shared_task(
    bind=True,
    acks_late=True,
    reject_on_worker_lost=True,
    max_retries=settings.TASK_MAX_RETRIES,
    default_retry_delay=settings.TASK_RETRY_DELAY,
)
def run_generation_task(self, payload: dict):
    """Run one talking-head job delivered by the queue."""
    task = GenerationTask.model_validate(payload)
    try:
        outcome = run_async(handle_generation_task(task, get_settings()))
    except Exception as exc:
        logger.error("Worker crashed on job %s: %s", task.job_id, exc, exc_info=True)
        outcome = WorkerOutcome(
            job_id=task.job_id, ok=False, error_message=str(exc)[:500], retryable=True
        )

    if outcome.ok or not outcome.retryable:
        if not outcome.ok:
            logger.warning("Job %s finished unsuccessfully: %s", task.job_id, outcome.error_message)
        return outcome.model_dump()

    if self.request.retries >= self.max_retries:
        logger.error(
            "Job %s giving up after %d retries: %s",
            task.job_id, self.request.retries, outcome.error_message,
        )
        return outcome.model_dump()

    countdown = settings.TASK_RETRY_DELAY * (2 ** self.request.retries)
    logger.warning(
        "Job %s will be retried in %ds (attempt %d/%d)",
        task.job_id, countdown, self.request.retries + 1, self.max_retries,
    )
    raise self.retry(countdown=countdown)
