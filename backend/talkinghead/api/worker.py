from __future__ import annotations
"""Worker callback — push-style queues deliver a GenerationTask over HTTP.

Answers 200 when the delivery should be acknowledged and 500 when the
queue should consider it failed (and redeliver per its own policy).
"""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from talkinghead.api.deps import get_job_store, get_provider_client
from talkinghead.config import Settings, get_settings
from talkinghead.schemas.job import GenerationTask, WorkerOutcome
from talkinghead.services.job_runner import JobRunner
from talkinghead.services.job_store import JobStore
from talkinghead.services.visionstory_client import VisionStoryClient
from talkinghead.services.worker import handle_generation_task, process_generation_task

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/worker/generate", response_model=WorkerOutcome)
async def worker_generate(
    task: GenerationTask,
    settings: Settings = Depends(get_settings),
    store: JobStore = Depends(get_job_store),
    client: VisionStoryClient | None = Depends(get_provider_client),
):
    if client is None:
        # Fails the job with the configuration error
        outcome = await handle_generation_task(task, settings, store=store)
    else:
        runner = JobRunner.from_settings(settings, store, client)
        outcome = await process_generation_task(task, runner, settings.MEDIA_VOLUME)

    if not outcome.ok:
        logger.warning(
            "Worker delivery for job %s not acknowledged: %s",
            task.job_id, outcome.error_message,
        )
    return JSONResponse(outcome.model_dump(), status_code=200 if outcome.ok else 500)
