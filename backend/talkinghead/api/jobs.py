from __future__ import annotations
"""Job API — submit, query, cancel, and the synchronous generate variant."""

import asyncio
import logging

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from fastapi.responses import JSONResponse

from talkinghead.api.deps import get_dispatcher, get_job_store, get_provider_client
from talkinghead.config import Settings, get_settings
from talkinghead.errors import ConfigurationError, DispatchError, InputValidationError
from talkinghead.models.job import JobStatus
from talkinghead.schemas.job import GenerationTask, JobRead, JobSubmitResponse
from talkinghead.services.dispatch import Dispatcher
from talkinghead.services.job_runner import JobRunner
from talkinghead.services.job_store import JobStore
from talkinghead.services.poller import interactive_profile
from talkinghead.services.uploads import (
    GenerationInputs,
    save_artifact,
    too_large,
    validate_artifact,
)
from talkinghead.services.visionstory_client import GenerationOptions, VisionStoryClient

logger = logging.getLogger(__name__)
router = APIRouter()

UPLOAD_CHUNK_SIZE = 1024 * 1024


async def _read_limited(upload: UploadFile, kind: str, max_bytes: int) -> bytes:
    """Read an upload, giving up as soon as it passes ``max_bytes``."""
    if upload.size is not None and upload.size > max_bytes:
        raise too_large(kind, max_bytes)
    data = bytearray()
    while True:
        chunk = await upload.read(UPLOAD_CHUNK_SIZE)
        if not chunk:
            return bytes(data)
        data.extend(chunk)
        if len(data) > max_bytes:
            raise too_large(kind, max_bytes)


async def _read_inputs(
    image: UploadFile | None, audio: UploadFile | None, settings: Settings
) -> GenerationInputs:
    """Validate both uploads before anything is stored or created."""
    if image is None or audio is None:
        raise InputValidationError("image and audio files are both required.")
    image_data = await _read_limited(image, "image", settings.MAX_UPLOAD_BYTES)
    audio_data = await _read_limited(audio, "audio", settings.MAX_UPLOAD_BYTES)
    return GenerationInputs(
        image=validate_artifact(
            "image", image.filename, image_data, settings.MAX_UPLOAD_BYTES, image.content_type
        ),
        audio=validate_artifact(
            "audio", audio.filename, audio_data, settings.MAX_UPLOAD_BYTES, audio.content_type
        ),
    )


def _parse_labels(labels: str | None) -> list[str]:
    if not labels:
        return []
    return [label.strip() for label in labels.split(",") if label.strip()]


async def _accept_submission(
    image: UploadFile | None,
    audio: UploadFile | None,
    user_id: str | None,
    labels: str | None,
    settings: Settings,
    store: JobStore,
) -> tuple[GenerationTask, GenerationInputs]:
    """Validate, store the inputs, create the job. No job exists on error."""
    try:
        inputs = await _read_inputs(image, audio, settings)
        settings.require_api_key()
    except InputValidationError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    except ConfigurationError as e:
        logger.error("Submission rejected: %s", e)
        raise HTTPException(status_code=500, detail=str(e))

    await asyncio.to_thread(save_artifact, settings.MEDIA_VOLUME, inputs.image)
    await asyncio.to_thread(save_artifact, settings.MEDIA_VOLUME, inputs.audio)

    job_id = await store.create(
        user_id=user_id,
        labels=_parse_labels(labels),
        image_filename=inputs.image.filename,
        audio_filename=inputs.audio.filename,
    )
    task = GenerationTask(
        job_id=job_id,
        image_path=inputs.image.path,
        audio_path=inputs.audio.path,
        image_filename=inputs.image.filename,
        audio_filename=inputs.audio.filename,
        image_mime_type=inputs.image.mime_type,
        audio_mime_type=inputs.audio.mime_type,
    )
    return task, inputs


@router.post("/jobs", response_model=JobSubmitResponse, status_code=202)
async def submit_job(
    image: UploadFile | None = File(default=None),
    audio: UploadFile | None = File(default=None),
    user_id: str | None = Form(default=None),
    labels: str | None = Form(default=None),
    settings: Settings = Depends(get_settings),
    store: JobStore = Depends(get_job_store),
    dispatcher: Dispatcher | None = Depends(get_dispatcher),
):
    """Create a job and hand it to the configured dispatcher; returns at once."""
    if dispatcher is None and settings.api_configured:
        raise HTTPException(status_code=503, detail="Job dispatcher is not available")

    task, inputs = await _accept_submission(image, audio, user_id, labels, settings, store)

    try:
        await dispatcher.submit(task, inputs)
    except DispatchError as e:
        raise HTTPException(status_code=503, detail={"error": str(e), "job_id": task.job_id})

    return JobSubmitResponse(
        job_id=task.job_id, status=JobStatus.PENDING.value, dispatch_mode=dispatcher.mode
    )


@router.get("/jobs/{job_id}", response_model=JobRead)
async def get_job(job_id: str, store: JobStore = Depends(get_job_store)):
    """Current status and progress of a job; 404 for unknown ids."""
    try:
        job = await store.get(job_id)
    except Exception as e:
        logger.error("Job lookup failed for %s: %s", job_id, e)
        raise HTTPException(status_code=503, detail="Job store is not available")
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return JobRead.from_job(job)


@router.post("/jobs/{job_id}/cancel", status_code=202)
async def cancel_job(
    job_id: str,
    store: JobStore = Depends(get_job_store),
    dispatcher: Dispatcher | None = Depends(get_dispatcher),
):
    """Request cancellation of a job running in this process."""
    job = await store.get(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    if job.is_terminal:
        raise HTTPException(status_code=409, detail=f"Job is already {job.status}")
    if dispatcher is None or not dispatcher.cancel(job_id):
        raise HTTPException(status_code=409, detail="Job is not running in this process")
    return {"job_id": job_id, "status": "cancelling"}


@router.post("/generate", response_model=JobRead)
async def generate_and_wait(
    image: UploadFile | None = File(default=None),
    audio: UploadFile | None = File(default=None),
    user_id: str | None = Form(default=None),
    labels: str | None = Form(default=None),
    settings: Settings = Depends(get_settings),
    store: JobStore = Depends(get_job_store),
    client: VisionStoryClient | None = Depends(get_provider_client),
):
    """Create a job and run it in this request with the interactive poll profile.

    200 with the completed job, 504 when polling timed out, 502 otherwise.
    """
    task, inputs = await _accept_submission(image, audio, user_id, labels, settings, store)
    if client is None:
        await store.fail(task.job_id, "Provider client is not available")
        raise HTTPException(status_code=500, detail="Provider client is not available")

    runner = JobRunner(
        store, client, interactive_profile(settings), GenerationOptions.from_settings(settings)
    )
    outcome = await runner.run(task.job_id, inputs)
    if outcome.status is None:
        raise HTTPException(status_code=503, detail=outcome.error_message)

    job = await store.get(task.job_id)
    body = JobRead.from_job(job).model_dump(mode="json")
    if outcome.status == JobStatus.COMPLETED:
        return JSONResponse(body, status_code=200)
    status_code = 504 if outcome.error_type == "PollTimeout" else 502
    return JSONResponse(body, status_code=status_code)
