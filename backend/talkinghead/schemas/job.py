from __future__ import annotations
"""Pydantic v2 schemas for jobs, queue messages and worker outcomes."""

from datetime import datetime

from pydantic import BaseModel, Field

from talkinghead.models.job import Job


class JobProgressRead(BaseModel):
    current_step: str
    step_number: int
    total_steps: int
    message: str


class JobRead(BaseModel):
    """Schema for reading a job (status-check responses)."""

    id: str
    status: str
    progress: JobProgressRead | None = None
    video_id: str | None = None
    video_url: str | None = None
    error_message: str | None = None
    user_id: str | None = None
    labels: list[str] = Field(default_factory=list)
    image_filename: str | None = None
    audio_filename: str | None = None
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None

    @classmethod
    def from_job(cls, job: Job) -> "JobRead":
        return cls(
            id=job.id,
            status=job.status,
            progress=job.progress_data,
            video_id=job.video_id,
            video_url=job.video_url,
            error_message=job.error_message,
            user_id=job.user_id,
            labels=job.label_list,
            image_filename=job.image_filename,
            audio_filename=job.audio_filename,
            created_at=job.created_at,
            updated_at=job.updated_at,
            completed_at=job.completed_at,
        )


class JobSubmitResponse(BaseModel):
    job_id: str
    status: str
    dispatch_mode: str


class GenerationTask(BaseModel):
    """Durable queue message: everything a fresh worker needs to run a job."""

    job_id: str
    image_path: str
    audio_path: str
    image_filename: str
    audio_filename: str
    image_mime_type: str | None = None
    audio_mime_type: str | None = None


class WorkerOutcome(BaseModel):
    """Result of one worker delivery; ``ok`` is the ack/nack decision."""

    job_id: str
    ok: bool
    status: str | None = None
    video_url: str | None = None
    error_message: str | None = None
    retryable: bool = False


class ProviderVideoStatus(BaseModel):
    video_id: str
    status: str
    video_url: str | None = None
    message: str | None = None
    detail: dict = Field(default_factory=dict)
