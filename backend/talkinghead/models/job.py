from __future__ import annotations
"""Job ORM model — one end-to-end image + audio → talking-head video request."""

import enum
import json
import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from talkinghead.database import Base


class JobStatus(str, enum.Enum):
    """Job lifecycle statuses."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class JobStep(str, enum.Enum):
    """Logical sub-steps reported through ``progress.current_step``."""

    QUEUED = "queued"
    AVATAR_CREATION = "avatar_creation"
    VIDEO_GENERATION = "video_generation"
    COMPLETED = "completed"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})

# Explicit valid transitions for job status
VALID_TRANSITIONS: dict[JobStatus, set[JobStatus]] = {
    JobStatus.PENDING: {JobStatus.PROCESSING, JobStatus.FAILED},
    JobStatus.PROCESSING: {JobStatus.COMPLETED, JobStatus.FAILED},
    JobStatus.COMPLETED: set(),
    JobStatus.FAILED: set(),
}


def new_job_id() -> str:
    return uuid.uuid4().hex


class Job(Base):
    """A generation job with its progress snapshot and final result."""

    __tablename__ = "jobs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_job_id)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=JobStatus.PENDING.value, index=True
    )
    # JSON-encoded {current_step, step_number, total_steps, message}
    progress: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Provider video handle, persisted so an interrupted poll can resume
    video_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    video_url: Mapped[Optional[str]] = mapped_column(String(2048), nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Submission metadata
    user_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, index=True)
    labels: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    image_filename: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    audio_filename: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    @property
    def progress_data(self) -> dict[str, Any] | None:
        if not self.progress:
            return None
        try:
            return json.loads(self.progress)
        except (json.JSONDecodeError, TypeError):
            return None

    @property
    def label_list(self) -> list[str]:
        if not self.labels:
            return []
        try:
            return list(json.loads(self.labels))
        except (json.JSONDecodeError, TypeError):
            return []

    @property
    def is_terminal(self) -> bool:
        return self.status in {s.value for s in TERMINAL_STATUSES}
