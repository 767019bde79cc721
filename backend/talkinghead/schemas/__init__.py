"""Pydantic schemas for API request/response validation."""

from talkinghead.schemas.job import (
    GenerationTask,
    JobProgressRead,
    JobRead,
    JobSubmitResponse,
    ProviderVideoStatus,
    WorkerOutcome,
)

__all__ = [
    "GenerationTask",
    "JobProgressRead",
    "JobRead",
    "JobSubmitResponse",
    "ProviderVideoStatus",
    "WorkerOutcome",
]
