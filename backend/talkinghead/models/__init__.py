"""ORM model package — registers all models with Base.metadata."""

from talkinghead.models.job import (
    Job,
    JobStatus,
    JobStep,
    TERMINAL_STATUSES,
    VALID_TRANSITIONS,
)

__all__ = [
    "Job",
    "JobStatus",
    "JobStep",
    "TERMINAL_STATUSES",
    "VALID_TRANSITIONS",
]
