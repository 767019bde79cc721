from __future__ import annotations
"""Job progress state machine.

pending → processing → {completed | failed}

Within ``processing`` the runner walks three numbered steps:

  1  avatar_creation    avatar being created from the image
  2  video_generation   video creation request being submitted
  3  video_generation   provider is rendering, we are polling

Terminal states never change again. A job can also fail straight from
``pending`` when it could not be started at all.
"""

from dataclasses import asdict, dataclass

from talkinghead.errors import InvalidTransition
from talkinghead.models.job import VALID_TRANSITIONS, JobStatus, JobStep

TOTAL_STEPS = 3

# Steps allowed while a job sits in each status
STATUS_STEPS: dict[JobStatus, set[JobStep]] = {
    JobStatus.PENDING: {JobStep.QUEUED},
    JobStatus.PROCESSING: {JobStep.AVATAR_CREATION, JobStep.VIDEO_GENERATION},
    JobStatus.COMPLETED: {JobStep.COMPLETED},
    JobStatus.FAILED: {JobStep.QUEUED, JobStep.AVATAR_CREATION, JobStep.VIDEO_GENERATION},
}


@dataclass(frozen=True)
class Progress:
    """Snapshot of where a job currently is."""

    current_step: JobStep
    step_number: int
    total_steps: int
    message: str

    def to_dict(self) -> dict:
        data = asdict(self)
        data["current_step"] = self.current_step.value
        return data

    @classmethod
    def from_dict(cls, data: dict | None) -> "Progress | None":
        if not data:
            return None
        try:
            return cls(
                current_step=JobStep(data["current_step"]),
                step_number=int(data["step_number"]),
                total_steps=int(data.get("total_steps", TOTAL_STEPS)),
                message=str(data.get("message", "")),
            )
        except (KeyError, ValueError, TypeError):
            return None

    def with_message(self, message: str) -> "Progress":
        return Progress(self.current_step, self.step_number, self.total_steps, message)


def queued() -> Progress:
    return Progress(JobStep.QUEUED, 0, TOTAL_STEPS, "Waiting to start")


def avatar_creation() -> Progress:
    return Progress(JobStep.AVATAR_CREATION, 1, TOTAL_STEPS, "Creating avatar from image")


def video_request() -> Progress:
    return Progress(
        JobStep.VIDEO_GENERATION, 2, TOTAL_STEPS, "Submitting video generation request"
    )


def video_polling(message: str = "Waiting for the provider to render the video") -> Progress:
    return Progress(JobStep.VIDEO_GENERATION, 3, TOTAL_STEPS, message)


def completed() -> Progress:
    return Progress(JobStep.COMPLETED, TOTAL_STEPS, TOTAL_STEPS, "Video generation complete")


def failed_at(last: Progress | None, message: str) -> Progress:
    """Freeze the step the job failed in, replacing only the message."""
    return (last or queued()).with_message(message)


def can_transition(current: JobStatus | str, target: JobStatus | str) -> bool:
    try:
        current = JobStatus(current)
        target = JobStatus(target)
    except ValueError:
        return False
    return target in VALID_TRANSITIONS.get(current, set())


def check_transition(current: JobStatus | str, target: JobStatus | str) -> None:
    """Raise InvalidTransition unless ``current → target`` is legal."""
    if not can_transition(current, target):
        raise InvalidTransition(
            f"Cannot transition job from {getattr(current, 'value', current)} "
            f"to {getattr(target, 'value', target)}"
        )


def is_consistent(status: JobStatus | str, step: JobStep | str) -> bool:
    """Check a status / current_step pair against the progress table."""
    try:
        status = JobStatus(status)
        step = JobStep(step)
    except ValueError:
        return False
    return step in STATUS_STEPS[status]
