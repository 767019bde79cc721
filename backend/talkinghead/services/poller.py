from __future__ import annotations
"""Bounded polling of a provider video until it reaches a terminal status.

Each attempt waits ``interval`` first, then checks the status, so a budget
of interval=1 / timeout=2 performs exactly two status checks. Waits go
through a CancellationToken: they never block the event loop and can be
cut short when a job is cancelled or the process shuts down.

A failed status check is transient: it is logged and costs one
attempt, but never aborts the poll on its own.
"""

import asyncio
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Protocol

from talkinghead.config import Settings
from talkinghead.errors import (
    GenerationFailed,
    JobCancelled,
    JobFinished,
    PollTimeout,
    ProtocolError,
    ProviderError,
)
from talkinghead.services.visionstory_client import VideoStatus

logger = logging.getLogger(__name__)


class StatusSource(Protocol):
    async def get_video_status(self, video_id: str) -> VideoStatus: ...


@dataclass(frozen=True)
class PollProfile:
    """Interval / ceiling pair; termination logic is the same for every profile."""

    name: str
    interval: float
    timeout: float

    @property
    def max_attempts(self) -> int:
        if self.interval <= 0:
            return 1
        # tolerate float noise: 0.03 / 0.01 must still give 3
        return max(1, math.floor(self.timeout / self.interval + 1e-9))


def interactive_profile(settings: Settings) -> PollProfile:
    """For a caller waiting synchronously on the result."""
    return PollProfile(
        "interactive", settings.INTERACTIVE_POLL_INTERVAL, settings.INTERACTIVE_POLL_TIMEOUT
    )


def worker_profile(settings: Settings) -> PollProfile:
    """For detached execution that only persists progress."""
    return PollProfile("worker", settings.WORKER_POLL_INTERVAL, settings.WORKER_POLL_TIMEOUT)


@dataclass(frozen=True)
class PollUpdate:
    attempt: int
    max_attempts: int
    elapsed: float
    status: str | None


@dataclass
class FinalVideo:
    video_id: str
    video_url: str
    attempts: int
    detail: dict[str, Any] = field(default_factory=dict)


ProgressCallback = Callable[[PollUpdate], Awaitable[None]]


class CancellationToken:
    """Timer + cancellation flag for cooperative waits."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason = ""

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        self.reason = reason
        self._event.set()

    async def wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; True if cancelled before the time ran out."""
        if self._event.is_set():
            return True
        try:
            await asyncio.wait_for(self._event.wait(), timeout=max(seconds, 0))
        except asyncio.TimeoutError:
            return False
        return True


async def poll_until_done(
    client: StatusSource,
    video_id: str,
    profile: PollProfile,
    on_progress: ProgressCallback | None = None,
    cancel: CancellationToken | None = None,
) -> FinalVideo:
    """Poll ``video_id`` until created/failed or the budget runs out.

    Raises:
        GenerationFailed: provider reported ``failed``.
        ProtocolError: provider reported ``created`` without a video URL.
        PollTimeout: no terminal status within ``profile.max_attempts``.
        JobCancelled: ``cancel`` was triggered.
        JobFinished: raised by ``on_progress``; the job record moved on without us.
    """
    cancel = cancel or CancellationToken()
    max_attempts = profile.max_attempts
    elapsed = 0.0

    for attempt in range(1, max_attempts + 1):
        if await cancel.wait(profile.interval):
            raise JobCancelled(f"Polling for video {video_id} cancelled: {cancel.reason}")
        elapsed += profile.interval

        status: str | None = None
        try:
            result = await client.get_video_status(video_id)
        except (ProviderError, ProtocolError) as exc:
            logger.warning(
                "Status check %d/%d for video %s failed, will retry: %s",
                attempt, max_attempts, video_id, exc,
            )
        else:
            status = result.status
            logger.info(
                "Video %s status (%ds, attempt %d/%d): %s",
                video_id, elapsed, attempt, max_attempts, status,
            )
            if status == "created":
                if not result.video_url:
                    raise ProtocolError(
                        f"Video {video_id} reported created but no video_url was returned"
                    )
                return FinalVideo(
                    video_id=video_id,
                    video_url=result.video_url,
                    attempts=attempt,
                    detail=result.detail,
                )
            if status == "failed":
                reason = result.detail.get("error") or result.detail.get("message") or "unknown error"
                raise GenerationFailed(f"Video generation failed: {reason}")
            if status not in ("queued", "processing"):
                logger.warning("Video %s: unexpected status %r, continuing", video_id, status)

        if on_progress is not None:
            try:
                await on_progress(PollUpdate(attempt, max_attempts, elapsed, status))
            except JobFinished:
                raise
            except Exception:
                logger.warning("Progress callback failed for video %s", video_id, exc_info=True)

    raise PollTimeout(
        f"Video generation timed out after {max_attempts} status checks "
        f"({profile.timeout:g}s, profile={profile.name})"
    )
