from __future__ import annotations
"""Job runner — drives one job through avatar → video → poll-to-completion.

The runner owns a job record while the job runs. It never
raises: every failure ends with ``status=failed`` and a non-empty
``error_message`` in the store, and the caller gets a RunOutcome back so the
dispatch layer (not an unhandled exception) decides about retries.

Store writes are best-effort telemetry: a failed write is logged and the run
continues. The exception is a write refused because the job is already
terminal (a duplicate delivery or recovery pass got there first): the run
stops and reports itself skipped.
"""

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from talkinghead.config import Settings
from talkinghead.errors import JobCancelled, JobFinished, JobNotFound
from talkinghead.models.job import JobStatus
from talkinghead.services import progress as job_progress
from talkinghead.services.job_store import JobStore
from talkinghead.services.poller import (
    CancellationToken,
    PollProfile,
    PollUpdate,
    poll_until_done,
    worker_profile,
)
from talkinghead.services.uploads import GenerationInputs
from talkinghead.services.visionstory_client import GenerationOptions, VisionStoryClient

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 500


@dataclass
class RunOutcome:
    """What happened to a job during one runner invocation."""

    job_id: str
    status: JobStatus | None
    video_url: str | None = None
    error_message: str | None = None
    error_type: str | None = None
    persisted: bool = True  # final state reached the store
    skipped: bool = False   # job was or became terminal elsewhere


@dataclass
class _RunContext:
    job_id: str
    last_progress: job_progress.Progress | None = None


def describe_error(exc: BaseException) -> str:
    message = str(exc).strip() or exc.__class__.__name__
    return message[:MAX_ERROR_LENGTH]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _raise_if_cancelled(cancel: CancellationToken | None) -> None:
    if cancel is not None and cancel.cancelled:
        raise JobCancelled(f"Job cancelled: {cancel.reason}")


def _skipped(
    job_id: str, status: str, video_url: str | None, error_message: str | None
) -> RunOutcome:
    return RunOutcome(
        job_id, JobStatus(status), video_url=video_url, error_message=error_message, skipped=True
    )


class JobRunner:
    """Runs jobs against one provider client with one polling profile.

    Safe to share between concurrent jobs: all per-job state lives in the
    coroutine, the store is only touched through the job's own record.
    """

    def __init__(
        self,
        store: JobStore,
        client: VisionStoryClient,
        profile: PollProfile,
        options: GenerationOptions | None = None,
    ):
        self.store = store
        self.client = client
        self.profile = profile
        self.options = options or GenerationOptions()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        store: JobStore,
        client: VisionStoryClient,
        profile: PollProfile | None = None,
    ) -> "JobRunner":
        return cls(
            store,
            client,
            profile or worker_profile(settings),
            GenerationOptions.from_settings(settings),
        )

    async def run(
        self,
        job_id: str,
        inputs: GenerationInputs,
        cancel: CancellationToken | None = None,
    ) -> RunOutcome:
        ctx = _RunContext(job_id)

        try:
            job = await self.store.get(job_id)
        except Exception as exc:
            # Unknown state: the job may already be finished, so no provider calls
            logger.warning("Could not load job %s, not running it", job_id, exc_info=True)
            return RunOutcome(
                job_id,
                None,
                error_message=f"Job store unavailable: {describe_error(exc)}",
                error_type=exc.__class__.__name__,
                persisted=False,
            )
        if job is None:
            logger.warning("Job %s not found, nothing to run", job_id)
            return RunOutcome(
                job_id, None, error_message="Job not found",
                error_type=JobNotFound.__name__, persisted=False,
            )
        if job.is_terminal:
            logger.info("Job %s already %s, skipping", job_id, job.status)
            return _skipped(job_id, job.status, job.video_url, job.error_message)

        try:
            if job.status == JobStatus.PROCESSING.value and job.video_id:
                video_id = job.video_id
                logger.info("Job %s resuming poll of video %s", job_id, video_id)
            else:
                video_id = await self._create_video(ctx, job.status, inputs, cancel)

            await self._save(ctx, video_id=video_id, progress=job_progress.video_polling())

            async def on_progress(update: PollUpdate) -> None:
                await self._save(ctx, progress=job_progress.video_polling(
                    f"Rendering video ({update.status or 'status unavailable'}, "
                    f"{update.elapsed:.0f}s elapsed, check {update.attempt}/{update.max_attempts})"
                ))

            final = await poll_until_done(
                self.client, video_id, self.profile, on_progress=on_progress, cancel=cancel
            )

            persisted = await self._save(
                ctx,
                status=JobStatus.COMPLETED,
                video_url=final.video_url,
                error_message=None,
                completed_at=_utcnow(),
                progress=job_progress.completed(),
            )
            logger.info("Job %s completed: %s", job_id, final.video_url)
            return RunOutcome(
                job_id, JobStatus.COMPLETED, video_url=final.video_url, persisted=persisted
            )

        except JobFinished as exc:
            return await self._finished_elsewhere(job_id, exc)
        except asyncio.CancelledError:
            with contextlib.suppress(JobFinished):
                await self._record_failure(ctx, "Job cancelled")
            raise
        except Exception as exc:
            message = describe_error(exc)
            logger.error("Job %s failed: %s", job_id, message)
            try:
                persisted = await self._record_failure(ctx, message)
            except JobFinished as finished:
                return await self._finished_elsewhere(job_id, finished)
            return RunOutcome(
                job_id,
                JobStatus.FAILED,
                error_message=message,
                error_type=exc.__class__.__name__,
                persisted=persisted,
            )

    async def fail(self, job_id: str, message: str) -> bool:
        """Fail a job that could not be started (e.g. unreadable inputs)."""
        return await self.store.fail(job_id, message[:MAX_ERROR_LENGTH] or "Job failed")

    # ------------------------------------------------------------------

    async def _finished_elsewhere(self, job_id: str, exc: JobFinished) -> RunOutcome:
        """Another writer made the job terminal first; its result stands."""
        logger.warning("Job %s became %s during this run, dropping our result", job_id, exc.status)
        try:
            job = await self.store.get(job_id)
        except Exception:
            logger.warning("Could not reload job %s", job_id, exc_info=True)
            job = None
        if job is None:
            return _skipped(job_id, exc.status, None, None)
        return _skipped(job_id, job.status, job.video_url, job.error_message)

    async def _create_video(
        self,
        ctx: _RunContext,
        current_status: str,
        inputs: GenerationInputs,
        cancel: CancellationToken | None,
    ) -> str:
        if current_status != JobStatus.PROCESSING.value:
            job_progress.check_transition(current_status, JobStatus.PROCESSING)

        _raise_if_cancelled(cancel)
        # Step 1: avatar from image
        await self._save(ctx, status=JobStatus.PROCESSING, progress=job_progress.avatar_creation())
        avatar_id = await self.client.create_avatar(inputs.image.data, inputs.image.mime_type)

        _raise_if_cancelled(cancel)
        # Step 2: video from avatar + audio
        await self._save(ctx, progress=job_progress.video_request())
        return await self.client.create_video(
            avatar_id, inputs.audio.data, inputs.audio.mime_type, self.options
        )

    async def _record_failure(self, ctx: _RunContext, message: str) -> bool:
        return await self._save(
            ctx,
            status=JobStatus.FAILED,
            error_message=message,
            video_url=None,
            completed_at=_utcnow(),
            progress=job_progress.failed_at(ctx.last_progress, message),
        )

    async def _save(self, ctx: _RunContext, **fields: Any) -> bool:
        """Best-effort store update; returns False when the write failed.

        JobFinished is not swallowed: it ends the run.
        """
        if "progress" in fields:
            ctx.last_progress = fields["progress"]
        try:
            await self.store.update(ctx.job_id, **fields)
            return True
        except JobFinished:
            raise
        except Exception:
            logger.warning("Failed to update job %s", ctx.job_id, exc_info=True)
            return False
