import asyncio
import json

import httpx

from talkinghead.errors import ProviderError
from talkinghead.models.job import VALID_TRANSITIONS, JobStatus
from talkinghead.services import progress
from talkinghead.services.job_runner import JobRunner, describe_error
from talkinghead.services.poller import CancellationToken, PollProfile
from talkinghead.services.visionstory_client import VisionStoryClient
from talkinghead.services.worker import to_worker_outcome

FAST_INTERVAL = 1 / 64


def _profile(attempts=10):
    return PollProfile("test", FAST_INTERVAL, FAST_INTERVAL * attempts)


def _run(job_store, provider, inputs, profile=None, cancel=None, **create_fields):
    async def scenario():
        job_id = await job_store.create(**create_fields)
        runner = JobRunner(job_store, provider, profile or _profile())
        outcome = await runner.run(job_id, inputs, cancel=cancel)
        return outcome, await job_store.get(job_id)

    return asyncio.run(scenario())


def test_completes_after_three_polls_over_http(job_store, inputs):
    polls = iter(["processing", "processing", "created"])
    calls = []

    def handler(request):
        calls.append((request.method, request.url.path))
        if request.url.path == "/api/v1/avatar":
            return httpx.Response(200, json={"data": {"avatar_id": "av-1"}})
        if request.method == "POST":
            body = json.loads(request.content)
            assert body["avatar_id"] == "av-1"
            return httpx.Response(200, json={"data": {"video_id": "vid-1"}})
        status = next(polls)
        data = {"status": status}
        if status == "created":
            data["video_url"] = "https://cdn.test/final.mp4"
        return httpx.Response(200, json={"data": data})

    client = VisionStoryClient(
        "k", base_url="https://vs.test",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )

    outcome, job = _run(job_store, client, inputs)

    assert outcome.status == JobStatus.COMPLETED
    assert outcome.persisted
    assert job.status == "completed"
    assert job.video_url == "https://cdn.test/final.mp4"
    assert job.video_id == "vid-1"
    assert job.error_message is None
    assert job.completed_at is not None
    assert job.progress_data["current_step"] == "completed"
    assert job.progress_data["step_number"] == 3
    assert calls.count(("GET", "/api/v1/video")) == 3


def test_provider_failure_marks_job_failed(job_store, inputs, fake_provider):
    outcome, job = _run(job_store, fake_provider(statuses=["processing", "failed"]), inputs)

    assert outcome.status == JobStatus.FAILED
    assert outcome.error_type == "GenerationFailed"
    assert job.status == "failed"
    assert job.error_message == "Video generation failed: bad audio"
    assert job.video_url is None
    assert job.progress_data["current_step"] == "video_generation"
    assert job.progress_data["step_number"] == 3


def test_poll_budget_exhaustion_fails_the_job(job_store, inputs, fake_provider):
    provider = fake_provider(statuses=["processing"])

    outcome, job = _run(job_store, provider, inputs, profile=_profile(2))

    assert provider.status_calls == 2
    assert outcome.error_type == "PollTimeout"
    assert job.status == "failed"
    assert "timed out" in job.error_message


def test_avatar_error_fails_at_step_one(job_store, inputs, fake_provider):
    error = ProviderError(
        "VisionStory avatar creation failed with status 402: no credits", status_code=402
    )
    provider = fake_provider(avatar_error=error)

    outcome, job = _run(job_store, provider, inputs)

    assert outcome.status == JobStatus.FAILED
    assert provider.video_calls == 0
    assert job.status == "failed"
    assert "402" in job.error_message
    assert job.progress_data["current_step"] == "avatar_creation"
    assert job.progress_data["step_number"] == 1


def test_concurrent_jobs_do_not_interfere(job_store, inputs, fake_provider):
    good = fake_provider(statuses=["processing", "created"], video_id="vid-good")
    bad = fake_provider(avatar_error=ProviderError("avatar quota exceeded", status_code=429))

    async def scenario():
        first = await job_store.create()
        second = await job_store.create()
        await asyncio.gather(
            JobRunner(job_store, good, _profile()).run(first, inputs),
            JobRunner(job_store, bad, _profile()).run(second, inputs),
        )
        return await job_store.get(first), await job_store.get(second)

    first, second = asyncio.run(scenario())

    assert first.status == "completed"
    assert first.video_id == "vid-good"
    assert first.error_message is None
    assert second.status == "failed"
    assert second.video_id is None
    assert second.video_url is None
    assert second.progress_data["current_step"] == "avatar_creation"


def test_processing_job_with_video_id_resumes_polling(job_store, inputs, fake_provider):
    provider = fake_provider(statuses=["created"])

    async def scenario():
        job_id = await job_store.create()
        await job_store.update(
            job_id, status=JobStatus.PROCESSING, video_id="vid-earlier",
            progress=progress.video_polling(),
        )
        outcome = await JobRunner(job_store, provider, _profile()).run(job_id, inputs)
        return outcome, await job_store.get(job_id)

    outcome, job = asyncio.run(scenario())

    assert outcome.status == JobStatus.COMPLETED
    assert provider.avatar_calls == 0
    assert provider.video_calls == 0
    assert job.video_id == "vid-earlier"
    assert job.status == "completed"


def test_terminal_job_is_skipped(job_store, inputs, fake_provider):
    provider = fake_provider()

    async def scenario():
        job_id = await job_store.create()
        await job_store.fail(job_id, "earlier failure")
        return await JobRunner(job_store, provider, _profile()).run(job_id, inputs)

    outcome = asyncio.run(scenario())

    assert outcome.skipped
    assert outcome.status == JobStatus.FAILED
    assert outcome.error_message == "earlier failure"
    assert provider.avatar_calls == 0


def test_unknown_job_is_reported_not_run(job_store, inputs, fake_provider):
    provider = fake_provider()
    runner = JobRunner(job_store, provider, _profile())

    outcome = asyncio.run(runner.run("missing", inputs))

    assert outcome.status is None
    assert not outcome.persisted
    assert provider.avatar_calls == 0


class RecordingStore:
    """Delegates to a real store and records every status it is asked to write."""

    def __init__(self, inner, fail_updates=False):
        self.inner = inner
        self.fail_updates = fail_updates
        self.statuses = []

    async def get(self, job_id):
        return await self.inner.get(job_id)

    async def update(self, job_id, **fields):
        if self.fail_updates:
            raise ConnectionError("db down")
        if "status" in fields:
            self.statuses.append(JobStatus(fields["status"]).value)
        await self.inner.update(job_id, **fields)

    async def fail(self, job_id, message):
        return await self.inner.fail(job_id, message)


def _recorded_run(job_store, provider, inputs):
    store = RecordingStore(job_store)

    async def scenario():
        job_id = await job_store.create()
        outcome = await JobRunner(store, provider, _profile()).run(job_id, inputs)
        return outcome, await job_store.get(job_id)

    outcome, job = asyncio.run(scenario())
    return outcome, job, [JobStatus.PENDING.value] + store.statuses


def _assert_forward_only(written):
    for before, after in zip(written, written[1:]):
        assert JobStatus(after) in VALID_TRANSITIONS[JobStatus(before)], written


def test_status_writes_go_pending_processing_completed(job_store, inputs, fake_provider):
    outcome, job, written = _recorded_run(
        job_store, fake_provider(statuses=["processing", "created"]), inputs
    )

    assert written == ["pending", "processing", "completed"]
    _assert_forward_only(written)
    assert job.status == "completed"


def test_status_writes_go_pending_processing_failed(job_store, inputs, fake_provider):
    outcome, job, written = _recorded_run(
        job_store, fake_provider(statuses=["processing", "failed"]), inputs
    )

    assert written == ["pending", "processing", "failed"]
    _assert_forward_only(written)


def test_failed_status_ends_the_job_within_one_poll(job_store, inputs, fake_provider):
    provider = fake_provider(statuses=["failed"])

    outcome, job = _run(job_store, provider, inputs)

    assert provider.status_calls == 1
    assert outcome.error_type == "GenerationFailed"
    assert job.status == "failed"


def test_store_write_failures_do_not_stop_the_video(job_store, inputs, fake_provider):
    provider = fake_provider(statuses=["created"])

    async def scenario():
        job_id = await job_store.create()
        store = RecordingStore(job_store, fail_updates=True)
        return await JobRunner(store, provider, _profile()).run(job_id, inputs)

    outcome = asyncio.run(scenario())

    assert outcome.status == JobStatus.COMPLETED
    assert outcome.video_url == "https://cdn.test/out.mp4"
    assert not outcome.persisted


def test_unreadable_store_does_not_rerun_a_finished_job(job_store, inputs, fake_provider):
    class UnreadableStore(RecordingStore):
        async def get(self, job_id):
            raise ConnectionError("db down")

    provider = fake_provider(statuses=["created"], video_id="vid-new")

    async def scenario():
        job_id = await job_store.create()
        await job_store.update(job_id, status=JobStatus.PROCESSING, video_id="vid-old")
        await job_store.update(
            job_id, status=JobStatus.COMPLETED, video_url="https://cdn.test/OLD.mp4"
        )
        runner = JobRunner(UnreadableStore(job_store), provider, _profile())
        return await runner.run(job_id, inputs), await job_store.get(job_id)

    outcome, job = asyncio.run(scenario())

    assert provider.avatar_calls == 0
    assert provider.status_calls == 0
    assert outcome.status is None
    assert not outcome.persisted
    assert "db down" in outcome.error_message
    assert to_worker_outcome(outcome).retryable
    assert job.video_url == "https://cdn.test/OLD.mp4"


def test_job_failed_by_recovery_mid_poll_stays_failed(job_store, inputs, fake_provider):
    provider = fake_provider(statuses=["processing"])

    async def scenario():
        job_id = await job_store.create()
        runner = JobRunner(job_store, provider, _profile(200))
        task = asyncio.create_task(runner.run(job_id, inputs))
        while provider.status_calls == 0:
            await asyncio.sleep(0.001)
        failed = await job_store.fail_interrupted("Job interrupted by restart")
        return failed, await task, await job_store.get(job_id)

    failed, outcome, job = asyncio.run(scenario())

    assert failed == 1
    assert outcome.skipped
    assert outcome.status == JobStatus.FAILED
    assert job.status == "failed"
    assert job.error_message == "Job interrupted by restart"
    assert provider.status_calls < 200


def test_duplicate_run_cannot_erase_a_completed_video(job_store, inputs, fake_provider):
    provider = fake_provider(statuses=["processing"])

    async def scenario():
        job_id = await job_store.create()
        runner = JobRunner(job_store, provider, _profile(200))
        task = asyncio.create_task(runner.run(job_id, inputs))
        while provider.status_calls == 0:
            await asyncio.sleep(0.001)
        # the other delivery finishes first
        await job_store.update(
            job_id, status=JobStatus.COMPLETED, video_url="https://cdn.test/first.mp4",
            error_message=None, progress=progress.completed(),
        )
        return await task, await job_store.get(job_id)

    outcome, job = asyncio.run(scenario())

    assert outcome.skipped
    assert outcome.status == JobStatus.COMPLETED
    assert outcome.video_url == "https://cdn.test/first.mp4"
    assert job.status == "completed"
    assert job.video_url == "https://cdn.test/first.mp4"
    assert job.error_message is None


def test_cancellation_during_poll_fails_the_job(job_store, inputs, fake_provider):
    provider = fake_provider(statuses=["processing"])
    token = CancellationToken()

    async def scenario():
        job_id = await job_store.create()
        runner = JobRunner(job_store, provider, PollProfile("slow", 30, 3000))
        task = asyncio.create_task(runner.run(job_id, inputs, cancel=token))
        while provider.video_calls == 0:
            await asyncio.sleep(0.001)
        token.cancel("cancelled by request")
        return await task, await job_store.get(job_id)

    outcome, job = asyncio.run(scenario())

    assert outcome.error_type == "JobCancelled"
    assert job.status == "failed"
    assert "cancelled by request" in job.error_message


def test_describe_error_truncates_and_falls_back_to_type():
    assert describe_error(RuntimeError("x" * 900)) == "x" * 500
    assert describe_error(TimeoutError()) == "TimeoutError"
