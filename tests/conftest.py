"""Pytest configuration helpers.

Puts ``backend/`` on `sys.path` so tests can import the `talkinghead`
package without installing it, and provides shared fixtures: settings with
tiny polling budgets, a SQLite-backed job store, and a scripted provider.
"""
import asyncio
import os
import sys

import pytest

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
BACKEND = os.path.join(ROOT, "backend")
if BACKEND not in sys.path:
    sys.path.insert(0, BACKEND)

from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import NullPool  # noqa: E402

from talkinghead.config import Settings  # noqa: E402
from talkinghead.database import Base  # noqa: E402
from talkinghead.errors import ProviderError  # noqa: E402
import talkinghead.models  # noqa: E402,F401
from talkinghead.services.job_store import JobStore  # noqa: E402
from talkinghead.services.uploads import GenerationInputs, InputArtifact  # noqa: E402
from talkinghead.services.visionstory_client import VideoStatus  # noqa: E402

# Exact in binary floating point, so attempt counts are deterministic
FAST_INTERVAL = 1 / 64


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        VISIONSTORY_API_KEY="test-key",
        VISIONSTORY_API_BASE="https://vs.test",
        MEDIA_VOLUME=str(tmp_path / "media"),
        INTERACTIVE_POLL_INTERVAL=FAST_INTERVAL,
        INTERACTIVE_POLL_TIMEOUT=FAST_INTERVAL * 10,
        WORKER_POLL_INTERVAL=FAST_INTERVAL,
        WORKER_POLL_TIMEOUT=FAST_INTERVAL * 10,
        DISPATCH_MODE="inline",
    )


@pytest.fixture
def job_store(tmp_path):
    """JobStore on a throwaway SQLite file; NullPool so any event loop can use it."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'jobs.db'}", poolclass=NullPool
    )

    async def _create_tables():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(_create_tables())
    yield JobStore(async_sessionmaker(engine, expire_on_commit=False))
    asyncio.run(engine.dispose())


@pytest.fixture
def inputs():
    return GenerationInputs(
        image=InputArtifact("face.png", "image/png", b"\x89PNG fake image"),
        audio=InputArtifact("voice.mp3", "audio/mp3", b"ID3 fake audio"),
    )


class FakeVisionStory:
    """Scripted stand-in for VisionStoryClient.

    ``statuses`` is consumed one entry per status check; an entry may be a
    status string, a (status, video_url) tuple, or an exception to raise.
    The last entry repeats once the script runs out.
    """

    def __init__(self, statuses=("created",), video_url="https://cdn.test/out.mp4",
                 avatar_error=None, video_error=None, video_id="vid-1"):
        self.statuses = list(statuses)
        self.video_url = video_url
        self.avatar_error = avatar_error
        self.video_error = video_error
        self.video_id = video_id
        self.avatar_calls = 0
        self.video_calls = 0
        self.status_calls = 0

    async def create_avatar(self, image_bytes, mime_type):
        self.avatar_calls += 1
        if self.avatar_error:
            raise self.avatar_error
        return "avatar-1"

    async def create_video(self, avatar_id, audio_bytes, mime_type, options=None):
        self.video_calls += 1
        if self.video_error:
            raise self.video_error
        return self.video_id

    async def get_video_status(self, video_id):
        index = min(self.status_calls, len(self.statuses) - 1)
        self.status_calls += 1
        entry = self.statuses[index]
        if isinstance(entry, Exception):
            raise entry
        if isinstance(entry, tuple):
            status, url = entry
        else:
            status, url = entry, (self.video_url if entry == "created" else None)
        detail = {"status": status}
        if url:
            detail["video_url"] = url
        if status == "failed":
            detail["error"] = "bad audio"
        return VideoStatus(video_id=video_id, status=status, video_url=url, detail=detail)


@pytest.fixture
def fake_provider():
    return FakeVisionStory


@pytest.fixture
def transient_error():
    return ProviderError("VisionStory video status check failed with status 503", status_code=503)
