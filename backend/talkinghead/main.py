from __future__ import annotations
"""TalkingHead — FastAPI application entry point.

Mounts the API routes, configures CORS, and owns the long-lived services
(job store, provider client, dispatcher) for the lifetime of the process.
"""

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from talkinghead.api.router import api_router
from talkinghead.config import get_settings
from talkinghead.database import close_db, get_session_factory, init_db
from talkinghead.services.dispatch import build_dispatcher
from talkinghead.services.job_runner import JobRunner
from talkinghead.services.job_store import JobStore
from talkinghead.services.visionstory_client import VisionStoryClient

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

INTERRUPTED_MESSAGE = "Job interrupted by a service restart"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: wire services on startup, stop jobs on shutdown."""
    logger.info("%s starting up...", settings.APP_NAME)
    logger.info("Dispatch mode: %s", settings.DISPATCH_MODE)

    os.makedirs(settings.MEDIA_VOLUME, exist_ok=True)

    if settings.DB_CREATE_TABLES:
        await init_db()
    else:
        logger.info("Skipping init_db (tables assumed to exist)")

    store = JobStore(get_session_factory())
    app.state.job_store = store

    client = None
    runner = None
    if settings.api_configured:
        client = VisionStoryClient.from_settings(settings)
        runner = JobRunner.from_settings(settings, store, client)
    else:
        logger.error("VISIONSTORY_API_KEY is not set; submissions will be rejected")
    app.state.provider_client = client

    dispatcher = None
    if settings.DISPATCH_MODE == "queue" or runner is not None:
        dispatcher = build_dispatcher(settings, store, runner)
    app.state.dispatcher = dispatcher

    # In-process jobs cannot survive a restart; queued ones are redelivered
    if settings.DISPATCH_MODE == "inline" and settings.RECOVER_INTERRUPTED_JOBS:
        await _recover_interrupted_jobs(store)

    yield

    if dispatcher is not None:
        await dispatcher.shutdown()
    if client is not None:
        await client.aclose()
    await close_db()
    logger.info("%s shut down", settings.APP_NAME)


async def _recover_interrupted_jobs(store: JobStore) -> None:
    """Fail jobs left pending/processing by a previous inline process."""
    try:
        count = await store.fail_interrupted(INTERRUPTED_MESSAGE)
    except Exception as e:
        logger.warning("Startup recovery failed (non-fatal): %s", e)
        return
    if count:
        logger.info("Startup recovery: %d job(s) marked failed", count)
    else:
        logger.info("Startup recovery: no interrupted jobs found")


app = FastAPI(
    title="TalkingHead API",
    description="Image + audio to talking-head video via VisionStory",
    version="0.1.0",
    lifespan=lifespan,
    redirect_slashes=False,
)

# CORS (configurable via CORS_ORIGINS env)
_cors_origins = os.environ.get(
    "CORS_ORIGINS",
    "http://localhost:3000,http://127.0.0.1:3000",
).split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router)


@app.get("/")
async def root():
    return {
        "service": settings.APP_NAME,
        "status": "running",
    }


@app.get("/health")
async def health():
    """Liveness plus whether the provider key is configured."""
    return {
        "ok": True,
        "service": settings.APP_NAME,
        "api_configured": settings.api_configured,
        "dispatch_mode": settings.DISPATCH_MODE,
    }
