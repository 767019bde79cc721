from __future__ import annotations
"""FastAPI dependencies — long-lived services created in the app lifespan."""

from fastapi import HTTPException, Request

from talkinghead.services.dispatch import Dispatcher
from talkinghead.services.job_store import JobStore
from talkinghead.services.visionstory_client import VisionStoryClient


def get_job_store(request: Request) -> JobStore:
    store = getattr(request.app.state, "job_store", None)
    if store is None:
        raise HTTPException(status_code=503, detail="Job store is not available")
    return store


def get_dispatcher(request: Request) -> Dispatcher | None:
    return getattr(request.app.state, "dispatcher", None)


def get_provider_client(request: Request) -> VisionStoryClient | None:
    return getattr(request.app.state, "provider_client", None)
