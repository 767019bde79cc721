from __future__ import annotations
"""Master API router — mounts all sub-routers."""

from fastapi import APIRouter

from talkinghead.api.jobs import router as jobs_router
from talkinghead.api.system import router as system_router
from talkinghead.api.videos import router as videos_router
from talkinghead.api.worker import router as worker_router

api_router = APIRouter(prefix="/api", redirect_slashes=False)

api_router.include_router(jobs_router, tags=["Jobs"])
api_router.include_router(videos_router, tags=["Videos"])
api_router.include_router(worker_router, tags=["Worker"])
api_router.include_router(system_router, prefix="/system", tags=["System"])
