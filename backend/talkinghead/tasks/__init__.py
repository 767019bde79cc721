"""Celery application configuration."""

import asyncio
import threading

from celery import Celery

from talkinghead.config import get_settings

settings = get_settings()

celery_app = Celery(
    "talkinghead",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=["talkinghead.tasks.generation_task"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,               # ACK after task completes, not on receive
    task_reject_on_worker_lost=True,    # Re-queue task if worker crashes/restarts
    worker_prefetch_multiplier=1,       # Fetch one task at a time per worker
    # Unacked messages are redelivered after this; must outlast the longest poll
    broker_transport_options={
        "visibility_timeout": int(settings.WORKER_POLL_TIMEOUT) + 3600,
    },
)

# Thread-local storage for event loop reuse within Celery workers
_thread_local = threading.local()


def run_async(coro):
    """Run async code in a sync Celery task.

    Reuses a thread-local event loop so the lazily created DB engine stays
    bound to one loop for the worker thread's lifetime.
    """
    loop = getattr(_thread_local, "loop", None)
    if loop is None or loop.is_closed():
        loop = asyncio.new_event_loop()
        _thread_local.loop = loop
    return loop.run_until_complete(coro)
