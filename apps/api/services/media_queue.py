"""Durable media task queue helpers (Redis/RQ)."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from redis import Redis
from rq import Queue, Retry
from rq.job import Job
from sqlalchemy import select

from config import settings
from database import async_session_maker
from models.media_task import MediaTask

logger = logging.getLogger(__name__)

MEDIA_QUEUE_NAME = "media_tasks"
RECOVERABLE_STATUSES = ("pending", "downloading", "processing")


def get_redis_connection() -> Redis:
    """Build Redis connection used by RQ."""
    return Redis.from_url(settings.REDIS_URL)


def get_media_queue() -> Queue:
    """Return the configured media task queue."""
    return Queue(
        name=MEDIA_QUEUE_NAME,
        connection=get_redis_connection(),
        default_timeout=int(settings.QUEUE_JOB_TIMEOUT_SECONDS),
    )


def media_job_id(task_id: str) -> str:
    return f"media-task:{task_id}"


def build_task_message(
    task_id: str,
    url: str,
    output_type: str,
    user_id: Optional[str] = None,
) -> Dict[str, Any]:
    return {"taskId": task_id, "url": url, "outputType": output_type, "userId": user_id}


def enqueue_media_task(message: Dict[str, Any]) -> Job:
    """Enqueue one media task message with bounded retry and a hard job deadline."""
    intervals = [int(value) for value in settings.MEDIA_RETRY_INTERVALS_SECONDS]
    queue = get_media_queue()
    return queue.enqueue(
        "services.media_worker.process_media_task",
        message,
        job_id=media_job_id(message["taskId"]),
        retry=Retry(max=len(intervals), interval=intervals) if intervals else None,
        job_timeout=int(settings.QUEUE_JOB_TIMEOUT_SECONDS),
        result_ttl=86400,
        failure_ttl=86400,
    )


async def recover_stalled_media_tasks(max_age_minutes: int = 15) -> int:
    """Requeue tasks left pending or in flight after restarts/worker interruptions."""
    cutoff = datetime.now(timezone.utc) - timedelta(minutes=max(max_age_minutes, 1))
    async with async_session_maker() as db:
        result = await db.execute(
            select(MediaTask).where(
                MediaTask.status.in_(RECOVERABLE_STATUSES),
                MediaTask.updated_at < cutoff,
            )
        )
        tasks = result.scalars().all()

    requeued = 0
    for task in tasks:
        try:
            enqueue_media_task(build_task_message(task.id, task.source_url, task.output_type, task.user_id))
        except Exception as exc:
            logger.warning("Could not requeue stalled media task %s: %s", task.id, exc)
            continue
        requeued += 1
    return requeued
