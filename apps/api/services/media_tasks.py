"""Persistence helpers for the media task state machine."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.media_task import IN_FLIGHT_STATUSES, MEDIA_TASK_STATUSES, TERMINAL_SUCCESS_STATUSES, MediaTask
from services.credits import get_refund_for, refund_credits

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = {
    "status",
    "progress",
    "platform",
    "video_url",
    "video_url_internal",
    "expires_at",
    "subtitle_raw",
    "subtitle_char_count",
    "subtitle_line_count",
    "rewritten_scripts",
    "title",
    "author",
    "likes",
    "views",
    "shares",
    "duration",
    "thumbnail_url",
    "published_at",
    "source_lang",
    "error_message",
    "queue_job_id",
}


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; they are stored as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def seconds_since_update(task: MediaTask, now: Optional[datetime] = None) -> float:
    current = now or datetime.now(timezone.utc)
    updated = as_utc(task.updated_at) or as_utc(task.created_at)
    if updated is None:
        return 0.0
    return max((current - updated).total_seconds(), 0.0)


def is_terminal_success(task: MediaTask) -> bool:
    return task.status in TERMINAL_SUCCESS_STATUSES


def is_in_flight(task: MediaTask) -> bool:
    return task.status in IN_FLIGHT_STATUSES


async def get_task(db: AsyncSession, task_id: str) -> Optional[MediaTask]:
    result = await db.execute(
        select(MediaTask).where(MediaTask.id == task_id).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def create_task(
    db: AsyncSession,
    *,
    user_id: str,
    platform: str,
    output_type: str,
    source_url: str,
    target_lang: Optional[str] = None,
    credit_id: Optional[str] = None,
    credits_charged: int = 0,
    task_id: Optional[str] = None,
) -> MediaTask:
    now = datetime.now(timezone.utc)
    task = MediaTask(
        id=task_id or str(uuid.uuid4()),
        user_id=user_id,
        status="pending",
        progress=0,
        platform=platform,
        output_type=output_type,
        source_url=source_url,
        target_lang=target_lang,
        credit_id=credit_id,
        credits_charged=max(int(credits_charged), 0),
        attempts=0,
        version=0,
        created_at=now,
        updated_at=now,
    )
    db.add(task)
    await db.commit()
    await db.refresh(task)
    return task


def _clean_values(fields: Dict[str, Any]) -> Dict[str, Any]:
    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Unknown media task fields: {sorted(unknown)}")
    values = dict(fields)
    if "status" in values and values["status"] not in MEDIA_TASK_STATUSES:
        raise ValueError(f"Invalid media task status: {values['status']}")
    if values.get("progress") is not None:
        values["progress"] = max(0, min(int(values["progress"]), 100))
    if values.get("error_message") is not None:
        values["error_message"] = str(values["error_message"])[:1000]
    return values


async def update_task(
    db: AsyncSession,
    task_id: str,
    *,
    expected_version: Optional[int] = None,
    increment_attempts: bool = False,
    **fields: Any,
) -> bool:
    """
    Write only the given fields, bumping ``version`` and ``updated_at``.

    With ``expected_version`` the write is a compare-and-swap and returns
    False when another writer got there first.
    """
    values = _clean_values(fields)
    values["version"] = MediaTask.version + 1
    values["updated_at"] = datetime.now(timezone.utc)
    if increment_attempts:
        values["attempts"] = MediaTask.attempts + 1

    stmt = update(MediaTask).where(MediaTask.id == task_id)
    if expected_version is not None:
        stmt = stmt.where(MediaTask.version == expected_version)
    result = await db.execute(stmt.values(**values).execution_options(synchronize_session=False))
    await db.commit()
    return bool(result.rowcount)


async def claim_task(db: AsyncSession, task: MediaTask) -> bool:
    """Move a task into ``downloading`` only if nobody wrote to it since it was read."""
    return await update_task(
        db,
        task.id,
        expected_version=int(task.version or 0),
        increment_attempts=True,
        status="downloading",
        progress=10,
        error_message=None,
    )


async def mark_task_failed(db: AsyncSession, task_id: str, message: str) -> bool:
    """Terminal failure plus a refund of the debit that funded the task."""
    updated = await update_task(
        db,
        task_id,
        status="failed",
        progress=0,
        error_message=message or "Processing failed",
    )
    task = await get_task(db, task_id)
    if task is None:
        return False
    if task.credit_id:
        refund = await refund_credits(task.credit_id, db, reason=f"Refund for failed media task {task_id}")
        if refund is None:
            logger.warning("Media task %s failed but credit %s could not be refunded", task_id, task.credit_id)
    return updated


async def is_credit_refunded(db: AsyncSession, task: MediaTask) -> bool:
    if not task.credit_id:
        return False
    return await get_refund_for(task.credit_id, db) is not None


def serialize_task(task: MediaTask) -> Dict[str, Any]:
    return {
        "task_id": task.id,
        "user_id": task.user_id,
        "status": task.status,
        "progress": int(task.progress or 0),
        "platform": task.platform,
        "output_type": task.output_type,
        "source_url": task.source_url,
        "target_lang": task.target_lang,
        "title": task.title,
        "author": task.author,
        "likes": task.likes,
        "views": task.views,
        "shares": task.shares,
        "duration": task.duration,
        "thumbnail_url": task.thumbnail_url,
        "published_at": task.published_at.isoformat() if task.published_at else None,
        "source_lang": task.source_lang,
        "subtitle_raw": task.subtitle_raw,
        "subtitle_char_count": task.subtitle_char_count,
        "subtitle_line_count": task.subtitle_line_count,
        "video_url": task.video_url,
        "video_url_internal": task.video_url_internal,
        "expires_at": as_utc(task.expires_at).isoformat() if task.expires_at else None,
        "rewritten_scripts": list(task.rewritten_scripts or []),
        "error_message": task.error_message,
        "credits_charged": int(task.credits_charged or 0),
        "attempts": int(task.attempts or 0),
        "created_at": task.created_at.isoformat() if task.created_at else None,
        "updated_at": task.updated_at.isoformat() if task.updated_at else None,
    }
