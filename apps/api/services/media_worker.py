"""Queue worker that drives media tasks through extraction."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from config import settings
from database import async_session_maker, engine
from models.media_task import MediaTask
from services.background import BackgroundWork
from services.field_normalization import (
    coerce_count,
    parse_duration_seconds,
    truncate_text,
    truncate_url,
)
from services.media_tasks import (
    claim_task,
    get_task,
    is_credit_refunded,
    is_in_flight,
    is_terminal_success,
    mark_task_failed,
    seconds_since_update,
    update_task,
)
from services.media_url import generate_video_fingerprint
from services.providers import (
    NormalizedMediaResult,
    ProviderFallbackResolver,
    ProviderProcessingError,
    build_default_resolver,
)
from services.providers.subtitles import subtitle_stats
from services.video_cache import find_valid_video_cache, set_video_cache
from services.video_storage import (
    DurableStorageUploader,
    build_storage_uploader,
    original_locator,
    resolve_video_locator,
)

logger = logging.getLogger(__name__)

PROCESSING_WAIT_MESSAGE = "Transcript is still being processed, please wait..."
SOFT_TIMEOUT_MESSAGE = "Provider call is taking longer than expected, will retry..."
RETRY_WAIT_MESSAGES = (PROCESSING_WAIT_MESSAGE, SOFT_TIMEOUT_MESSAGE)
LOCATOR_MAX_LENGTH = 2000


class WorkerAction(str, Enum):
    ACK = "ack"
    RETRY = "retry"


@dataclass(frozen=True)
class WorkerOutcome:
    """What the queue transport should do with a delivery. Business state lives in the task row."""

    action: WorkerAction
    message: str
    status: Optional[str] = None
    retry_after_seconds: Optional[int] = None

    @property
    def should_retry(self) -> bool:
        return self.action is WorkerAction.RETRY

    @classmethod
    def ack(cls, message: str, status: Optional[str] = None) -> "WorkerOutcome":
        return cls(action=WorkerAction.ACK, message=message, status=status)

    @classmethod
    def retry(cls, message: str, retry_after_seconds: int, status: str = "processing") -> "WorkerOutcome":
        return cls(
            action=WorkerAction.RETRY,
            message=message,
            status=status,
            retry_after_seconds=max(int(retry_after_seconds), 1),
        )

    def as_dict(self) -> Dict[str, Any]:
        return {
            "success": not self.should_retry,
            "action": self.action.value,
            "message": self.message,
            "status": self.status,
            "retry_after": self.retry_after_seconds,
        }


class MediaTaskRetryRequested(RuntimeError):
    """Raised from the RQ entrypoint so RQ's Retry policy redelivers the job."""


@dataclass(frozen=True)
class MediaTaskPayload:
    task_id: str
    url: str
    output_type: Optional[str] = None
    user_id: Optional[str] = None

    @classmethod
    def from_dict(cls, payload: Optional[Dict[str, Any]]) -> "MediaTaskPayload":
        data = payload or {}
        return cls(
            task_id=str(data.get("taskId") or data.get("task_id") or "").strip(),
            url=str(data.get("url") or "").strip(),
            output_type=data.get("outputType") or data.get("output_type"),
            user_id=data.get("userId") or data.get("user_id"),
        )


@dataclass
class WorkerDependencies:
    resolver: ProviderFallbackResolver
    uploader: DurableStorageUploader
    session_maker: async_sessionmaker = async_session_maker
    background: BackgroundWork = field(default_factory=BackgroundWork)
    soft_timeout_seconds: float = 45.0
    processing_timeout_seconds: float = 600.0
    upload_mode: str = "inline"
    cache_ttl_hours: int = 12
    retry_intervals: List[int] = field(default_factory=lambda: [15, 30, 60, 120, 240])

    @property
    def max_attempts(self) -> int:
        return len(self.retry_intervals) + 1

    def retry_after(self, attempts_so_far: int) -> int:
        if not self.retry_intervals:
            return 30
        index = min(max(int(attempts_so_far), 0), len(self.retry_intervals) - 1)
        return int(self.retry_intervals[index])


def build_worker_dependencies(
    *,
    session_maker: Optional[async_sessionmaker] = None,
    background: Optional[BackgroundWork] = None,
) -> WorkerDependencies:
    """Construct the resolver and uploader once and hand them to the worker."""
    return WorkerDependencies(
        resolver=build_default_resolver(settings),
        uploader=build_storage_uploader(),
        session_maker=session_maker or async_session_maker,
        background=background or BackgroundWork(),
        soft_timeout_seconds=float(settings.PROVIDER_SOFT_TIMEOUT_SECONDS),
        processing_timeout_seconds=float(settings.MEDIA_PROCESSING_TIMEOUT_SECONDS),
        upload_mode=settings.STORAGE_UPLOAD_MODE,
        cache_ttl_hours=int(settings.VIDEO_CACHE_TTL_HOURS),
        retry_intervals=list(settings.MEDIA_RETRY_INTERVALS_SECONDS),
    )


async def _write(deps: WorkerDependencies, task_id: str, **fields: Any) -> None:
    async with deps.session_maker() as db:
        await update_task(db, task_id, **fields)


async def _check_idempotency(task: MediaTask, deps: WorkerDependencies) -> Optional[WorkerOutcome]:
    """Return an ACK when this delivery must not touch the task, else None to proceed."""
    if is_terminal_success(task):
        logger.info("Media task %s already %s, skipping duplicate delivery", task.id, task.status)
        return WorkerOutcome.ack("Task already completed", status=task.status)

    if is_in_flight(task) and task.error_message in RETRY_WAIT_MESSAGES:
        logger.info("Media task %s is parked for a retry, resuming", task.id)
    elif is_in_flight(task):
        elapsed = seconds_since_update(task)
        if elapsed < deps.processing_timeout_seconds:
            logger.info(
                "Media task %s is %s (updated %.0fs ago), skipping duplicate delivery",
                task.id,
                task.status,
                elapsed,
            )
            return WorkerOutcome.ack("Task is already processing", status=task.status)
        logger.warning("Media task %s stuck in %s for %.0fs, allowing retry", task.id, task.status, elapsed)

    if task.status == "failed":
        async with deps.session_maker() as db:
            refunded = await is_credit_refunded(db, task)
        if refunded or not task.credit_id:
            logger.info("Media task %s already failed and settled, skipping delivery", task.id)
            return WorkerOutcome.ack("Task already failed", status="failed")
        logger.info(
            "Media task %s previously failed (%s), allowing retry",
            task.id,
            (task.error_message or "")[:100],
        )
    return None


def _metadata_fields(media: NormalizedMediaResult) -> Dict[str, Any]:
    fields: Dict[str, Any] = {
        "progress": 30,
        "platform": media.platform,
        "source_lang": media.source_lang or "auto",
        "likes": coerce_count(media.likes),
        "views": coerce_count(media.views),
        "shares": coerce_count(media.shares),
    }
    title = truncate_text(media.title, 500)
    if title:
        fields["title"] = title
    author = truncate_text(media.author, 255)
    if author:
        fields["author"] = author
    duration = parse_duration_seconds(media.duration)
    if duration is not None:
        fields["duration"] = duration
    thumbnail_url = truncate_url(media.thumbnail_url, 1000)
    if thumbnail_url:
        fields["thumbnail_url"] = thumbnail_url
    if media.published_at is not None:
        fields["published_at"] = media.published_at
    return fields


def _subtitle_fields(subtitle_raw: Optional[str], progress: int) -> Dict[str, Any]:
    char_count, line_count = subtitle_stats(subtitle_raw)
    return {
        "progress": progress,
        "subtitle_raw": subtitle_raw or None,
        "subtitle_char_count": char_count,
        "subtitle_line_count": line_count,
    }


async def _write_cache_entry(deps: WorkerDependencies, url: str, media: NormalizedMediaResult) -> None:
    async with deps.session_maker() as db:
        await set_video_cache(
            generate_video_fingerprint(url),
            db,
            original_url=url,
            download_url=media.video_url or "",
            platform=media.platform,
            expires_in_hours=deps.cache_ttl_hours,
        )


async def _complete_detached_upload(deps: WorkerDependencies, task_id: str, video_url: str) -> None:
    """The single terminal write for a detached upload, whichever way it ends."""
    try:
        locator, expires_at = await resolve_video_locator(deps.uploader, video_url)
    except Exception as exc:
        logger.warning("Detached upload for media task %s errored: %s", task_id, exc)
        locator, expires_at = original_locator(video_url)
    await _write(
        deps,
        task_id,
        video_url_internal=truncate_url(locator.serialize(), LOCATOR_MAX_LENGTH),
        expires_at=expires_at,
        status="extracted",
        progress=100,
    )
    logger.info("Media task %s extracted after detached upload (%s)", task_id, locator.kind.value)


async def _finish_video(
    deps: WorkerDependencies,
    task_id: str,
    video_url: str,
    subtitle_raw: Optional[str],
) -> WorkerOutcome:
    await _write(
        deps,
        task_id,
        status="downloading",
        progress=40,
        video_url=truncate_url(video_url, LOCATOR_MAX_LENGTH),
    )

    if deps.upload_mode == "detached":
        if subtitle_raw:
            await _write(deps, task_id, **_subtitle_fields(subtitle_raw, 50))
        deps.background.submit(
            _complete_detached_upload(deps, task_id, video_url),
            label=f"Detached upload for media task {task_id}",
        )
        return WorkerOutcome.ack("Task accepted, upload continues in background", status="downloading")

    locator, expires_at = await resolve_video_locator(deps.uploader, video_url)
    await _write(
        deps,
        task_id,
        progress=70,
        video_url_internal=truncate_url(locator.serialize(), LOCATOR_MAX_LENGTH),
        expires_at=expires_at,
    )
    if subtitle_raw:
        await _write(deps, task_id, **_subtitle_fields(subtitle_raw, 90))
    await _write(deps, task_id, status="extracted", progress=100)
    logger.info("Media task %s extracted with %s locator", task_id, locator.kind.value)
    return WorkerOutcome.ack("Task completed successfully", status="extracted")


async def _run_pipeline(task: MediaTask, url: str, output_type: str, deps: WorkerDependencies) -> WorkerOutcome:
    task_id = task.id

    if output_type == "video":
        fingerprint = generate_video_fingerprint(url)
        async with deps.session_maker() as db:
            cached = await find_valid_video_cache(fingerprint, db)
        if cached is not None:
            logger.info("Media task %s cache hit for %s", task_id, fingerprint[:12])
            await _write(deps, task_id, progress=30, platform=cached.platform)
            return await _finish_video(deps, task_id, cached.download_url, None)

    await _write(deps, task_id, status="processing", progress=20)
    media = await asyncio.wait_for(deps.resolver.fetch(url, output_type), timeout=deps.soft_timeout_seconds)

    if output_type == "subtitle" and media.platform == "tiktok" and not (media.subtitle_raw or "").strip():
        raise ProviderProcessingError(media.provider, "Empty TikTok transcript, provider still processing")

    if output_type == "video" and media.video_url:
        deps.background.submit(
            _write_cache_entry(deps, url, media),
            label=f"Video cache write for media task {task_id}",
        )

    await _write(deps, task_id, **_metadata_fields(media))

    if output_type == "video" and media.video_url:
        return await _finish_video(deps, task_id, media.video_url, media.subtitle_raw)

    await _write(deps, task_id, **_subtitle_fields(media.subtitle_raw, 90))
    await _write(deps, task_id, status="extracted", progress=100)
    logger.info("Media task %s extracted via %s", task_id, media.provider)
    return WorkerOutcome.ack("Task completed successfully", status="extracted")


async def _retry_or_fail(
    deps: WorkerDependencies,
    task: MediaTask,
    *,
    progress: int,
    message: str,
) -> WorkerOutcome:
    attempts = int(task.attempts or 0) + 1
    await _write(deps, task.id, status="processing", progress=progress, error_message=message)
    if attempts >= deps.max_attempts:
        # Still non-terminal: stalled-task recovery or a stale redelivery picks it up later.
        logger.warning(
            "Media task %s still waiting on its provider after %s attempts, no further redelivery",
            task.id,
            attempts,
        )
        return WorkerOutcome.ack(f"Provider still busy after {attempts} attempts", status="processing")
    return WorkerOutcome.retry(message, deps.retry_after(attempts - 1))


async def process_media_task_async(
    payload: Dict[str, Any],
    deps: Optional[WorkerDependencies] = None,
) -> WorkerOutcome:
    """Handle one at-least-once delivery of a media task message."""
    message = MediaTaskPayload.from_dict(payload)
    if not message.task_id or not message.url:
        logger.error("Media task delivery missing taskId/url: %s", payload)
        return WorkerOutcome.ack("Missing required parameters: taskId, url")

    deps = deps or build_worker_dependencies()
    async with deps.session_maker() as db:
        task = await get_task(db, message.task_id)
    if task is None:
        logger.error("Media task %s not found", message.task_id)
        return WorkerOutcome.ack("Task not found")

    skip = await _check_idempotency(task, deps)
    if skip is not None:
        return skip

    async with deps.session_maker() as db:
        claimed = await claim_task(db, task)
    if not claimed:
        logger.info("Media task %s was claimed by a concurrent delivery", task.id)
        return WorkerOutcome.ack("Task claimed by another delivery")

    output_type = task.output_type or message.output_type or "subtitle"
    logger.info("Media task %s started (%s, attempt %s)", task.id, output_type, int(task.attempts or 0) + 1)
    try:
        return await _run_pipeline(task, message.url, output_type, deps)
    except ProviderProcessingError as exc:
        logger.info("Media task %s waiting on %s: %s", task.id, exc.provider, exc)
        return await _retry_or_fail(deps, task, progress=30, message=PROCESSING_WAIT_MESSAGE)
    except asyncio.TimeoutError:
        logger.warning("Media task %s hit the %.0fs provider soft timeout", task.id, deps.soft_timeout_seconds)
        return await _retry_or_fail(deps, task, progress=25, message=SOFT_TIMEOUT_MESSAGE)
    except Exception as exc:
        logger.exception("Media task %s failed: %s", task.id, exc)
        async with deps.session_maker() as db:
            await mark_task_failed(db, task.id, str(exc) or type(exc).__name__)
        return WorkerOutcome.ack("Task failed", status="failed")


async def _process_and_drain(payload: Dict[str, Any]) -> WorkerOutcome:
    deps = build_worker_dependencies()
    try:
        return await process_media_task_async(payload, deps)
    finally:
        await deps.background.drain(timeout=float(settings.STORAGE_UPLOAD_TIMEOUT_SECONDS))
        await engine.dispose()


def process_media_task(payload: Dict[str, Any]) -> Dict[str, Any]:
    """RQ worker entrypoint for media tasks."""
    outcome = asyncio.run(_process_and_drain(payload))
    if outcome.should_retry:
        raise MediaTaskRetryRequested(outcome.message)
    return outcome.as_dict()


__all__ = [
    "MediaTaskPayload",
    "MediaTaskRetryRequested",
    "WorkerAction",
    "WorkerDependencies",
    "WorkerOutcome",
    "build_worker_dependencies",
    "process_media_task",
    "process_media_task_async",
]
