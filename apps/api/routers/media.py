"""Media task router: submission, status, worker push delivery and rewrites."""

from __future__ import annotations

import logging
import uuid
from typing import Any, Callable, Dict, Literal, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from openai import OpenAI
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from database import get_db
from models.user import User
from services.background import BackgroundWork
from services.credits import consume_credits, get_credit_summary, media_task_cost
from services.media_queue import build_task_message, enqueue_media_task
from services.media_tasks import create_task, get_task, mark_task_failed, serialize_task, update_task
from services.media_url import detect_platform, is_supported_media_url
from services.media_worker import WorkerDependencies, build_worker_dependencies, process_media_task_async
from services.rewrite import REWRITE_READY_STATUSES, get_openai_client, run_rewrite_job
from services.video_storage import StorageLocator, get_video_download_url

logger = logging.getLogger(__name__)

router = APIRouter()


class SubmitMediaTaskRequest(BaseModel):
    url: str = Field(min_length=8, max_length=2000)
    output_type: Literal["subtitle", "video"] = "subtitle"
    target_lang: Optional[str] = Field(default=None, max_length=16)
    user_id: str = Field(min_length=1, max_length=128)


class RewriteRequest(BaseModel):
    task_id: str
    style: str = Field(default="viral", min_length=1, max_length=64)
    target_lang: str = Field(default="en", min_length=2, max_length=16)


def get_background_work(request: Request) -> BackgroundWork:
    background = getattr(request.app.state, "background", None)
    if background is None:
        background = BackgroundWork()
        request.app.state.background = background
    return background


def get_worker_dependencies(request: Request) -> WorkerDependencies:
    deps = getattr(request.app.state, "worker_deps", None)
    if deps is None:
        deps = build_worker_dependencies(background=get_background_work(request))
        request.app.state.worker_deps = deps
    return deps


def get_task_enqueuer() -> Callable[[Dict[str, Any]], Any]:
    return enqueue_media_task


def get_rewrite_client() -> Optional[OpenAI]:
    return get_openai_client(settings.OPENAI_API_KEY)


async def _ensure_user(db: AsyncSession, user_id: str) -> User:
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user:
        return user
    user = User(id=user_id, email=f"{user_id}@local.invalid")
    db.add(user)
    await db.commit()
    return user


def _task_payload(task) -> Dict[str, Any]:
    payload = serialize_task(task)
    payload["download_url"] = get_video_download_url(StorageLocator.parse(task.video_url_internal)) or task.video_url
    return payload


@router.post("/submit", status_code=202)
async def submit_media_task(
    request: SubmitMediaTaskRequest,
    enqueue: Callable[[Dict[str, Any]], Any] = Depends(get_task_enqueuer),
    db: AsyncSession = Depends(get_db),
):
    """Debit credits, create a pending task and hand it to the queue."""
    url = request.url.strip()
    platform = detect_platform(url)
    if not is_supported_media_url(url) or platform is None:
        raise HTTPException(status_code=422, detail="Only YouTube and TikTok URLs are supported")

    await _ensure_user(db, request.user_id)
    task_id = str(uuid.uuid4())
    debit = await consume_credits(
        request.user_id,
        db,
        cost=media_task_cost(request.output_type),
        reason=f"Media {request.output_type} extraction",
        reference_type="media_task",
        reference_id=task_id,
    )
    task = await create_task(
        db,
        task_id=task_id,
        user_id=request.user_id,
        platform=platform,
        output_type=request.output_type,
        source_url=url,
        target_lang=request.target_lang,
        credit_id=debit["credit_id"],
        credits_charged=debit["charged"],
    )

    try:
        job = enqueue(build_task_message(task.id, url, request.output_type, request.user_id))
    except Exception as exc:
        logger.exception("Could not enqueue media task %s: %s", task.id, exc)
        await mark_task_failed(db, task.id, f"Queue unavailable: {exc}")
        raise HTTPException(
            status_code=503,
            detail="Media queue unavailable. Check Redis/worker availability and retry.",
        ) from exc

    queue_job_id = getattr(job, "id", None)
    if queue_job_id:
        await update_task(db, task.id, queue_job_id=str(queue_job_id))
    return {
        "task_id": task.id,
        "status": "pending",
        "platform": platform,
        "output_type": request.output_type,
        "credits_charged": debit["charged"],
        "balance_after": debit["balance_after"],
    }


@router.get("/status/{task_id}")
async def get_media_task_status(task_id: str, db: AsyncSession = Depends(get_db)):
    task = await get_task(db, task_id)
    if task is None:
        raise HTTPException(status_code=404, detail="Media task not found")
    return _task_payload(task)


@router.post("/worker")
async def receive_worker_delivery(
    payload: Dict[str, Any],
    x_worker_secret: Optional[str] = Header(default=None),
    deps: WorkerDependencies = Depends(get_worker_dependencies),
):
    """
    Push-style delivery endpoint.

    2xx tells the queue to stop redelivering; 503 with ``Retry-After`` asks it
    to try again later.
    """
    if settings.WORKER_PUSH_SECRET and x_worker_secret != settings.WORKER_PUSH_SECRET:
        raise HTTPException(status_code=401, detail="Invalid worker secret")

    outcome = await process_media_task_async(payload, deps)
    if outcome.should_retry:
        return JSONResponse(
            status_code=503,
            content=outcome.as_dict(),
            headers={"Retry-After": str(outcome.retry_after_seconds)},
        )
    return outcome.as_dict()


@router.post("/rewrite", status_code=202)
async def rewrite_media_task(
    request: RewriteRequest,
    client: Optional[OpenAI] = Depends(get_rewrite_client),
    background: BackgroundWork = Depends(get_background_work),
    db: AsyncSession = Depends(get_db),
):
    task = await get_task(db, request.task_id)
    if task is None:
        raise HTTPException(status_code=404, detail="Media task not found")
    if task.status not in REWRITE_READY_STATUSES or not (task.subtitle_raw or "").strip():
        raise HTTPException(status_code=409, detail="Task has no extracted transcript to rewrite yet")
    if client is None:
        raise HTTPException(status_code=503, detail="Rewrite is unavailable: OPENAI_API_KEY is not configured")

    previous_status = task.status
    await update_task(db, task.id, status="processing", progress=50, error_message=None)
    background.submit(
        run_rewrite_job(
            task.id,
            style=request.style,
            target_lang=request.target_lang,
            client=client,
            restore_status=previous_status,
        ),
        label=f"Rewrite for media task {task.id}",
    )
    return {"task_id": task.id, "status": "processing", "style": request.style, "target_lang": request.target_lang}


@router.get("/credits/{user_id}")
async def get_media_credits(user_id: str, db: AsyncSession = Depends(get_db)):
    await _ensure_user(db, user_id)
    return await get_credit_summary(user_id, db)
