"""Transcript rewriting with an OpenAI chat model."""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from openai import OpenAI
from sqlalchemy.ext.asyncio import async_sessionmaker

from config import settings
from database import async_session_maker
from services.media_tasks import get_task, update_task

logger = logging.getLogger(__name__)

REWRITE_READY_STATUSES = ("extracted", "completed")
MAX_TRANSCRIPT_CHARS = 12000


class RewriteUnavailableError(RuntimeError):
    """Raised when no usable OpenAI key is configured."""


def get_openai_client(api_key: str) -> Optional[OpenAI]:
    """Get OpenAI client, handling placeholders."""
    if not api_key or "your_" in api_key or api_key == "test-key":
        return None
    return OpenAI(api_key=api_key)


def _build_messages(transcript: str, style: str, target_lang: str) -> list:
    system = (
        "You rewrite short-form video transcripts into new scripts. "
        "Respond with a JSON object with keys 'en' (the rewritten script in English) "
        "and 'target' (the same script translated to the requested language)."
    )
    user = (
        f"Style: {style}\n"
        f"Target language: {target_lang}\n\n"
        f"Transcript:\n{transcript[:MAX_TRANSCRIPT_CHARS]}"
    )
    return [{"role": "system", "content": system}, {"role": "user", "content": user}]


def rewrite_transcript(
    transcript: str,
    *,
    style: str,
    target_lang: str,
    client: Optional[OpenAI] = None,
) -> Dict[str, str]:
    """Blocking rewrite call. Returns ``{"en": ..., "target": ...}``."""
    client = client or get_openai_client(settings.OPENAI_API_KEY)
    if client is None:
        raise RewriteUnavailableError("OPENAI_API_KEY is not configured")

    response = client.chat.completions.create(
        model=settings.OPENAI_REWRITE_MODEL,
        messages=_build_messages(transcript, style, target_lang),
        response_format={"type": "json_object"},
        temperature=0.7,
    )
    content = response.choices[0].message.content or "{}"
    try:
        parsed = json.loads(content)
    except json.JSONDecodeError:
        parsed = {"en": content, "target": content}
    english = str(parsed.get("en") or "").strip()
    target = str(parsed.get("target") or english).strip()
    if not english:
        raise ValueError("Model returned an empty rewrite")
    return {"en": english, "target": target}


async def run_rewrite_job(
    task_id: str,
    *,
    style: str,
    target_lang: str,
    client: Optional[OpenAI] = None,
    session_maker: Optional[async_sessionmaker] = None,
    restore_status: str = "extracted",
) -> Optional[Dict[str, Any]]:
    """
    Background rewrite: append the script and mark ``completed``.

    On failure the task goes back to ``restore_status`` with the error recorded.
    The extraction it already paid for stays intact and is never re-run.
    """
    session_maker = session_maker or async_session_maker
    async with session_maker() as db:
        task = await get_task(db, task_id)
    if task is None:
        logger.error("Rewrite requested for missing media task %s", task_id)
        return None

    try:
        result = await asyncio.to_thread(
            rewrite_transcript,
            task.subtitle_raw or "",
            style=style,
            target_lang=target_lang,
            client=client,
        )
    except Exception as exc:
        logger.exception("Rewrite failed for media task %s: %s", task_id, exc)
        async with session_maker() as db:
            await update_task(
                db,
                task_id,
                status=restore_status,
                progress=100,
                error_message=f"Rewrite failed: {exc}",
            )
        return None

    entry = {
        "style": style,
        "en": result["en"],
        "target": result["target"],
        "lang": target_lang,
        "created_at": datetime.now(timezone.utc).isoformat(),
    }
    async with session_maker() as db:
        current = await get_task(db, task_id)
        scripts = list((current.rewritten_scripts if current else None) or [])
        scripts.append(entry)
        await update_task(db, task_id, status="completed", progress=100, rewritten_scripts=scripts, error_message=None)
    logger.info("Media task %s rewritten in %s style", task_id, style)
    return entry
