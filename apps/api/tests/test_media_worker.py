import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import update

from conftest import TEST_USER_ID, FakeResolver, FakeUploader, create_funded_task, make_deps, media_result
from models.media_task import MediaTask
from services.credits import get_credit_balance, get_refund_for
from services.media_tasks import as_utc, claim_task, get_task, mark_task_failed, update_task
from services.media_url import generate_video_fingerprint
from services.media_worker import (
    PROCESSING_WAIT_MESSAGE,
    SOFT_TIMEOUT_MESSAGE,
    WorkerAction,
    process_media_task_async,
)
from services.providers import (
    FailureReason,
    ProviderAttempt,
    ProviderChainExhaustedError,
    ProviderProcessingError,
)
from services.video_cache import find_valid_video_cache, set_video_cache


YOUTUBE_URL = "https://www.youtube.com/watch?v=dQw4w9WgXcQ"
TIKTOK_URL = "https://www.tiktok.com/@user/video/7234567890"


def _message(task, url=None):
    return {"taskId": task.id, "url": url or task.source_url, "outputType": task.output_type, "userId": TEST_USER_ID}


async def _load(session_maker, task_id):
    async with session_maker() as db:
        return await get_task(db, task_id)


async def _force(session_maker, task_id, **values):
    """Write columns directly, without bumping version or updated_at."""
    async with session_maker() as db:
        await db.execute(update(MediaTask).where(MediaTask.id == task_id).values(**values))
        await db.commit()


@pytest.mark.asyncio
async def test_subtitle_task_extracts_plain_transcript(session_maker):
    task = await create_funded_task(session_maker, YOUTUBE_URL, "subtitle")
    transcript = "x" * 500
    resolver = FakeResolver(media_result(subtitle_raw=transcript, title="T" * 800))
    deps = make_deps(session_maker, resolver=resolver)

    outcome = await process_media_task_async(_message(task), deps)
    await deps.background.drain()

    assert outcome.action is WorkerAction.ACK
    assert outcome.status == "extracted"
    assert resolver.calls == [{"url": YOUTUBE_URL, "output_type": "subtitle"}]

    stored = await _load(session_maker, task.id)
    assert stored.status == "extracted"
    assert stored.progress == 100
    assert len(stored.subtitle_raw) == 500
    assert stored.subtitle_char_count == 500
    assert stored.subtitle_line_count == 1
    assert stored.video_url_internal is None
    assert len(stored.title) == 500
    assert stored.author == "Someone"
    assert (stored.likes, stored.views, stored.shares) == (10, 100, 1)
    assert stored.duration == 63
    assert stored.source_lang == "auto"
    assert stored.attempts == 1
    assert stored.error_message is None


@pytest.mark.asyncio
async def test_video_task_uses_live_cache_without_calling_resolver(session_maker):
    task = await create_funded_task(session_maker, "https://youtu.be/dQw4w9WgXcQ", "video", cost=15)
    async with session_maker() as db:
        await set_video_cache(
            generate_video_fingerprint(YOUTUBE_URL),
            db,
            original_url=YOUTUBE_URL,
            download_url="https://cdn.example.com/cached.mp4",
            platform="youtube",
            expires_in_hours=12,
        )
    resolver = FakeResolver()
    uploader = FakeUploader(key=None)
    deps = make_deps(session_maker, resolver=resolver, uploader=uploader)

    outcome = await process_media_task_async(_message(task), deps)

    assert outcome.status == "extracted"
    assert resolver.calls == []
    assert uploader.calls == ["https://cdn.example.com/cached.mp4"]
    stored = await _load(session_maker, task.id)
    assert stored.status == "extracted"
    assert stored.progress == 100
    assert stored.video_url == "https://cdn.example.com/cached.mp4"
    assert stored.video_url_internal == "original:https://cdn.example.com/cached.mp4"


@pytest.mark.asyncio
async def test_duplicate_delivery_while_processing_does_not_touch_row(session_maker):
    task = await create_funded_task(session_maker, YOUTUBE_URL, "subtitle")
    async with session_maker() as db:
        await update_task(db, task.id, status="processing", progress=20)
    await _force(session_maker, task.id, updated_at=datetime.now(timezone.utc) - timedelta(seconds=5))
    before = await _load(session_maker, task.id)
    resolver = FakeResolver()

    outcome = await process_media_task_async(_message(task), make_deps(session_maker, resolver=resolver))

    assert outcome.action is WorkerAction.ACK
    assert resolver.calls == []
    after = await _load(session_maker, task.id)
    assert after.version == before.version
    assert after.status == "processing"
    assert after.progress == 20
    assert as_utc(after.updated_at) == as_utc(before.updated_at)


@pytest.mark.asyncio
async def test_exhausted_providers_fail_task_and_refund(session_maker):
    task = await create_funded_task(session_maker, YOUTUBE_URL, "subtitle")
    attempts = [
        ProviderAttempt(provider=name, reason=FailureReason.HTTP_ERROR, message="HTTP 500")
        for name in ("first", "second", "third")
    ]
    resolver = FakeResolver(ProviderChainExhaustedError("youtube", "subtitle", attempts))

    outcome = await process_media_task_async(_message(task), make_deps(session_maker, resolver=resolver))

    assert outcome.action is WorkerAction.ACK
    assert outcome.status == "failed"
    stored = await _load(session_maker, task.id)
    assert stored.status == "failed"
    assert stored.progress == 0
    assert "All youtube subtitle providers failed" in stored.error_message
    async with session_maker() as db:
        refund = await get_refund_for(stored.credit_id, db)
        assert refund is not None
        assert refund.delta_credits == 10
        assert await get_credit_balance(TEST_USER_ID, db) == 30


@pytest.mark.asyncio
async def test_processing_result_requests_retry_then_resumes(session_maker):
    task = await create_funded_task(session_maker, TIKTOK_URL, "subtitle")
    resolver = FakeResolver(
        ProviderProcessingError("tiktok-reel-ai"),
        media_result(platform="tiktok", subtitle_raw="finally ready"),
    )
    deps = make_deps(session_maker, resolver=resolver)

    first = await process_media_task_async(_message(task), deps)

    assert first.action is WorkerAction.RETRY
    assert first.retry_after_seconds == 15
    parked = await _load(session_maker, task.id)
    assert parked.status == "processing"
    assert parked.progress == 30
    assert parked.error_message == PROCESSING_WAIT_MESSAGE
    async with session_maker() as db:
        assert await get_refund_for(parked.credit_id, db) is None

    second = await process_media_task_async(_message(task), deps)

    assert second.action is WorkerAction.ACK
    stored = await _load(session_maker, task.id)
    assert stored.status == "extracted"
    assert stored.subtitle_raw == "finally ready"
    assert stored.attempts == 2
    assert stored.error_message is None


@pytest.mark.asyncio
async def test_empty_tiktok_transcript_is_treated_as_processing(session_maker):
    task = await create_funded_task(session_maker, TIKTOK_URL, "subtitle")
    resolver = FakeResolver(media_result(platform="tiktok", subtitle_raw="   "))

    outcome = await process_media_task_async(_message(task), make_deps(session_maker, resolver=resolver))

    assert outcome.action is WorkerAction.RETRY
    stored = await _load(session_maker, task.id)
    assert stored.status == "processing"
    assert stored.error_message == PROCESSING_WAIT_MESSAGE


@pytest.mark.asyncio
async def test_soft_timeout_requests_retry(session_maker):
    class SlowResolver:
        async def fetch(self, url, output_type="subtitle"):
            await asyncio.sleep(5)

    task = await create_funded_task(session_maker, YOUTUBE_URL, "subtitle")
    deps = make_deps(session_maker, resolver=SlowResolver(), soft_timeout_seconds=0.05)

    outcome = await process_media_task_async(_message(task), deps)

    assert outcome.action is WorkerAction.RETRY
    stored = await _load(session_maker, task.id)
    assert stored.status == "processing"
    assert stored.progress == 25
    assert stored.error_message == SOFT_TIMEOUT_MESSAGE


@pytest.mark.asyncio
async def test_spent_retry_budget_parks_task_without_failing(session_maker):
    task = await create_funded_task(session_maker, TIKTOK_URL, "subtitle")
    resolver = FakeResolver(*[ProviderProcessingError("tiktok-reel-ai") for _ in range(5)])
    deps = make_deps(session_maker, resolver=resolver)

    outcomes = []
    for _ in range(5):
        outcome = await process_media_task_async(_message(task), deps)
        stored = await _load(session_maker, task.id)
        outcomes.append((outcome.action, stored.status))

    assert outcomes[:3] == [(WorkerAction.RETRY, "processing")] * 3
    assert outcomes[3:] == [(WorkerAction.ACK, "processing")] * 2
    stored = await _load(session_maker, task.id)
    assert stored.error_message == PROCESSING_WAIT_MESSAGE
    async with session_maker() as db:
        assert await get_refund_for(stored.credit_id, db) is None


@pytest.mark.asyncio
async def test_stale_in_flight_task_is_reprocessed(session_maker):
    task = await create_funded_task(session_maker, YOUTUBE_URL, "subtitle")
    async with session_maker() as db:
        await update_task(db, task.id, status="downloading", progress=10)
    await _force(session_maker, task.id, updated_at=datetime.now(timezone.utc) - timedelta(seconds=700))
    resolver = FakeResolver(media_result(subtitle_raw="recovered"))

    outcome = await process_media_task_async(_message(task), make_deps(session_maker, resolver=resolver))

    assert outcome.status == "extracted"
    assert (await _load(session_maker, task.id)).subtitle_raw == "recovered"


@pytest.mark.asyncio
async def test_terminal_tasks_ignore_redelivery(session_maker):
    task = await create_funded_task(session_maker, YOUTUBE_URL, "subtitle")
    async with session_maker() as db:
        await update_task(db, task.id, status="completed", progress=100)
    before = await _load(session_maker, task.id)
    resolver = FakeResolver()

    outcome = await process_media_task_async(_message(task), make_deps(session_maker, resolver=resolver))

    assert outcome.action is WorkerAction.ACK
    assert resolver.calls == []
    assert (await _load(session_maker, task.id)).version == before.version


@pytest.mark.asyncio
async def test_settled_failure_is_not_reprocessed(session_maker):
    task = await create_funded_task(session_maker, YOUTUBE_URL, "subtitle")
    async with session_maker() as db:
        await mark_task_failed(db, task.id, "boom")
    resolver = FakeResolver()

    outcome = await process_media_task_async(_message(task), make_deps(session_maker, resolver=resolver))

    assert outcome.status == "failed"
    assert resolver.calls == []
    async with session_maker() as db:
        assert await get_credit_balance(TEST_USER_ID, db) == 30


@pytest.mark.asyncio
async def test_failed_task_with_held_debit_may_be_retried(session_maker):
    task = await create_funded_task(session_maker, YOUTUBE_URL, "subtitle")
    async with session_maker() as db:
        await update_task(db, task.id, status="failed", error_message="worker crashed")
    resolver = FakeResolver(media_result(subtitle_raw="second time lucky"))

    outcome = await process_media_task_async(_message(task), make_deps(session_maker, resolver=resolver))

    assert outcome.status == "extracted"
    stored = await _load(session_maker, task.id)
    assert stored.status == "extracted"
    assert stored.error_message is None


@pytest.mark.asyncio
async def test_claim_is_a_compare_and_swap(session_maker):
    task = await create_funded_task(session_maker, YOUTUBE_URL, "subtitle")
    first_reader = await _load(session_maker, task.id)
    second_reader = await _load(session_maker, task.id)

    async with session_maker() as db:
        assert await claim_task(db, first_reader) is True
    async with session_maker() as db:
        assert await claim_task(db, second_reader) is False

    stored = await _load(session_maker, task.id)
    assert stored.status == "downloading"
    assert stored.attempts == 1
    assert stored.version == task.version + 1


@pytest.mark.asyncio
async def test_malformed_and_unknown_deliveries_are_acknowledged(session_maker):
    resolver = FakeResolver()
    deps = make_deps(session_maker, resolver=resolver)

    missing = await process_media_task_async({"url": YOUTUBE_URL}, deps)
    unknown = await process_media_task_async({"taskId": "nope", "url": YOUTUBE_URL}, deps)

    assert missing.action is WorkerAction.ACK
    assert "Missing required parameters" in missing.message
    assert unknown.action is WorkerAction.ACK
    assert unknown.message == "Task not found"
    assert resolver.calls == []


@pytest.mark.asyncio
async def test_video_task_uploads_and_caches_locator(session_maker):
    task = await create_funded_task(session_maker, YOUTUBE_URL, "video", cost=15)
    resolver = FakeResolver(media_result(video_url="https://rr1.googlevideo.com/clip.mp4"))
    uploader = FakeUploader(key="videos/clip.mp4")
    deps = make_deps(session_maker, resolver=resolver, uploader=uploader)

    outcome = await process_media_task_async(_message(task), deps)
    await deps.background.drain()

    assert outcome.status == "extracted"
    stored = await _load(session_maker, task.id)
    assert stored.video_url == "https://rr1.googlevideo.com/clip.mp4"
    assert stored.video_url_internal == "r2:videos/clip.mp4"
    remaining = as_utc(stored.expires_at) - datetime.now(timezone.utc)
    assert timedelta(hours=23) < remaining <= timedelta(hours=24)

    async with session_maker() as db:
        cached = await find_valid_video_cache(generate_video_fingerprint(YOUTUBE_URL), db)
    assert cached.download_url == "https://rr1.googlevideo.com/clip.mp4"


@pytest.mark.asyncio
async def test_detached_upload_performs_the_terminal_write(session_maker):
    task = await create_funded_task(session_maker, TIKTOK_URL, "video", cost=15)
    resolver = FakeResolver(media_result(platform="tiktok", video_url="https://v16.tiktokcdn.com/clip.mp4"))
    uploader = FakeUploader(key=None)
    deps = make_deps(session_maker, resolver=resolver, uploader=uploader, upload_mode="detached")

    outcome = await process_media_task_async(_message(task), deps)

    assert outcome.action is WorkerAction.ACK
    assert outcome.status == "downloading"
    await deps.background.drain()

    stored = await _load(session_maker, task.id)
    assert stored.status == "extracted"
    assert stored.progress == 100
    assert stored.video_url_internal == "original:https://v16.tiktokcdn.com/clip.mp4"
    remaining = as_utc(stored.expires_at) - datetime.now(timezone.utc)
    assert remaining <= timedelta(hours=2)
