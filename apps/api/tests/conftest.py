from datetime import datetime, timezone
from typing import Dict, List, Optional

import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from database import Base
import models  # noqa: F401
from models.user import User
from services.background import BackgroundWork
from services.credits import consume_credits
from services.media_tasks import create_task
from services.media_url import detect_platform
from services.media_worker import WorkerDependencies
from services.providers import NormalizedMediaResult
from services.video_storage import StorageKind, StorageLocator


TEST_USER_ID = "media-user"


class FakeResolver:
    """Resolver double: returns queued results or raises queued exceptions, recording every call."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls: List[Dict[str, str]] = []

    async def fetch(self, url: str, output_type: str = "subtitle") -> NormalizedMediaResult:
        self.calls.append({"url": url, "output_type": output_type})
        if not self.outcomes:
            raise AssertionError("Resolver called more often than expected")
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class FakeUploader:
    def __init__(self, key: Optional[str] = None):
        self.key = key
        self.calls: List[str] = []

    async def relocate(self, ephemeral_url: str) -> Optional[StorageLocator]:
        self.calls.append(ephemeral_url)
        if self.key is None:
            return None
        return StorageLocator(kind=StorageKind.R2, value=self.key)


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    db_path = tmp_path / "media_tasks.db"
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}")
    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with maker() as session:
        session.add(User(id=TEST_USER_ID, email=f"{TEST_USER_ID}@example.com"))
        await session.commit()

    yield maker
    await engine.dispose()


def make_deps(session_maker, resolver=None, uploader=None, **overrides) -> WorkerDependencies:
    values = {
        "resolver": resolver or FakeResolver(),
        "uploader": uploader or FakeUploader(),
        "session_maker": session_maker,
        "background": BackgroundWork(),
        "soft_timeout_seconds": 5.0,
        "processing_timeout_seconds": 600.0,
        "upload_mode": "inline",
        "cache_ttl_hours": 12,
        "retry_intervals": [15, 30, 60],
    }
    values.update(overrides)
    return WorkerDependencies(**values)


async def create_funded_task(session_maker, url: str, output_type: str = "subtitle", cost: int = 10):
    async with session_maker() as db:
        debit = await consume_credits(
            TEST_USER_ID,
            db,
            cost=cost,
            reason=f"Media {output_type} extraction",
            reference_type="media_task",
        )
        return await create_task(
            db,
            user_id=TEST_USER_ID,
            platform=detect_platform(url),
            output_type=output_type,
            source_url=url,
            credit_id=debit["credit_id"],
            credits_charged=debit["charged"],
        )


def media_result(platform: str = "youtube", **fields) -> NormalizedMediaResult:
    values = {
        "platform": platform,
        "provider": "primary",
        "title": "A video",
        "author": "Someone",
        "likes": 10,
        "views": 100,
        "shares": 1,
        "duration": 63,
        "published_at": datetime(2024, 5, 1, tzinfo=timezone.utc),
        "thumbnail_url": "https://img.example.com/thumb.jpg",
    }
    values.update(fields)
    return NormalizedMediaResult(**values)
