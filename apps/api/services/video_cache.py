"""Fingerprint-keyed cache of provider download locators."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import delete
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.video_cache import VideoCacheEntry

logger = logging.getLogger(__name__)

DIALECT_INSERTS = {
    "postgresql": postgresql_insert,
    "sqlite": sqlite_insert,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


async def find_valid_video_cache(fingerprint: str, db: AsyncSession) -> Optional[VideoCacheEntry]:
    """Return the entry only while ``now < expires_at``."""
    result = await db.execute(
        select(VideoCacheEntry).where(
            VideoCacheEntry.id == fingerprint,
            VideoCacheEntry.expires_at > _utcnow(),
        )
    )
    return result.scalar_one_or_none()


async def set_video_cache(
    fingerprint: str,
    db: AsyncSession,
    *,
    original_url: str,
    download_url: str,
    platform: str,
    expires_in_hours: int,
) -> None:
    """Upsert keyed by fingerprint; concurrent writers resolve last-writer-wins."""
    now = _utcnow()
    values = {
        "id": fingerprint,
        "original_url": original_url[:2000],
        "download_url": download_url[:4000],
        "platform": platform,
        "expires_at": now + timedelta(hours=max(int(expires_in_hours), 0)),
        "updated_at": now,
    }
    insert_factory = DIALECT_INSERTS.get(db.get_bind().dialect.name)
    if insert_factory is not None:
        stmt = insert_factory(VideoCacheEntry).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[VideoCacheEntry.id],
            set_={
                "original_url": stmt.excluded.original_url,
                "download_url": stmt.excluded.download_url,
                "platform": stmt.excluded.platform,
                "expires_at": stmt.excluded.expires_at,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        await db.execute(stmt)
    else:
        existing = await db.get(VideoCacheEntry, fingerprint)
        if existing is None:
            db.add(VideoCacheEntry(**values))
        else:
            for key, value in values.items():
                setattr(existing, key, value)
    await db.commit()
    logger.info("Cached %s download locator for fingerprint %s", platform, fingerprint[:12])


async def delete_expired_cache_entries(db: AsyncSession) -> int:
    result = await db.execute(delete(VideoCacheEntry).where(VideoCacheEntry.expires_at <= _utcnow()))
    await db.commit()
    deleted = int(result.rowcount or 0)
    if deleted:
        logger.info("Deleted %s expired video cache entries", deleted)
    return deleted
