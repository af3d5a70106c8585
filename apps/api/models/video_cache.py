"""Video download URL cache model."""

from sqlalchemy import Column, DateTime, String
from sqlalchemy.sql import func

from database import Base


class VideoCacheEntry(Base):
    """Last known working download locator for a URL fingerprint."""

    __tablename__ = "video_cache"

    id = Column(String(64), primary_key=True)
    original_url = Column(String(2000), nullable=False)
    download_url = Column(String(4000), nullable=False)
    platform = Column(String, nullable=False, index=True)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
