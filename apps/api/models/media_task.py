"""Media extraction task model."""

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid

from database import Base


MEDIA_TASK_STATUSES = ("pending", "downloading", "processing", "extracted", "completed", "failed")
TERMINAL_SUCCESS_STATUSES = ("extracted", "completed")
IN_FLIGHT_STATUSES = ("downloading", "processing")


class MediaTask(Base):
    """One extraction request, driven through its states by the queue worker."""

    __tablename__ = "media_tasks"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    status = Column(String, nullable=False, default="pending", index=True)
    progress = Column(Integer, nullable=False, default=0)
    platform = Column(String, nullable=False, index=True)
    output_type = Column(String, nullable=False, default="subtitle")
    source_url = Column(String, nullable=False)
    target_lang = Column(String, nullable=True)

    # Raw provider locator and its tagged, serialized storage form
    video_url = Column(String(2000), nullable=True)
    video_url_internal = Column(String(2000), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)

    subtitle_raw = Column(Text, nullable=True)
    subtitle_char_count = Column(Integer, nullable=True)
    subtitle_line_count = Column(Integer, nullable=True)
    rewritten_scripts = Column(JSON, nullable=True)

    title = Column(String(500), nullable=True)
    author = Column(String(255), nullable=True)
    likes = Column(Integer, nullable=True)
    views = Column(Integer, nullable=True)
    shares = Column(Integer, nullable=True)
    duration = Column(Integer, nullable=True)
    thumbnail_url = Column(String(1000), nullable=True)
    published_at = Column(DateTime(timezone=True), nullable=True)
    source_lang = Column(String, nullable=True)

    error_message = Column(String(1000), nullable=True)
    credit_id = Column(String, ForeignKey("credit_ledger.id"), nullable=True, index=True)
    credits_charged = Column(Integer, nullable=False, default=0)
    attempts = Column(Integer, nullable=False, default=0)
    version = Column(Integer, nullable=False, default=0)
    queue_job_id = Column(String, nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    user = relationship("User", back_populates="media_tasks")
