"""Database models package."""

from .user import User
from .credit_ledger import CreditLedger
from .media_task import MediaTask
from .video_cache import VideoCacheEntry

__all__ = [
    "User",
    "CreditLedger",
    "MediaTask",
    "VideoCacheEntry",
]
