# metersync/db/base.py

"""
Database Base Class and Timestamp Helpers
"""

from datetime import datetime, timezone
import time

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models - SINGLE SOURCE OF TRUTH."""
    pass


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string (record created_at format)."""
    return datetime.now(timezone.utc).isoformat()


def epoch_ms() -> int:
    """Current time in epoch milliseconds (sync metadata format)."""
    return int(time.time() * 1000)
