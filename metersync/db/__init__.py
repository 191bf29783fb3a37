"""
Database init - Exports for services and routes
"""

from .base import Base, utc_now_iso, epoch_ms

__all__ = ["Base", "utc_now_iso", "epoch_ms"]
