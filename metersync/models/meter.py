"""
Meter Replacement Records - Database Models

Tables:
  old_meter_data — meter removed during a field visit, queued for upload
  new_meter_data — meter installed during a field visit, queued for upload

Rows exist only while pending: a confirmed upload deletes the row.
"""
from __future__ import annotations

from enum import Enum
from typing import Optional

from sqlalchemy import Boolean, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from metersync.db.base import Base, utc_now_iso


class MeterCategory(str, Enum):
    EM  = "EM"
    MNR = "MNR"
    DC  = "DC"
    RNV = "RNV"


class MeterKind(str, Enum):
    OLD = "old"
    NEW = "new"


class OldMeterRecord(Base):
    __tablename__ = "old_meter_data"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    serial_no_old: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    mfd_year_old: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    final_reading: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    meter_make_old: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    category: Mapped[str] = mapped_column(String(8), nullable=False, default=MeterCategory.EM.value)
    image_1_old: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    image_2_old: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    section_code: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    created_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_at: Mapped[str] = mapped_column(String(40), nullable=False, default=utc_now_iso)

    is_uploaded: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    upload_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("ix_old_meter_pending", "is_uploaded", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<OldMeterRecord id={self.id} account={self.account_id!r}>"


class NewMeterRecord(Base):
    __tablename__ = "new_meter_data"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    # Audit link only; uploads never depend on it
    old_meter_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    serial_no_new: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    mfd_year_new: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    meter_make_new: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    initial_reading_kwh: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    initial_reading_kvah: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    image_1_new: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    image_2_new: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    lat: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    lon: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    created_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_at: Mapped[str] = mapped_column(String(40), nullable=False, default=utc_now_iso)

    is_uploaded: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    upload_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("ix_new_meter_pending", "is_uploaded", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<NewMeterRecord id={self.id} account={self.account_id!r}>"
