"""
Meter Record Pydantic Schemas - capture payloads, stored rows and summaries
"""
from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, field_validator

from metersync.models.meter import MeterCategory, MeterKind

CATEGORY_ALIASES = {
    "ELECTROMECHANICAL": MeterCategory.EM.value,
}


def _coerce_text(value: Any) -> Optional[str]:
    """Readings and coordinates arrive as numbers from some forms."""
    if value is None:
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value


def normalize_category(value: Optional[str]) -> str:
    if value is None or str(value).strip() == "":
        return MeterCategory.EM.value
    text = str(value).strip().upper()
    text = CATEGORY_ALIASES.get(text, text)
    if text not in {c.value for c in MeterCategory}:
        raise ValueError(f"category must be one of EM, MNR, DC, RNV (got {value!r})")
    return text


# ── Capture payloads ──────────────────────────────────────────────────────────

class OldMeterCreate(BaseModel):
    # account_id is checked by the record store so a missing id surfaces as
    # InvalidRecordError rather than a schema error
    account_id: Optional[str] = None
    serial_no_old: Optional[str] = None
    mfd_year_old: Optional[str] = None
    final_reading: Optional[str] = None
    meter_make_old: Optional[str] = None
    category: str = MeterCategory.EM.value
    image_1_old: Optional[str] = None
    image_2_old: Optional[str] = None
    section_code: Optional[str] = None
    created_by: Optional[str] = None
    created_at: Optional[str] = None

    @field_validator(
        "account_id", "serial_no_old", "mfd_year_old", "final_reading", "created_by",
        mode="before",
    )
    @classmethod
    def coerce_text(cls, v):
        return _coerce_text(v)

    @field_validator("category", mode="before")
    @classmethod
    def validate_category(cls, v):
        return normalize_category(v)


class NewMeterCreate(BaseModel):
    account_id: Optional[str] = None
    old_meter_id: Optional[int] = None
    serial_no_new: Optional[str] = None
    mfd_year_new: Optional[str] = None
    meter_make_new: Optional[str] = None
    initial_reading_kwh: Optional[str] = None
    initial_reading_kvah: Optional[str] = None
    image_1_new: Optional[str] = None
    image_2_new: Optional[str] = None
    lat: Optional[str] = None
    lon: Optional[str] = None
    created_by: Optional[str] = None
    created_at: Optional[str] = None

    @field_validator(
        "account_id", "serial_no_new", "mfd_year_new", "initial_reading_kwh",
        "initial_reading_kvah", "lat", "lon", "created_by",
        mode="before",
    )
    @classmethod
    def coerce_text(cls, v):
        return _coerce_text(v)


# ── Stored rows ───────────────────────────────────────────────────────────────

class OldMeterRead(OldMeterCreate):
    id: int
    account_id: str
    created_at: str
    is_uploaded: bool = False
    upload_error: Optional[str] = None

    model_config = {"from_attributes": True}

    @property
    def is_retry_pending(self) -> bool:
        return self.upload_error is not None


class NewMeterRead(NewMeterCreate):
    id: int
    account_id: str
    created_at: str
    is_uploaded: bool = False
    upload_error: Optional[str] = None

    model_config = {"from_attributes": True}

    @property
    def is_retry_pending(self) -> bool:
        return self.upload_error is not None


# ── Operator edits of failed uploads ──────────────────────────────────────────

class OldMeterUpdate(BaseModel):
    account_id: Optional[str] = None
    serial_no_old: Optional[str] = None
    mfd_year_old: Optional[str] = None
    final_reading: Optional[str] = None
    meter_make_old: Optional[str] = None
    category: Optional[str] = None
    image_1_old: Optional[str] = None
    image_2_old: Optional[str] = None

    @field_validator("account_id", "serial_no_old", "mfd_year_old", "final_reading", mode="before")
    @classmethod
    def coerce_text(cls, v):
        return _coerce_text(v)

    @field_validator("category", mode="before")
    @classmethod
    def validate_category(cls, v):
        return None if v is None else normalize_category(v)


class NewMeterUpdate(BaseModel):
    account_id: Optional[str] = None
    serial_no_new: Optional[str] = None
    mfd_year_new: Optional[str] = None
    meter_make_new: Optional[str] = None
    initial_reading_kwh: Optional[str] = None
    initial_reading_kvah: Optional[str] = None
    image_1_new: Optional[str] = None
    image_2_new: Optional[str] = None
    lat: Optional[str] = None
    lon: Optional[str] = None

    @field_validator(
        "account_id", "serial_no_new", "mfd_year_new", "initial_reading_kwh",
        "initial_reading_kvah", "lat", "lon",
        mode="before",
    )
    @classmethod
    def coerce_text(cls, v):
        return _coerce_text(v)


# ── Summaries ─────────────────────────────────────────────────────────────────

class FailedUpload(BaseModel):
    kind: MeterKind
    id: int
    account_id: str
    serial_number: Optional[str] = None
    upload_error: str
    created_at: str
    # derived from upload_error
    error_kind: str = "generic"
    is_duplicate_error: bool = False
    is_retryable: bool = True


class DatabaseStats(BaseModel):
    old_meter_total: int = 0
    old_meter_pending: int = 0
    new_meter_total: int = 0
    new_meter_pending: int = 0
    invalid_records: int = 0
    available_serials: int = 0


class EnqueueResponse(BaseModel):
    success: bool = True
    id: int
