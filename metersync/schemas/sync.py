"""
Sync Pydantic Schemas - gateway responses, reconciliation and upload results
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Set

from pydantic import BaseModel, Field

from metersync.models.meter import MeterKind


# ── Remote gateway ────────────────────────────────────────────────────────────

class GatewayResponse(BaseModel):
    """Outcome of one call to the remote upload gateway."""
    success: bool
    status: Optional[int] = None
    error: Optional[str] = None
    data: Optional[Any] = None
    is_auth_error: bool = False
    is_network_error: bool = False


class SerialOwnerBlock(BaseModel):
    """One entry of the serial directory's user_information list."""
    owner_id: Optional[str] = None
    box_id: Optional[str] = None
    serials_csv: str = ""


class SerialDelta(BaseModel):
    added: Set[str] = Field(default_factory=set)
    removed: Set[str] = Field(default_factory=set)

    @property
    def is_empty(self) -> bool:
        return not self.added and not self.removed


# ── Serial reconciliation ─────────────────────────────────────────────────────

class SyncResult(BaseModel):
    success: bool
    saved: int = 0
    removed: int = 0
    is_full_sync: bool = False
    total_available: int = 0
    skipped: bool = False
    error: Optional[str] = None
    reason: Optional[str] = None
    offline: bool = False
    message: Optional[str] = None


class ReconcilerStatus(BaseModel):
    is_syncing: bool
    last_error: Optional[str] = None
    consecutive_failures: int = 0
    last_sync_at: int = 0


# ── Upload pipeline ───────────────────────────────────────────────────────────

class UploadFailure(BaseModel):
    record_id: int
    kind: MeterKind
    account_id: str
    error: str
    status: Optional[int] = None
    error_kind: str = "generic"
    is_duplicate_error: bool = False
    is_storage_error: bool = False
    is_auth_error: bool = False
    is_skipped: bool = False
    serial_number: Optional[str] = None


class UploadResult(BaseModel):
    success: bool
    reason: Optional[str] = None
    error: Optional[str] = None
    old_meter_uploaded: int = 0
    old_meter_total: int = 0
    new_meter_uploaded: int = 0
    new_meter_total: int = 0
    skipped_new_meters: int = 0
    processed_accounts: int = 0
    total_accounts: int = 0
    deferred_accounts: int = 0
    failures: List[UploadFailure] = Field(default_factory=list)

    @property
    def failed(self) -> int:
        return len([f for f in self.failures if not f.is_skipped])


# ── Background scheduler ──────────────────────────────────────────────────────

class StreamStatus(BaseModel):
    name: str
    state: str = "idle"  # idle | running | error
    is_running: bool = False
    last_error: Optional[str] = None
    last_started_at: Optional[float] = None
    last_completed_at: Optional[float] = None
    runs: int = 0
    dropped_triggers: int = 0
    last_result: Optional[Dict[str, Any]] = None


class SchedulerStatus(BaseModel):
    is_active: bool
    serial_reconciliation: StreamStatus
    data_upload: StreamStatus


class ForceSyncResult(BaseModel):
    success: bool
    reconciliation: Optional[SyncResult] = None
    upload: Optional[UploadResult] = None
    uploaded: int = 0
    failed: int = 0
    skipped: int = 0
