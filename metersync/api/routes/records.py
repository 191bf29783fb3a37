"""
Record Routes - capture layer hands over completed forms, operators review failures
"""
from typing import Any, Dict, List

from fastapi import APIRouter, Body, Depends, HTTPException, status
from pydantic import ValidationError

from metersync.core.deps import get_store
from metersync.models.meter import MeterKind
from metersync.schemas.meter import (
    DatabaseStats,
    EnqueueResponse,
    FailedUpload,
    NewMeterCreate,
    OldMeterCreate,
)
from metersync.services.record_store import RecordStore

router = APIRouter(tags=["records"])


# ==================== ENQUEUE ====================

@router.post("/old-meters", response_model=EnqueueResponse, status_code=status.HTTP_201_CREATED)
def enqueue_old_meter(record: OldMeterCreate, store: RecordStore = Depends(get_store)):
    """Store a completed old-meter form for upload"""
    return EnqueueResponse(id=store.enqueue_old_meter(record))


@router.post("/new-meters", response_model=EnqueueResponse, status_code=status.HTTP_201_CREATED)
def enqueue_new_meter(record: NewMeterCreate, store: RecordStore = Depends(get_store)):
    """Store a completed new-meter form for upload"""
    return EnqueueResponse(id=store.enqueue_new_meter(record))


# ==================== SUMMARIES ====================

@router.get("/stats", response_model=DatabaseStats)
def get_database_stats(store: RecordStore = Depends(get_store)):
    return store.get_database_stats()


@router.get("/failed", response_model=List[FailedUpload])
def list_failed_uploads(store: RecordStore = Depends(get_store)):
    """Pending records whose last upload attempt left an error"""
    return store.list_failed_uploads()


# ==================== FAILED UPLOAD REVIEW ====================

@router.patch("/failed/{kind}/{record_id}")
def update_failed_upload(
    kind: MeterKind,
    record_id: int,
    changes: Dict[str, Any] = Body(...),
    store: RecordStore = Depends(get_store),
):
    """Edit a failed record; its error is cleared so the next upload retries it"""
    try:
        updated = store.update_failed_upload(record_id, kind, changes)
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=e.errors(include_url=False, include_context=False),
        )

    if not updated:
        raise HTTPException(status_code=404, detail=f"{kind.value} meter record {record_id} not found")
    return {"success": True, "id": record_id, "kind": kind.value}


@router.delete("/failed/{kind}/{record_id}")
def delete_failed_upload(kind: MeterKind, record_id: int, store: RecordStore = Depends(get_store)):
    if not store.delete_failed_upload(record_id, kind):
        raise HTTPException(status_code=404, detail=f"{kind.value} meter record {record_id} not found")
    return {"success": True, "id": record_id, "kind": kind.value}
