"""
Sync Routes - scheduler status, manual force sync and host events
"""
from fastapi import APIRouter, Depends
from pydantic import BaseModel

from metersync.core.deps import get_scheduler
from metersync.schemas.sync import ForceSyncResult, SchedulerStatus
from metersync.services.scheduler import SyncScheduler

router = APIRouter(tags=["sync"])


# ==================== SCHEMAS ====================

class AppStateEvent(BaseModel):
    state: str


class ConnectivityEvent(BaseModel):
    connected: bool


# ==================== STATUS & FORCE ====================

@router.get("/status", response_model=SchedulerStatus)
def get_sync_status(scheduler: SyncScheduler = Depends(get_scheduler)):
    return scheduler.get_status()


@router.post("/force", response_model=ForceSyncResult)
async def force_sync(scheduler: SyncScheduler = Depends(get_scheduler)):
    """Reconcile serials then upload pending data, ignoring cooldowns"""
    return await scheduler.force_sync_now()


# ==================== HOST EVENTS ====================

@router.post("/events/app-state")
def app_state_changed(event: AppStateEvent, scheduler: SyncScheduler = Depends(get_scheduler)):
    triggered = scheduler.on_app_state_change(event.state)
    return {"success": True, "triggered": triggered}


@router.post("/events/connectivity")
def connectivity_changed(event: ConnectivityEvent, scheduler: SyncScheduler = Depends(get_scheduler)):
    triggered = scheduler.on_connectivity_change(event.connected)
    return {"success": True, "triggered": triggered}
