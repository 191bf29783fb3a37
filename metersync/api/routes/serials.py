"""
Serial Routes - whitelist lookups for the new-meter form
"""
from fastapi import APIRouter, Depends

from metersync.core.deps import get_reconciler
from metersync.services.serial_reconciler import SerialReconciler

router = APIRouter(tags=["serials"])


@router.get("/{serial}/available")
def check_serial_available(serial: str, reconciler: SerialReconciler = Depends(get_reconciler)):
    """Whether a serial may be installed (present, valid and not yet used)"""
    return {"serial": serial, "available": reconciler.is_serial_valid(serial)}
