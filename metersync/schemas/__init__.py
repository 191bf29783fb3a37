from metersync.schemas.meter import (
    DatabaseStats,
    EnqueueResponse,
    FailedUpload,
    NewMeterCreate,
    NewMeterRead,
    NewMeterUpdate,
    OldMeterCreate,
    OldMeterRead,
    OldMeterUpdate,
)
from metersync.schemas.sync import (
    ForceSyncResult,
    GatewayResponse,
    ReconcilerStatus,
    SchedulerStatus,
    SerialDelta,
    SerialOwnerBlock,
    StreamStatus,
    SyncResult,
    UploadFailure,
    UploadResult,
)

__all__ = [
    "DatabaseStats",
    "EnqueueResponse",
    "FailedUpload",
    "NewMeterCreate",
    "NewMeterRead",
    "NewMeterUpdate",
    "OldMeterCreate",
    "OldMeterRead",
    "OldMeterUpdate",
    "ForceSyncResult",
    "GatewayResponse",
    "ReconcilerStatus",
    "SchedulerStatus",
    "SerialDelta",
    "SerialOwnerBlock",
    "StreamStatus",
    "SyncResult",
    "UploadFailure",
    "UploadResult",
]
