from metersync.models.meter import MeterCategory, MeterKind, NewMeterRecord, OldMeterRecord
from metersync.models.serial import AvailableSerialNumber
from metersync.models.sync import SyncMetadata

__all__ = [
    "MeterCategory",
    "MeterKind",
    "OldMeterRecord",
    "NewMeterRecord",
    "AvailableSerialNumber",
    "SyncMetadata",
]
