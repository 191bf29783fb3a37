from metersync.services.connectivity import ConnectivityOracle, HttpConnectivityOracle
from metersync.services.credentials import (
    CredentialProvider,
    SettingsCredentialProvider,
    StaticCredentialProvider,
)
from metersync.services.gateway import HttpUploadGateway, UploadGateway
from metersync.services.record_store import RecordStore
from metersync.services.scheduler import SyncScheduler
from metersync.services.serial_directory import HttpSerialDirectory, SerialDirectory
from metersync.services.serial_reconciler import SerialReconciler
from metersync.services.upload_pipeline import UploadPipeline

__all__ = [
    "ConnectivityOracle",
    "HttpConnectivityOracle",
    "CredentialProvider",
    "SettingsCredentialProvider",
    "StaticCredentialProvider",
    "HttpUploadGateway",
    "UploadGateway",
    "RecordStore",
    "SyncScheduler",
    "HttpSerialDirectory",
    "SerialDirectory",
    "SerialReconciler",
    "UploadPipeline",
]
