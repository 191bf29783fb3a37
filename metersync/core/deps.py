"""
Service wiring and FastAPI dependencies.

One SyncServices container per process holds the store, the remote clients
and the two sync engines; routes reach it through get_services so tests can
swap it with app.dependency_overrides.
"""
from dataclasses import dataclass
from functools import lru_cache
import logging

from fastapi import Depends
from sqlalchemy.orm import sessionmaker

from metersync.core.config import Settings, get_settings
from metersync.database import SessionLocal
from metersync.services.connectivity import ConnectivityOracle, HttpConnectivityOracle
from metersync.services.credentials import CredentialProvider, SettingsCredentialProvider
from metersync.services.gateway import HttpUploadGateway, UploadGateway
from metersync.services.record_store import RecordStore
from metersync.services.scheduler import SyncScheduler
from metersync.services.serial_directory import HttpSerialDirectory, SerialDirectory
from metersync.services.serial_reconciler import SerialReconciler
from metersync.services.upload_pipeline import UploadPipeline

logger = logging.getLogger(__name__)


@dataclass
class SyncServices:
    store: RecordStore
    reconciler: SerialReconciler
    pipeline: UploadPipeline
    scheduler: SyncScheduler


def build_services(
    config: Settings,
    session_factory: sessionmaker = None,
    credentials: CredentialProvider = None,
    gateway: UploadGateway = None,
    directory: SerialDirectory = None,
    connectivity: ConnectivityOracle = None,
) -> SyncServices:
    """Assemble the sync subsystem; any collaborator may be injected."""
    credentials = credentials or SettingsCredentialProvider(config)
    store = RecordStore(session_factory or SessionLocal)
    gateway = gateway or HttpUploadGateway(credentials, config)
    directory = directory or HttpSerialDirectory(credentials, config)
    connectivity = connectivity or HttpConnectivityOracle(
        config.connectivity_probe_urls, timeout=config.CONNECTIVITY_TIMEOUT_SECONDS,
    )

    reconciler = SerialReconciler(
        store,
        directory,
        connectivity,
        cooldown_seconds=config.SERIAL_SYNC_COOLDOWN_SECONDS,
        full_sync_after_failures=config.SERIAL_FULL_SYNC_AFTER_FAILURES,
    )
    pipeline = UploadPipeline.from_settings(store, gateway, connectivity, config)
    scheduler = SyncScheduler.from_settings(reconciler, pipeline, config)

    logger.debug("[deps] Sync services assembled")
    return SyncServices(store=store, reconciler=reconciler, pipeline=pipeline, scheduler=scheduler)


@lru_cache()
def get_services() -> SyncServices:
    """Process-wide services built from settings"""
    return build_services(get_settings())


def get_store(services: SyncServices = Depends(get_services)) -> RecordStore:
    return services.store


def get_reconciler(services: SyncServices = Depends(get_services)) -> SerialReconciler:
    return services.reconciler


def get_scheduler(services: SyncServices = Depends(get_services)) -> SyncScheduler:
    return services.scheduler
