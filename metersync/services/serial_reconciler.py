"""
Serial Number Reconciler

Keeps the local AvailableSerialNumber table in step with the remote serial
directory, either by a full replace or by applying the minimal delta.

Flow of one sync():
  1. already running            → success=False, reason "already syncing"
  2. synced < cooldown ago      → success=True, skipped=True (unless forced)
  3. backend unreachable        → success=False, error "no connection"
  4. fetch fails                → success=False, timestamp untouched
  5. remote set empty           → success=True, saved=0, timestamp updated
  6. otherwise full or delta    → success=True, timestamp updated

After `full_sync_after_failures` consecutive failures the next run is a full
replace even when not forced.
"""
from __future__ import annotations

import logging
import time
from typing import Callable, List, Optional, Set

from metersync.schemas.sync import ReconcilerStatus, SerialDelta, SyncResult
from metersync.services.connectivity import ConnectivityOracle
from metersync.services.errors import ALREADY_SYNCING, NO_CONNECTION, MeterSyncError
from metersync.services.record_store import RecordStore
from metersync.services.serial_directory import SerialDirectory, flatten_serials

logger = logging.getLogger(__name__)

SERIAL_SYNC_TYPE = "meter_serial_numbers"

SyncListener = Callable[[str, Optional[str]], None]
Notifier = Callable[[str, bool], None]


def compute_delta(remote: Set[str], local: Set[str]) -> SerialDelta:
    """added = remote - local, removed = local - remote."""
    return SerialDelta(added=set(remote) - set(local), removed=set(local) - set(remote))


class SerialReconciler:
    def __init__(
        self,
        store: RecordStore,
        directory: SerialDirectory,
        connectivity: ConnectivityOracle,
        cooldown_seconds: float = 30.0,
        full_sync_after_failures: int = 3,
        clock: Callable[[], float] = time.time,
        notifier: Optional[Notifier] = None,
    ):
        self.store = store
        self.directory = directory
        self.connectivity = connectivity
        self.cooldown_seconds = cooldown_seconds
        self.full_sync_after_failures = full_sync_after_failures
        self.clock = clock
        self.notifier = notifier

        self._is_syncing = False
        self._listeners: List[SyncListener] = []
        self.last_error: Optional[str] = None
        self.consecutive_failures = 0

    @property
    def is_syncing(self) -> bool:
        return self._is_syncing

    # ── Listeners ─────────────────────────────────────────────────────────────

    def add_listener(self, listener: SyncListener) -> bool:
        if not callable(listener) or listener in self._listeners:
            return False
        self._listeners.append(listener)
        return True

    def remove_listener(self, listener: SyncListener) -> bool:
        if listener not in self._listeners:
            return False
        self._listeners.remove(listener)
        return True

    def _emit(self, status: str, error: Optional[str] = None) -> None:
        for listener in list(self._listeners):
            try:
                listener(status, error)
            except Exception:
                logger.exception("[serials] Sync listener raised")

    def _notify(self, enabled: bool, message: str, is_error: bool = False) -> None:
        if enabled and self.notifier is not None:
            try:
                self.notifier(message, is_error)
            except Exception:
                logger.exception("[serials] Notifier raised")

    # ── Sync ──────────────────────────────────────────────────────────────────

    async def sync(self, force: bool = False, notify: bool = False) -> SyncResult:
        if self._is_syncing:
            logger.debug("[serials] Sync already in progress, skipping")
            return SyncResult(success=False, error=ALREADY_SYNCING, reason=ALREADY_SYNCING)

        self._is_syncing = True
        try:
            return await self._run(force, notify)
        except Exception as e:
            # store errors end up in the result like fetch errors
            logger.exception("[serials] Unexpected error during sync")
            return self._failed(f"Error syncing meter serial numbers: {e}", notify)
        finally:
            self._is_syncing = False

    async def _run(self, force: bool, notify: bool) -> SyncResult:
        now_ms = int(self.clock() * 1000)

        if not force:
            last_sync = self.store.get_last_sync_timestamp(SERIAL_SYNC_TYPE)
            if last_sync and now_ms - last_sync < self.cooldown_seconds * 1000:
                self._emit("skipped")
                return SyncResult(success=True, skipped=True, reason="cooldown")

        if not await self.connectivity.is_connected():
            self.last_error = NO_CONNECTION
            self._emit("failed", NO_CONNECTION)
            self._notify(notify, "Offline: using stored meter serial numbers", is_error=True)
            return SyncResult(success=False, error=NO_CONNECTION, reason=NO_CONNECTION, offline=True)

        self._emit("started")

        try:
            blocks = await self.directory.fetch_remote_serials()
        except MeterSyncError as e:
            return self._failed(f"Error fetching meter information: {e}", notify)

        remote = flatten_serials(blocks)
        full_sync = force or self.consecutive_failures >= self.full_sync_after_failures

        if not remote:
            self.store.set_last_sync_timestamp(SERIAL_SYNC_TYPE, now_ms)
            message = "No unused meter serial numbers available"
            return self._succeeded(
                SyncResult(success=True, saved=0, is_full_sync=full_sync, message=message),
                notify,
            )

        local = self.store.list_available_serials()
        delta = compute_delta(remote, local)

        if full_sync:
            logger.info(f"[serials] Full sync: replacing {len(local)} local serials with {len(remote)}")
            saved = self.store.replace_available_serials(remote, full_replace=True)
            removed = len(delta.removed)
        else:
            if delta.added:
                self.store.replace_available_serials(delta.added, full_replace=False)
            if delta.removed:
                self.store.remove_available_serials(delta.removed)
            saved, removed = len(delta.added), len(delta.removed)
            if not delta.is_empty:
                logger.info(f"[serials] Delta sync: {saved} added, {removed} removed")

        self.store.set_last_sync_timestamp(SERIAL_SYNC_TYPE, now_ms)
        return self._succeeded(
            SyncResult(
                success=True,
                saved=saved,
                removed=removed,
                is_full_sync=full_sync,
                total_available=len(remote),
                message=f"Synced {len(remote)} meter serial numbers",
            ),
            notify,
        )

    def _succeeded(self, result: SyncResult, notify: bool) -> SyncResult:
        self.consecutive_failures = 0
        self.last_error = None
        self._emit("succeeded")
        self._notify(notify, result.message or "Meter serial numbers synced")
        return result

    def _failed(self, error: str, notify: bool) -> SyncResult:
        self.consecutive_failures += 1
        self.last_error = error
        logger.warning(f"[serials] {error} (consecutive failures: {self.consecutive_failures})")
        self._emit("failed", error)
        self._notify(notify, error, is_error=True)
        return SyncResult(success=False, error=error)

    # ── Queries ───────────────────────────────────────────────────────────────

    def get_status(self) -> ReconcilerStatus:
        return ReconcilerStatus(
            is_syncing=self._is_syncing,
            last_error=self.last_error,
            consecutive_failures=self.consecutive_failures,
            last_sync_at=self.store.get_last_sync_timestamp(SERIAL_SYNC_TYPE),
        )

    def is_serial_valid(self, serial: str) -> bool:
        return self.store.is_serial_available(serial)
