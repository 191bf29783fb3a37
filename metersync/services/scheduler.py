"""
Background Scheduler

Drives the two sync streams from timers and host events:
  • serial reconciliation — short interval (seconds)
  • data upload           — long interval (minutes)

Each stream moves idle -> running -> idle | error and ignores triggers that
arrive while it is running or inside its cooldown window. Dropped triggers
are counted, never queued. A failing stream records last_error and keeps its
timer; the other stream is unaffected.
"""
from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from pydantic import BaseModel

from metersync.core.config import Settings
from metersync.schemas.sync import (
    ForceSyncResult,
    SchedulerStatus,
    StreamStatus,
    SyncResult,
    UploadResult,
)
from metersync.services.errors import ALREADY_RUNNING, ALREADY_SYNCING
from metersync.services.serial_reconciler import SerialReconciler
from metersync.services.upload_pipeline import UploadPipeline

logger = logging.getLogger(__name__)

SERIAL_STREAM = "serial_reconciliation"
UPLOAD_STREAM = "data_upload"


class SyncStream:
    """One independently scheduled stream with its own flag, cooldown and status."""

    def __init__(
        self,
        name: str,
        runner: Callable[[bool], Awaitable[Any]],
        cooldown_seconds: float,
        clock: Callable[[], float] = time.time,
    ):
        self.name = name
        self.runner = runner
        self.cooldown_seconds = cooldown_seconds
        self.clock = clock

        self.state = "idle"
        self.is_running = False
        self.last_error: Optional[str] = None
        self.last_started_at: Optional[float] = None
        self.last_completed_at: Optional[float] = None
        self.runs = 0
        self.dropped_triggers = 0
        self.last_result: Optional[Any] = None

    def in_cooldown(self) -> bool:
        if self.last_completed_at is None:
            return False
        return self.clock() - self.last_completed_at < self.cooldown_seconds

    async def run(self, source: str, bypass_cooldown: bool = False, forced: bool = False) -> Optional[Any]:
        """Run once unless busy or cooling down; returns None when the trigger is dropped."""
        if self.is_running:
            self.dropped_triggers += 1
            logger.debug(f"[scheduler] {self.name} already running, dropping {source} trigger")
            return None
        if not bypass_cooldown and self.in_cooldown():
            self.dropped_triggers += 1
            logger.debug(f"[scheduler] {self.name} in cooldown, dropping {source} trigger")
            return None

        self.is_running = True
        self.state = "running"
        self.last_started_at = self.clock()
        self.runs += 1
        logger.debug(f"[scheduler] {self.name} started ({source})")

        result = None
        try:
            result = await self.runner(forced)
            success = getattr(result, "success", True)
            self.state = "idle" if success else "error"
            self.last_error = None if success else (getattr(result, "error", None) or "failed")
        except Exception as e:
            logger.exception(f"[scheduler] {self.name} raised")
            self.state = "error"
            self.last_error = str(e) or e.__class__.__name__
        finally:
            self.is_running = False
            self.last_completed_at = self.clock()

        self.last_result = result
        if self.state == "error":
            logger.warning(f"[scheduler] {self.name} finished with error: {self.last_error}")
        return result

    def status(self) -> StreamStatus:
        last_result = self.last_result
        if isinstance(last_result, BaseModel):
            last_result = last_result.model_dump(mode="json")
        return StreamStatus(
            name=self.name,
            state=self.state,
            is_running=self.is_running,
            last_error=self.last_error,
            last_started_at=self.last_started_at,
            last_completed_at=self.last_completed_at,
            runs=self.runs,
            dropped_triggers=self.dropped_triggers,
            last_result=last_result,
        )


class SyncScheduler:
    def __init__(
        self,
        reconciler: SerialReconciler,
        pipeline: UploadPipeline,
        serial_interval_seconds: int = 5,
        upload_interval_seconds: int = 180,
        serial_cooldown_seconds: float = 0.5,
        upload_cooldown_seconds: float = 5.0,
        serial_event_delay_seconds: float = 1.0,
        upload_event_delay_seconds: float = 2.0,
        clock: Callable[[], float] = time.time,
    ):
        self.reconciler = reconciler
        self.pipeline = pipeline
        self.serial_interval_seconds = serial_interval_seconds
        self.upload_interval_seconds = upload_interval_seconds
        self.serial_event_delay_seconds = serial_event_delay_seconds
        self.upload_event_delay_seconds = upload_event_delay_seconds

        self.serial_stream = SyncStream(
            SERIAL_STREAM,
            lambda forced: self.reconciler.sync(force=forced),
            serial_cooldown_seconds,
            clock,
        )
        self.upload_stream = SyncStream(
            UPLOAD_STREAM,
            lambda forced: self.pipeline.upload_pending(),
            upload_cooldown_seconds,
            clock,
        )

        self._scheduler: Optional[AsyncIOScheduler] = None
        self._app_state = "active"
        self._connected: Optional[bool] = None

    @classmethod
    def from_settings(
        cls,
        reconciler: SerialReconciler,
        pipeline: UploadPipeline,
        config: Settings,
    ) -> "SyncScheduler":
        return cls(
            reconciler,
            pipeline,
            serial_interval_seconds=config.SERIAL_SYNC_INTERVAL_SECONDS,
            upload_interval_seconds=config.DATA_UPLOAD_INTERVAL_SECONDS,
            serial_cooldown_seconds=config.SERIAL_SYNC_TRIGGER_COOLDOWN_SECONDS,
            upload_cooldown_seconds=config.UPLOAD_TRIGGER_COOLDOWN_SECONDS,
            serial_event_delay_seconds=config.FOREGROUND_SERIAL_DELAY_SECONDS,
            upload_event_delay_seconds=config.FOREGROUND_UPLOAD_DELAY_SECONDS,
        )

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    @property
    def is_active(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def start(self) -> None:
        """Start both interval timers and kick off one staggered run of each stream."""
        if self.is_active:
            logger.debug("[scheduler] Already started")
            return

        scheduler = AsyncIOScheduler(timezone="UTC")
        scheduler.add_job(
            self.trigger_reconciliation,
            trigger=IntervalTrigger(seconds=int(self.serial_interval_seconds)),
            kwargs={"source": "timer"},
            id="serial_reconciliation_timer",
            name="Serial Number Reconciliation",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        scheduler.add_job(
            self.trigger_upload,
            trigger=IntervalTrigger(seconds=int(self.upload_interval_seconds)),
            kwargs={"source": "timer"},
            id="data_upload_timer",
            name="Pending Data Upload",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        scheduler.start()
        self._scheduler = scheduler
        self._schedule_staggered("startup")

        logger.info(
            f"[scheduler] Started: serial sync every {self.serial_interval_seconds}s, "
            f"upload every {self.upload_interval_seconds}s"
        )

    def stop(self) -> None:
        if self._scheduler is None:
            return
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("[scheduler] Stopped")

    # ── Triggers ──────────────────────────────────────────────────────────────

    async def trigger_reconciliation(self, source: str = "manual", bypass_cooldown: bool = False) -> Optional[SyncResult]:
        return await self.serial_stream.run(source, bypass_cooldown=bypass_cooldown)

    async def trigger_upload(self, source: str = "manual", bypass_cooldown: bool = False) -> Optional[UploadResult]:
        return await self.upload_stream.run(source, bypass_cooldown=bypass_cooldown)

    def on_app_state_change(self, state: str) -> bool:
        """Fire both streams when the app comes back to the foreground."""
        previous, self._app_state = self._app_state, state
        if state == "active" and previous != "active":
            logger.info(f"[scheduler] App became active (was {previous})")
            return self._schedule_staggered("app_foreground")
        return False

    def on_connectivity_change(self, connected: bool) -> bool:
        """Fire both streams only on a disconnected -> connected transition."""
        previous, self._connected = self._connected, bool(connected)
        if connected and previous is False:
            logger.info("[scheduler] Connectivity restored")
            return self._schedule_staggered("connectivity_restored")
        return False

    def _schedule_staggered(self, source: str) -> bool:
        if not self.is_active:
            logger.debug(f"[scheduler] Not started, ignoring {source} event")
            return False

        now = datetime.now(timezone.utc)
        self._scheduler.add_job(
            self.trigger_reconciliation,
            trigger="date",
            run_date=now + timedelta(seconds=self.serial_event_delay_seconds),
            kwargs={"source": source},
            id=f"{source}_serial_reconciliation",
            replace_existing=True,
        )
        self._scheduler.add_job(
            self.trigger_upload,
            trigger="date",
            run_date=now + timedelta(seconds=self.upload_event_delay_seconds),
            kwargs={"source": source},
            id=f"{source}_data_upload",
            replace_existing=True,
        )
        return True

    async def force_sync_now(self) -> ForceSyncResult:
        """Reconcile (full) then upload, back to back, ignoring cooldowns."""
        logger.info("[scheduler] Force sync requested")

        reconciliation = await self.serial_stream.run("force", bypass_cooldown=True, forced=True)
        if reconciliation is None:
            reconciliation = SyncResult(success=False, error=ALREADY_SYNCING, reason=ALREADY_SYNCING)

        upload = await self.upload_stream.run("force", bypass_cooldown=True, forced=True)
        if upload is None:
            upload = UploadResult(success=False, error=ALREADY_RUNNING, reason=ALREADY_RUNNING)

        result = ForceSyncResult(
            success=reconciliation.success and upload.success,
            reconciliation=reconciliation,
            upload=upload,
            uploaded=upload.old_meter_uploaded + upload.new_meter_uploaded,
            failed=upload.failed,
            skipped=upload.skipped_new_meters,
        )
        logger.info(
            f"[scheduler] Force sync finished: uploaded={result.uploaded}, "
            f"failed={result.failed}, skipped={result.skipped}"
        )
        return result

    def get_status(self) -> SchedulerStatus:
        return SchedulerStatus(
            is_active=self.is_active,
            serial_reconciliation=self.serial_stream.status(),
            data_upload=self.upload_stream.status(),
        )
