"""
Upload Pipeline

Pushes every pending local record to the backend, one account at a time:

  STEP 1  create/touch the remote account instance (retried on transient errors)
  STEP 2  upload the account's old-meter records, one by one
  STEP 3  upload the account's new-meter records, but only if STEP 2 produced at
          least one success; otherwise each new meter is marked skipped
          without a network call

A new meter is never reported installed on the backend unless at least one
old-meter record for the same account reached it first.

Records are deleted locally only after a confirmed upload. Every failure is
written to the record's upload_error and returned in the UploadResult; nothing
raises out of upload_pending().
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional, Union

from metersync.core.config import Settings
from metersync.models.meter import MeterKind
from metersync.schemas.meter import NewMeterRead, OldMeterRead
from metersync.schemas.sync import GatewayResponse, UploadFailure, UploadResult
from metersync.services.connectivity import ConnectivityOracle
from metersync.services.errors import (
    ALREADY_RUNNING,
    AUTH_FAILED_PREFIX,
    INVALID_ACCOUNT_ID,
    NO_CONNECTION,
    SKIPPED_OLD_METER_FAILED,
    ErrorKind,
    FailureClassification,
    classify_failure,
)
from metersync.services.gateway import UploadGateway
from metersync.services.record_store import RecordStore
from metersync.services.retry import is_transient, retry_with_fixed_delay

logger = logging.getLogger(__name__)

MeterRecord = Union[OldMeterRead, NewMeterRead]


@dataclass
class AccountGroup:
    """Pending records sharing one account_id; rebuilt on every run."""
    account_id: str
    old_meters: List[OldMeterRead] = field(default_factory=list)
    new_meters: List[NewMeterRead] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return bool(self.account_id and self.account_id.strip())

    @property
    def size(self) -> int:
        return len(self.old_meters) + len(self.new_meters)


def group_by_account(
    old_meters: List[OldMeterRead],
    new_meters: List[NewMeterRead],
) -> Dict[str, AccountGroup]:
    """Group pending records by account, in order of first appearance."""
    groups: Dict[str, AccountGroup] = {}
    for record in old_meters:
        groups.setdefault(record.account_id, AccountGroup(record.account_id)).old_meters.append(record)
    for record in new_meters:
        groups.setdefault(record.account_id, AccountGroup(record.account_id)).new_meters.append(record)
    return groups


class UploadPipeline:
    def __init__(
        self,
        store: RecordStore,
        gateway: UploadGateway,
        connectivity: ConnectivityOracle,
        instance_retries: int = 3,
        instance_retry_delay: float = 2.0,
        upload_retries: int = 2,
        upload_retry_delay: float = 3.0,
        instance_settle_seconds: float = 3.0,
        max_accounts_per_run: Optional[int] = 10,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.store = store
        self.gateway = gateway
        self.connectivity = connectivity
        self.instance_retries = instance_retries
        self.instance_retry_delay = instance_retry_delay
        self.upload_retries = upload_retries
        self.upload_retry_delay = upload_retry_delay
        self.instance_settle_seconds = instance_settle_seconds
        self.max_accounts_per_run = max_accounts_per_run
        self._sleep = sleep
        self._is_uploading = False

    @classmethod
    def from_settings(
        cls,
        store: RecordStore,
        gateway: UploadGateway,
        connectivity: ConnectivityOracle,
        config: Settings,
    ) -> "UploadPipeline":
        return cls(
            store,
            gateway,
            connectivity,
            instance_retries=config.INSTANCE_MAX_RETRIES,
            instance_retry_delay=config.INSTANCE_RETRY_DELAY_SECONDS,
            upload_retries=config.UPLOAD_MAX_RETRIES,
            upload_retry_delay=config.UPLOAD_RETRY_DELAY_SECONDS,
            instance_settle_seconds=config.INSTANCE_SETTLE_SECONDS,
            max_accounts_per_run=config.MAX_ACCOUNTS_PER_RUN,
        )

    @property
    def is_uploading(self) -> bool:
        return self._is_uploading

    async def upload_pending(self) -> UploadResult:
        if self._is_uploading:
            logger.debug("[upload] Upload already in progress, skipping")
            return UploadResult(success=False, reason=ALREADY_RUNNING, error=ALREADY_RUNNING)

        self._is_uploading = True
        try:
            return await self._run()
        except Exception as e:
            logger.exception("[upload] Unexpected error while uploading pending data")
            return UploadResult(success=False, error=str(e) or "Unknown error during upload")
        finally:
            self._is_uploading = False

    async def _run(self) -> UploadResult:
        if not await self.connectivity.is_connected():
            logger.info("[upload] No internet connection available, skipping upload")
            return UploadResult(success=False, reason=NO_CONNECTION, error=NO_CONNECTION)

        pending_old = self.store.list_pending_old_meters()
        pending_new = self.store.list_pending_new_meters()
        result = UploadResult(
            success=True,
            old_meter_total=len(pending_old),
            new_meter_total=len(pending_new),
        )
        if not pending_old and not pending_new:
            logger.debug("[upload] No pending data to upload")
            return result

        groups = group_by_account(pending_old, pending_new)
        result.total_accounts = len(groups)
        logger.info(
            f"[upload] Found {len(pending_old)} old and {len(pending_new)} new meter records "
            f"across {len(groups)} accounts"
        )

        valid_groups = []
        for group in groups.values():
            if group.is_valid:
                valid_groups.append(group)
            else:
                self._reject_invalid_group(group, result)

        limit = self.max_accounts_per_run
        if limit is not None and len(valid_groups) > limit:
            result.deferred_accounts = len(valid_groups) - limit
            logger.info(f"[upload] Reached limit of {limit} accounts, {result.deferred_accounts} deferred to next run")
            valid_groups = valid_groups[:limit]

        for group in valid_groups:
            await self._process_group(group, result)
            result.processed_accounts += 1

        uploaded = result.old_meter_uploaded + result.new_meter_uploaded
        result.success = uploaded > 0 or not result.failures
        logger.info(
            f"[upload] Upload complete: {result.old_meter_uploaded}/{result.old_meter_total} old, "
            f"{result.new_meter_uploaded}/{result.new_meter_total} new, "
            f"{len(result.failures)} not uploaded"
        )
        return result

    # ── Per-account processing ────────────────────────────────────────────────

    def _reject_invalid_group(self, group: AccountGroup, result: UploadResult) -> None:
        logger.error(f"[upload] Invalid account ID {group.account_id!r} on {group.size} records")
        classification = FailureClassification(kind=ErrorKind.VALIDATION)
        for record in group.old_meters:
            self._fail(record, MeterKind.OLD, INVALID_ACCOUNT_ID, result, status=400, classification=classification)
        for record in group.new_meters:
            self._fail(record, MeterKind.NEW, INVALID_ACCOUNT_ID, result, status=400, classification=classification)

    async def _process_group(self, group: AccountGroup, result: UploadResult) -> None:
        account_id = group.account_id
        logger.info(
            f"[upload] Account {account_id}: {len(group.old_meters)} old, {len(group.new_meters)} new"
        )

        if not group.old_meters:
            logger.warning(
                f"[upload] Account {account_id}: no old meter records, "
                f"skipping {len(group.new_meters)} new meter records"
            )
            for record in group.new_meters:
                self._skip(record, result)
            return

        instance = await self._create_instance(account_id)
        if not instance.success:
            if instance.is_auth_error:
                message = f"{AUTH_FAILED_PREFIX}: {instance.error}"
                status = 401
            else:
                message = f"Failed to create server instance: {instance.error}"
                status = instance.status
            logger.warning(f"[upload] Account {account_id}: {message}")
            classification = classify_failure(
                status, instance.error, instance.data,
                is_network_error=instance.is_network_error,
                is_auth_error=instance.is_auth_error,
            )
            for record in group.old_meters:
                self._fail(record, MeterKind.OLD, message, result, status=status, classification=classification)
            for record in group.new_meters:
                self._fail(record, MeterKind.NEW, message, result, status=status, classification=classification)
            return

        if self.instance_settle_seconds > 0:
            await self._sleep(self.instance_settle_seconds)

        old_successes = 0
        for record in group.old_meters:
            if await self._upload_record(record, MeterKind.OLD, result):
                old_successes += 1

        if old_successes == 0:
            if group.new_meters:
                logger.warning(
                    f"[upload] Account {account_id}: no old meter uploaded, "
                    f"skipping {len(group.new_meters)} new meter records"
                )
            for record in group.new_meters:
                self._skip(record, result)
            return

        for record in group.new_meters:
            await self._upload_record(record, MeterKind.NEW, result)

    async def _create_instance(self, account_id: str) -> GatewayResponse:
        try:
            return await retry_with_fixed_delay(
                lambda: self.gateway.create_account_instance(account_id),
                retries=self.instance_retries,
                delay=self.instance_retry_delay,
                should_retry=is_transient,
                sleep=self._sleep,
                label=f"account instance {account_id}",
            )
        except Exception as e:
            logger.exception(f"[upload] Account instance call raised for {account_id}")
            return GatewayResponse(success=False, error=str(e) or "Unknown error")

    async def _upload_record(self, record: MeterRecord, kind: MeterKind, result: UploadResult) -> bool:
        upload = self.gateway.upload_old_meter if kind == MeterKind.OLD else self.gateway.upload_new_meter
        try:
            response = await retry_with_fixed_delay(
                lambda: upload(record),
                retries=self.upload_retries,
                delay=self.upload_retry_delay,
                should_retry=is_transient,
                sleep=self._sleep,
                label=f"{kind.value} meter {record.id}",
            )
        except Exception as e:
            logger.exception(f"[upload] Upload of {kind.value} meter record {record.id} raised")
            response = GatewayResponse(success=False, error=str(e) or "Unknown error")

        if response.success:
            try:
                if kind == MeterKind.OLD:
                    self.store.mark_old_meter_uploaded(record.id)
                else:
                    self.store.mark_new_meter_uploaded(record.id)
            except Exception:
                logger.exception(f"[upload] Uploaded {kind.value} meter record {record.id} but could not remove it")
            if kind == MeterKind.OLD:
                result.old_meter_uploaded += 1
            else:
                result.new_meter_uploaded += 1
            logger.info(f"[upload] Uploaded {kind.value} meter record {record.id}")
            return True

        error = response.error or "Upload failed"
        classification = classify_failure(
            response.status, response.error, response.data,
            is_network_error=response.is_network_error,
            is_auth_error=response.is_auth_error,
        )
        logger.warning(
            f"[upload] Failed to upload {kind.value} meter record {record.id}: {error} "
            f"({classification.kind.value})"
        )
        self._fail(record, kind, error, result, status=response.status, classification=classification)
        return False

    # ── Failure bookkeeping ───────────────────────────────────────────────────

    def _skip(self, record: NewMeterRead, result: UploadResult) -> None:
        self._fail(
            record,
            MeterKind.NEW,
            SKIPPED_OLD_METER_FAILED,
            result,
            classification=FailureClassification(kind=ErrorKind.SKIPPED_DEPENDENCY),
            is_skipped=True,
        )
        result.skipped_new_meters += 1

    def _fail(
        self,
        record: MeterRecord,
        kind: MeterKind,
        message: str,
        result: UploadResult,
        status: Optional[int] = None,
        classification: Optional[FailureClassification] = None,
        is_skipped: bool = False,
    ) -> None:
        classification = classification or FailureClassification()
        try:
            self.store.mark_with_error(record.id, kind, message)
        except Exception:
            logger.exception(f"[upload] Could not record error on {kind.value} meter record {record.id}")

        serial = record.serial_no_old if kind == MeterKind.OLD else record.serial_no_new
        result.failures.append(
            UploadFailure(
                record_id=record.id,
                kind=kind,
                account_id=record.account_id,
                error=message,
                status=status,
                error_kind=classification.kind.value,
                is_duplicate_error=classification.is_duplicate_error,
                is_storage_error=classification.is_storage_error,
                is_auth_error=classification.is_auth_error,
                is_skipped=is_skipped,
                serial_number=serial,
            )
        )
