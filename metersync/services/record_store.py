"""
Local Record Store

Durable storage for captured meter records, the available-serial whitelist and
sync timestamps. Every public method runs in its own transaction: it commits
as a whole or rolls back, so a crash mid-batch never leaves a half-written row.

Responsibilities:
  • enqueue_old_meter / enqueue_new_meter — capture layer hands over records
  • list_pending_* / mark_*_uploaded / mark_with_error — upload pipeline
  • replace / remove / list available serials — serial reconciler
  • stats, failed-upload review and edits — UI support
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterable, Iterator, List, Optional, Set, Type, Union

from sqlalchemy import func
from sqlalchemy.orm import Session, sessionmaker

from metersync.db.base import epoch_ms, utc_now_iso
from metersync.models.meter import MeterKind, NewMeterRecord, OldMeterRecord
from metersync.models.serial import AvailableSerialNumber
from metersync.models.sync import SyncMetadata
from metersync.schemas.meter import (
    DatabaseStats,
    FailedUpload,
    NewMeterCreate,
    NewMeterRead,
    NewMeterUpdate,
    OldMeterCreate,
    OldMeterRead,
    OldMeterUpdate,
)
from metersync.services.errors import InvalidRecordError, classify_stored_error

logger = logging.getLogger(__name__)

RecordModel = Union[Type[OldMeterRecord], Type[NewMeterRecord]]


def sync_metadata_key(sync_type: str) -> str:
    return f"last_{sync_type}_sync"


def _require_account_id(account_id: Optional[str]) -> str:
    if account_id is None or str(account_id).strip() == "":
        raise InvalidRecordError("account_id is required")
    return str(account_id).strip()


def _clean_serials(serials: Iterable[str]) -> List[str]:
    seen: Dict[str, None] = {}
    for serial in serials:
        text = (serial or "").strip()
        if text:
            seen.setdefault(text, None)
    return list(seen)


def _failed_upload(kind: MeterKind, row, serial_number: Optional[str]) -> FailedUpload:
    classification = classify_stored_error(row.upload_error)
    return FailedUpload(
        kind=kind,
        id=row.id,
        account_id=row.account_id,
        serial_number=serial_number,
        upload_error=row.upload_error,
        created_at=row.created_at,
        error_kind=classification.kind.value,
        is_duplicate_error=classification.is_duplicate_error,
        is_retryable=classification.is_retryable,
    )


class RecordStore:
    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    @contextmanager
    def _session(self) -> Iterator[Session]:
        db = self._session_factory()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    @staticmethod
    def _model_for(kind: Union[MeterKind, str]) -> RecordModel:
        kind = MeterKind(kind)
        return OldMeterRecord if kind == MeterKind.OLD else NewMeterRecord

    # ── Enqueue ───────────────────────────────────────────────────────────────

    def enqueue_old_meter(self, record: Union[OldMeterCreate, Dict[str, Any]]) -> int:
        """Store a completed old-meter form; returns the local id."""
        if isinstance(record, dict):
            record = OldMeterCreate(**record)
        account_id = _require_account_id(record.account_id)

        values = record.model_dump(exclude={"account_id", "created_at"})
        with self._session() as db:
            row = OldMeterRecord(
                account_id=account_id,
                created_at=record.created_at or utc_now_iso(),
                **values,
            )
            db.add(row)
            db.flush()
            record_id = row.id

        logger.info(f"[store] Queued old meter record {record_id} for account {account_id}")
        return record_id

    def enqueue_new_meter(self, record: Union[NewMeterCreate, Dict[str, Any]]) -> int:
        """Store a completed new-meter form; returns the local id."""
        if isinstance(record, dict):
            record = NewMeterCreate(**record)
        account_id = _require_account_id(record.account_id)

        values = record.model_dump(exclude={"account_id", "created_at", "initial_reading_kvah"})
        with self._session() as db:
            row = NewMeterRecord(
                account_id=account_id,
                created_at=record.created_at or utc_now_iso(),
                initial_reading_kvah=record.initial_reading_kvah or record.initial_reading_kwh,
                **values,
            )
            db.add(row)
            db.flush()
            record_id = row.id

            # The serial is now taken on this device
            if record.serial_no_new:
                self._flag_serials_used(db, [record.serial_no_new])

        logger.info(f"[store] Queued new meter record {record_id} for account {account_id}")
        return record_id

    # ── Pending queue ─────────────────────────────────────────────────────────

    def list_pending_old_meters(self) -> List[OldMeterRead]:
        """Pending old-meter rows, oldest first; errored rows are included."""
        with self._session() as db:
            rows = (
                db.query(OldMeterRecord)
                .filter(OldMeterRecord.is_uploaded.is_(False))
                .order_by(OldMeterRecord.created_at.asc(), OldMeterRecord.id.asc())
                .all()
            )
            return [OldMeterRead.model_validate(r) for r in rows]

    def list_pending_new_meters(self) -> List[NewMeterRead]:
        """Pending new-meter rows, oldest first; errored rows are included."""
        with self._session() as db:
            rows = (
                db.query(NewMeterRecord)
                .filter(NewMeterRecord.is_uploaded.is_(False))
                .order_by(NewMeterRecord.created_at.asc(), NewMeterRecord.id.asc())
                .all()
            )
            return [NewMeterRead.model_validate(r) for r in rows]

    def get_old_meter(self, record_id: int) -> Optional[OldMeterRead]:
        with self._session() as db:
            row = db.get(OldMeterRecord, record_id)
            return OldMeterRead.model_validate(row) if row else None

    def get_new_meter(self, record_id: int) -> Optional[NewMeterRead]:
        with self._session() as db:
            row = db.get(NewMeterRecord, record_id)
            return NewMeterRead.model_validate(row) if row else None

    def mark_old_meter_uploaded(self, record_id: int) -> None:
        """Confirmed upload: the row is deleted. Unknown ids are a no-op."""
        self._delete(OldMeterRecord, record_id)

    def mark_new_meter_uploaded(self, record_id: int) -> None:
        """Confirmed upload: the row is deleted. Unknown ids are a no-op."""
        self._delete(NewMeterRecord, record_id)

    def mark_with_error(self, record_id: int, kind: Union[MeterKind, str], message: str) -> bool:
        """Record the last failure reason; the row stays pending."""
        model = self._model_for(kind)
        with self._session() as db:
            updated = (
                db.query(model)
                .filter(model.id == record_id)
                .update({"upload_error": message, "is_uploaded": False}, synchronize_session=False)
            )
        if not updated:
            logger.warning(f"[store] Cannot mark missing {MeterKind(kind).value} meter record {record_id}")
        return bool(updated)

    def _delete(self, model: RecordModel, record_id: int) -> bool:
        with self._session() as db:
            deleted = db.query(model).filter(model.id == record_id).delete(synchronize_session=False)
        return bool(deleted)

    # ── Failed uploads (operator review) ─────────────────────────────────────

    def list_failed_uploads(self) -> List[FailedUpload]:
        with self._session() as db:
            old_rows = (
                db.query(OldMeterRecord)
                .filter(OldMeterRecord.upload_error.isnot(None), OldMeterRecord.is_uploaded.is_(False))
                .order_by(OldMeterRecord.created_at.asc(), OldMeterRecord.id.asc())
                .all()
            )
            new_rows = (
                db.query(NewMeterRecord)
                .filter(NewMeterRecord.upload_error.isnot(None), NewMeterRecord.is_uploaded.is_(False))
                .order_by(NewMeterRecord.created_at.asc(), NewMeterRecord.id.asc())
                .all()
            )
            failed = [_failed_upload(MeterKind.OLD, r, r.serial_no_old) for r in old_rows]
            failed.extend(_failed_upload(MeterKind.NEW, r, r.serial_no_new) for r in new_rows)
        return failed

    def delete_failed_upload(self, record_id: int, kind: Union[MeterKind, str]) -> bool:
        deleted = self._delete(self._model_for(kind), record_id)
        if deleted:
            logger.info(f"[store] Discarded {MeterKind(kind).value} meter record {record_id}")
        return deleted

    def update_failed_upload(
        self,
        record_id: int,
        kind: Union[MeterKind, str],
        changes: Union[OldMeterUpdate, NewMeterUpdate, Dict[str, Any]],
    ) -> bool:
        """Apply operator edits and clear upload_error so the record retries clean."""
        kind = MeterKind(kind)
        if isinstance(changes, dict):
            changes = (OldMeterUpdate if kind == MeterKind.OLD else NewMeterUpdate)(**changes)
        values = changes.model_dump(exclude_unset=True)
        if "account_id" in values:
            values["account_id"] = _require_account_id(values["account_id"])
        values["upload_error"] = None

        model = self._model_for(kind)
        with self._session() as db:
            updated = (
                db.query(model)
                .filter(model.id == record_id)
                .update(values, synchronize_session=False)
            )
        return bool(updated)

    # ── Stats ─────────────────────────────────────────────────────────────────

    def get_database_stats(self) -> DatabaseStats:
        with self._session() as db:
            def count(model, *criteria) -> int:
                return db.query(func.count()).select_from(model).filter(*criteria).scalar() or 0

            return DatabaseStats(
                old_meter_total=count(OldMeterRecord),
                old_meter_pending=count(OldMeterRecord, OldMeterRecord.is_uploaded.is_(False)),
                new_meter_total=count(NewMeterRecord),
                new_meter_pending=count(NewMeterRecord, NewMeterRecord.is_uploaded.is_(False)),
                invalid_records=(
                    count(OldMeterRecord, OldMeterRecord.upload_error.isnot(None))
                    + count(NewMeterRecord, NewMeterRecord.upload_error.isnot(None))
                ),
                available_serials=count(
                    AvailableSerialNumber,
                    AvailableSerialNumber.is_valid.is_(True),
                    AvailableSerialNumber.is_used.is_(False),
                ),
            )

    # ── Available serial numbers ──────────────────────────────────────────────

    def replace_available_serials(self, serials: Iterable[str], full_replace: bool) -> int:
        """
        Upsert serials into the whitelist; with `full_replace` the table is
        cleared first, in the same transaction, and serials held by pending
        new meters are flagged used again. Returns the number written.
        """
        cleaned = _clean_serials(serials)
        now = epoch_ms()
        with self._session() as db:
            if full_replace:
                db.query(AvailableSerialNumber).delete(synchronize_session=False)
                db.flush()
            for serial in cleaned:
                db.merge(
                    AvailableSerialNumber(
                        serial_number=serial, is_valid=True, is_used=False, last_updated=now,
                    )
                )
            if full_replace:
                # Serials held by queued new meters stay taken until they upload
                db.flush()
                held = db.query(NewMeterRecord.serial_no_new).filter(
                    NewMeterRecord.is_uploaded.is_(False),
                    NewMeterRecord.serial_no_new.isnot(None),
                )
                self._flag_serials_used(db, [row[0] for row in held])
        return len(cleaned)

    def remove_available_serials(self, serials: Iterable[str]) -> int:
        cleaned = _clean_serials(serials)
        if not cleaned:
            return 0
        with self._session() as db:
            return (
                db.query(AvailableSerialNumber)
                .filter(AvailableSerialNumber.serial_number.in_(cleaned))
                .delete(synchronize_session=False)
            )

    def list_available_serials(self) -> Set[str]:
        with self._session() as db:
            return {row[0] for row in db.query(AvailableSerialNumber.serial_number).all()}

    def is_serial_available(self, serial: str) -> bool:
        serial = (serial or "").strip()
        if not serial:
            return False
        with self._session() as db:
            row = db.get(AvailableSerialNumber, serial)
            return bool(row and row.is_valid and not row.is_used)

    def mark_serials_used(self, serials: Iterable[str]) -> int:
        with self._session() as db:
            return self._flag_serials_used(db, serials)

    @staticmethod
    def _flag_serials_used(db: Session, serials: Iterable[str]) -> int:
        cleaned = _clean_serials(serials)
        if not cleaned:
            return 0
        return (
            db.query(AvailableSerialNumber)
            .filter(AvailableSerialNumber.serial_number.in_(cleaned))
            .update({"is_used": True, "last_updated": epoch_ms()}, synchronize_session=False)
        )

    # ── Sync metadata ─────────────────────────────────────────────────────────

    def get_last_sync_timestamp(self, sync_type: str) -> int:
        """Epoch ms of the last completed sync of this type, 0 if never."""
        with self._session() as db:
            row = db.get(SyncMetadata, sync_metadata_key(sync_type))
            if row is None or row.value is None:
                return 0
            try:
                return int(row.value)
            except (TypeError, ValueError):
                logger.warning(f"[store] Unreadable sync timestamp for {sync_type}: {row.value!r}")
                return 0

    def set_last_sync_timestamp(self, sync_type: str, now: Optional[int] = None) -> None:
        now = epoch_ms() if now is None else int(now)
        with self._session() as db:
            db.merge(SyncMetadata(key=sync_metadata_key(sync_type), value=str(now), last_updated=now))
