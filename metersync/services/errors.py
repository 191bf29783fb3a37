"""
Sync error taxonomy and the failure classifier.

The backend does not return typed errors, so `classify_failure` pattern-matches
status codes and message text. It is a heuristic: if the backend changes its
wording, records silently fall back to GENERIC. Keep all such matching here so
it can be replaced by a typed error contract in one place.
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel


class MeterSyncError(Exception):
    """Base exception for sync operations"""
    pass


class InvalidRecordError(MeterSyncError, ValueError):
    """Raised when a record cannot be stored or edited (e.g. missing account id)"""
    pass


class AuthError(MeterSyncError):
    """Raised when no bearer token is available or the backend rejects it"""
    pass


class NetworkError(MeterSyncError):
    """Raised on transport failures, timeouts and unexpected HTTP statuses"""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class FormatError(MeterSyncError):
    """Raised when a remote payload does not have the expected shape"""
    pass


class ErrorKind(str, Enum):
    VALIDATION         = "validation"
    NETWORK            = "network"
    AUTH               = "auth"
    SERVER             = "server"
    DUPLICATE          = "duplicate"
    STORAGE            = "storage"
    SKIPPED_DEPENDENCY = "skipped_dependency"
    GENERIC            = "generic"


# ── Canonical messages ────────────────────────────────────────────────────────

NO_CONNECTION = "no connection"
ALREADY_SYNCING = "already syncing"
ALREADY_RUNNING = "already running"
INVALID_ACCOUNT_ID = "invalid account id"
SKIPPED_OLD_METER_FAILED = "skipped: old meter upload failed for this account"
AUTH_FAILED_PREFIX = "Authentication failed"

DUPLICATE_PATTERNS = ("already exists", "already been taken")
STORAGE_PATTERNS = ("disk", "upload", "driver")


class FailureClassification(BaseModel):
    kind: ErrorKind = ErrorKind.GENERIC
    is_auth_error: bool = False
    is_duplicate_error: bool = False
    is_storage_error: bool = False

    @property
    def is_retryable(self) -> bool:
        """Whether the next scheduled run can be expected to clear this failure."""
        return self.kind in (ErrorKind.NETWORK, ErrorKind.SERVER, ErrorKind.STORAGE, ErrorKind.GENERIC)


def _message_of(error: Optional[str], data: Any) -> str:
    parts = [error or ""]
    if isinstance(data, dict) and data.get("message"):
        parts.append(str(data["message"]))
    return " ".join(parts).lower()


def classify_failure(
    status: Optional[int] = None,
    error: Optional[str] = None,
    data: Any = None,
    is_network_error: bool = False,
    is_auth_error: bool = False,
) -> FailureClassification:
    """Best-effort classification of a failed gateway call, for reporting only."""
    text = _message_of(error, data)

    if is_auth_error or status == 401:
        return FailureClassification(kind=ErrorKind.AUTH, is_auth_error=True)

    if any(p in text for p in DUPLICATE_PATTERNS):
        return FailureClassification(kind=ErrorKind.DUPLICATE, is_duplicate_error=True)

    if status == 500:
        return FailureClassification(kind=ErrorKind.SERVER, is_storage_error=True)

    if any(p in text for p in STORAGE_PATTERNS):
        return FailureClassification(kind=ErrorKind.STORAGE, is_storage_error=True)

    if is_network_error:
        return FailureClassification(kind=ErrorKind.NETWORK)

    if status is not None and status >= 500:
        return FailureClassification(kind=ErrorKind.SERVER)

    return FailureClassification(kind=ErrorKind.GENERIC)


def classify_stored_error(message: Optional[str]) -> FailureClassification:
    """Classify an upload_error as written by the pipeline, when only the text survives."""
    text = (message or "").strip()
    if text == SKIPPED_OLD_METER_FAILED:
        return FailureClassification(kind=ErrorKind.SKIPPED_DEPENDENCY)
    if text == INVALID_ACCOUNT_ID:
        return FailureClassification(kind=ErrorKind.VALIDATION)
    if text.startswith(AUTH_FAILED_PREFIX):
        return FailureClassification(kind=ErrorKind.AUTH, is_auth_error=True)
    return classify_failure(error=text)
