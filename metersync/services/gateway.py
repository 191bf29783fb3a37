"""
Remote Upload Gateway

HTTP client for the three backend calls the upload pipeline needs:
  • create_account_instance — idempotent "touch" that makes the backend open
                              an account context before meter data attaches
  • upload_old_meter        — form post with the removed meter's details
  • upload_new_meter        — form post with the installed meter's details

Forms go out multipart when captured images are attached, url-encoded otherwise.
Image files are read in a worker thread.

Each call makes exactly one attempt and never raises on HTTP or network
problems; it returns a GatewayResponse. Retries belong to the pipeline.
"""
from __future__ import annotations

import asyncio
import json
import logging
import mimetypes
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Tuple

import httpx

from metersync.core.config import Settings, settings as default_settings
from metersync.schemas.meter import NewMeterRead, OldMeterRead
from metersync.schemas.sync import GatewayResponse
from metersync.services.credentials import CredentialProvider

logger = logging.getLogger(__name__)

MISSING_TOKEN = "Authentication token not available"


class UploadGateway(Protocol):
    async def create_account_instance(self, account_id: str) -> GatewayResponse:
        ...

    async def upload_old_meter(self, record: OldMeterRead) -> GatewayResponse:
        ...

    async def upload_new_meter(self, record: NewMeterRead) -> GatewayResponse:
        ...


# ── Form builders ─────────────────────────────────────────────────────────────

def _creator(created_by: Optional[str], fallback_user_id: Optional[str]) -> str:
    if created_by and created_by != "0":
        return created_by
    return fallback_user_id or "0"


def build_old_meter_form(record: OldMeterRead, user_id: Optional[str] = None) -> Dict[str, str]:
    return {
        "account_id": record.account_id,
        "serial_no_old": record.serial_no_old or "",
        "mfd_year_old": record.mfd_year_old or "",
        "final_reading": record.final_reading or "",
        "category": record.category or "EM",
        "meter_make_old": record.meter_make_old or "",
        "created_by": _creator(record.created_by, user_id),
    }


def build_new_meter_form(record: NewMeterRead, user_id: Optional[str] = None) -> Dict[str, str]:
    kwh = str(record.initial_reading_kwh or "0").strip()
    kvah = str(record.initial_reading_kvah or kwh).strip()
    return {
        "account_id": record.account_id,
        "meter_make_new": record.meter_make_new or "",
        "serial_no_new": record.serial_no_new or "",
        "mfd_year_new": record.mfd_year_new or "",
        "initial_reading_kwh": kwh,
        "initial_reading_kvah": kvah,
        "created_by": _creator(record.created_by, user_id),
        "lat": record.lat or "0.0",
        "lon": record.lon or "0.0",
    }


def build_image_files(images: Dict[str, Optional[str]]) -> List[Tuple[str, Tuple[str, bytes, str]]]:
    """Attach captured images that still exist on disk; missing files are skipped."""
    files = []
    for field, reference in images.items():
        if not reference:
            continue
        path = Path(reference.replace("file://", "", 1))
        if not path.is_file():
            logger.warning(f"[gateway] Image for {field} not found at {reference}, uploading without it")
            continue
        content_type = mimetypes.guess_type(path.name)[0] or "image/jpeg"
        files.append((field, (path.name, path.read_bytes(), content_type)))
    return files


def _parse_body(response: httpx.Response) -> Optional[Any]:
    text = response.text
    if not text or not text.strip():
        return None
    try:
        return json.loads(text)
    except ValueError:
        return None


# ── HTTP gateway ──────────────────────────────────────────────────────────────

class HttpUploadGateway:
    def __init__(
        self,
        credentials: CredentialProvider,
        config: Settings = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.credentials = credentials
        self.settings = config or default_settings
        self._transport = transport

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, transport=self._transport)

    def _headers(self, token: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {token}", "Accept": "application/json"}

    async def create_account_instance(self, account_id: str) -> GatewayResponse:
        if not account_id or not str(account_id).strip():
            return GatewayResponse(success=False, status=400, error="Invalid account ID")

        token = self.credentials.get_token()
        if not token:
            return GatewayResponse(success=False, error=MISSING_TOKEN, is_auth_error=True)

        url = self.settings.account_instance_url
        try:
            async with self._client(self.settings.INSTANCE_TIMEOUT_SECONDS) as client:
                response = await client.get(
                    url, params={"account_id": str(account_id)}, headers=self._headers(token),
                )
        except httpx.TimeoutException:
            logger.warning(f"[gateway] Account instance request timed out for {account_id}")
            return GatewayResponse(success=False, error="Request timed out", is_network_error=True)
        except httpx.HTTPError as e:
            logger.warning(f"[gateway] Account instance request failed for {account_id}: {e}")
            return GatewayResponse(success=False, error=f"Network error: {e}", is_network_error=True)

        data = _parse_body(response)
        if response.is_success:
            return GatewayResponse(
                success=True,
                status=response.status_code,
                data=data if data is not None else {"message": "Server instance created successfully"},
            )

        if response.status_code == 401:
            return GatewayResponse(
                success=False, status=401, error="Authentication failed", is_auth_error=True,
            )
        if response.status_code == 404:
            return GatewayResponse(success=False, status=404, error="Account not found", data=data)

        message = data.get("message") if isinstance(data, dict) else None
        return GatewayResponse(
            success=False,
            status=response.status_code,
            error=message or f"Server error: {response.status_code}",
            data=data,
        )

    async def upload_old_meter(self, record: OldMeterRead) -> GatewayResponse:
        form = build_old_meter_form(record, self.credentials.get_user_id())
        files = await asyncio.to_thread(
            build_image_files, {"image_1_old": record.image_1_old, "image_2_old": record.image_2_old},
        )
        return await self._post_form(
            self.settings.old_meter_upload_url,
            form,
            files,
            self.settings.OLD_METER_UPLOAD_TIMEOUT_SECONDS,
            label=f"old meter {record.id}",
        )

    async def upload_new_meter(self, record: NewMeterRead) -> GatewayResponse:
        form = build_new_meter_form(record, self.credentials.get_user_id())
        files = await asyncio.to_thread(
            build_image_files, {"image_1_new": record.image_1_new, "image_2_new": record.image_2_new},
        )
        return await self._post_form(
            self.settings.new_meter_upload_url,
            form,
            files,
            self.settings.NEW_METER_UPLOAD_TIMEOUT_SECONDS,
            label=f"new meter {record.id}",
        )

    async def _post_form(
        self,
        url: str,
        form: Dict[str, str],
        files: List[Tuple[str, Tuple[str, bytes, str]]],
        timeout: float,
        label: str,
    ) -> GatewayResponse:
        token = self.credentials.get_token()
        if not token:
            return GatewayResponse(success=False, error=MISSING_TOKEN, is_auth_error=True)

        try:
            async with self._client(timeout) as client:
                response = await client.post(
                    url, data=form, files=files or None, headers=self._headers(token),
                )
        except httpx.TimeoutException:
            logger.warning(f"[gateway] Upload of {label} timed out")
            return GatewayResponse(success=False, status=0, error="Request timed out", is_network_error=True)
        except httpx.HTTPError as e:
            logger.warning(f"[gateway] Upload of {label} failed: {e}")
            return GatewayResponse(
                success=False, error=f"Network request failed: {e}", is_network_error=True,
            )

        data = _parse_body(response)
        if response.is_success:
            if data is None:
                return GatewayResponse(
                    success=False, status=response.status_code, error="Invalid response format",
                )
            return GatewayResponse(success=True, status=response.status_code, data=data)

        message = data.get("message") if isinstance(data, dict) else None
        return GatewayResponse(
            success=False,
            status=response.status_code,
            error=message or f"Request failed with status {response.status_code}",
            data=data,
            is_auth_error=response.status_code == 401,
        )
