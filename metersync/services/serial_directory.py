"""
Remote Serial Directory client.

GET <serial directory> returns
    {"status": "success", "user_information": [
        {"id": .., "box_id": .., "unused_meter_serial_no": "S1, S2,S3"}, ...]}

Ownership (contractor / box) is reported for logging only; the reconciler
works on the flattened serial set.
"""
from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Protocol, Set

import httpx

from metersync.core.config import Settings, settings as default_settings
from metersync.schemas.sync import SerialOwnerBlock
from metersync.services.credentials import CredentialProvider
from metersync.services.errors import AuthError, FormatError, NetworkError

logger = logging.getLogger(__name__)


class SerialDirectory(Protocol):
    async def fetch_remote_serials(self) -> List[SerialOwnerBlock]:
        ...


def split_serials(csv_text: Optional[str]) -> List[str]:
    """Split on commas, trim whitespace and drop empties."""
    if not csv_text:
        return []
    return [part.strip() for part in str(csv_text).split(",") if part.strip()]


def flatten_serials(blocks: Iterable[SerialOwnerBlock]) -> Set[str]:
    flat: Set[str] = set()
    for block in blocks:
        flat.update(split_serials(block.serials_csv))
    return flat


def parse_directory_payload(payload) -> List[SerialOwnerBlock]:
    if not isinstance(payload, dict):
        raise FormatError("Empty or non-object response from serial directory")
    if payload.get("status") != "success":
        raise FormatError(f"Serial directory returned status: {payload.get('status')}")
    entries = payload.get("user_information")
    if not isinstance(entries, list):
        raise FormatError("Invalid response format - missing or invalid user_information")

    blocks = []
    for entry in entries:
        if not isinstance(entry, dict):
            raise FormatError("Invalid user_information entry")
        blocks.append(
            SerialOwnerBlock(
                owner_id=None if entry.get("id") is None else str(entry.get("id")),
                box_id=None if entry.get("box_id") is None else str(entry.get("box_id")),
                serials_csv=entry.get("unused_meter_serial_no") or "",
            )
        )
    return blocks


class HttpSerialDirectory:
    def __init__(
        self,
        credentials: CredentialProvider,
        config: Settings = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.credentials = credentials
        self.settings = config or default_settings
        self._transport = transport

    async def fetch_remote_serials(self) -> List[SerialOwnerBlock]:
        token = self.credentials.get_token()
        if not token:
            raise AuthError("Authentication token not available")

        url = self.settings.serial_directory_url
        try:
            async with httpx.AsyncClient(
                timeout=self.settings.SERIAL_DIRECTORY_TIMEOUT_SECONDS,
                transport=self._transport,
            ) as client:
                response = await client.get(
                    url,
                    headers={
                        "Authorization": f"Bearer {token}",
                        "Content-Type": "application/json",
                    },
                )
        except httpx.TimeoutException as e:
            raise NetworkError(f"Serial directory request timed out: {e}") from e
        except httpx.HTTPError as e:
            raise NetworkError(f"Serial directory request failed: {e}") from e

        if response.status_code in (401, 403):
            raise AuthError(f"Serial directory rejected credentials ({response.status_code})")
        if not response.is_success:
            raise NetworkError(
                f"API request failed with status {response.status_code}",
                status=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise FormatError("Serial directory response is not JSON") from e

        blocks = parse_directory_payload(payload)
        for block in blocks:
            logger.debug(
                f"[serials] Owner {block.owner_id} (box {block.box_id}): "
                f"{len(split_serials(block.serials_csv))} unused serial numbers"
            )
        return blocks
