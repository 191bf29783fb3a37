"""
Connectivity oracle: link-layer state is not enough on a field device, so the
oracle confirms the backend (or a well-known host) actually answers.
"""
from __future__ import annotations

import logging
from typing import List, Optional, Protocol

import httpx

logger = logging.getLogger(__name__)


class ConnectivityOracle(Protocol):
    async def is_connected(self) -> bool:
        ...


class HttpConnectivityOracle:
    def __init__(
        self,
        probe_urls: List[str],
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.probe_urls = list(probe_urls)
        self.timeout = timeout
        self._transport = transport
        self.last_state: Optional[bool] = None

    async def is_connected(self) -> bool:
        """True when any probe URL answers a HEAD request, whatever its status."""
        async with httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=True,
            transport=self._transport,
        ) as client:
            for url in self.probe_urls:
                try:
                    await client.head(url, headers={"Cache-Control": "no-cache"})
                    self._remember(True)
                    return True
                except httpx.HTTPError as e:
                    logger.debug(f"[connectivity] Probe {url} failed: {e}")
        self._remember(False)
        return False

    def _remember(self, state: bool) -> None:
        if state != self.last_state:
            logger.info(f"[connectivity] Backend {'reachable' if state else 'unreachable'}")
        self.last_state = state
