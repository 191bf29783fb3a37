"""
Fixed-delay retry shared by account-instance creation and record uploads.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from metersync.schemas.sync import GatewayResponse

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_transient(response: GatewayResponse) -> bool:
    """5xx, timeout and network failures are worth another attempt; auth never is."""
    if response.success or response.is_auth_error:
        return False
    if response.is_network_error:
        return True
    return response.status is not None and response.status >= 500


async def retry_with_fixed_delay(
    operation: Callable[[], Awaitable[T]],
    *,
    retries: int,
    delay: float,
    should_retry: Callable[[T], bool] = is_transient,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    label: str = "operation",
) -> T:
    """
    Await `operation` up to `retries + 1` times.

    The result of every attempt is passed to `should_retry`; as long as it says
    yes and attempts remain, wait `delay` seconds and try again. The last
    result is returned either way, so callers see the final failure detail.
    """
    attempts = max(0, retries) + 1
    result = await operation()
    for attempt in range(2, attempts + 1):
        if not should_retry(result):
            break
        logger.info(f"[retry] {label} failed, retrying in {delay}s (attempt {attempt}/{attempts})")
        await sleep(delay)
        result = await operation()
    return result
