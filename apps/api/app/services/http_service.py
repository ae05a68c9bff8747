"""HTTP helpers with retry/backoff for CRM and vendor integrations."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

import httpx

logger = logging.getLogger(__name__)

DEFAULT_RETRY_STATUSES = {500, 502, 503, 504}


async def request_with_retries(
    request_fn: Callable[[], Awaitable[httpx.Response]],
    *,
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 10.0,
    retry_statuses: set[int] | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> httpx.Response:
    """
    Execute an HTTP request with linear backoff retries.

    Attempt N (1-based) waits N * base_delay before the next try. Connection
    errors and timeouts re-raise after the last attempt; a retryable status on
    the last attempt is returned to the caller for classification. Callers pass
    max_attempts=1 for requests that must not be repeated.
    """
    statuses = DEFAULT_RETRY_STATUSES if retry_statuses is None else retry_statuses

    for attempt in range(1, max_attempts + 1):
        try:
            response = await request_fn()
        except httpx.RequestError as exc:
            if attempt >= max_attempts:
                raise
            delay = min(max_delay, base_delay * attempt)
            logger.warning(
                "HTTP request failed (attempt %s/%s), retrying in %.1fs",
                attempt,
                max_attempts,
                delay,
                exc_info=exc,
            )
            if delay:
                await sleep(delay)
            continue

        if response.status_code in statuses and attempt < max_attempts:
            delay = min(max_delay, base_delay * attempt)
            logger.warning(
                "HTTP request returned %s (attempt %s/%s), retrying in %.1fs",
                response.status_code,
                attempt,
                max_attempts,
                delay,
            )
            if delay:
                await sleep(delay)
            continue

        return response

    return response
