"""
Shared HTTP helpers with explicit timeouts for the courier aggregator.
GET-style calls (serviceability, tracking, order details) retry on 5xx and connection errors;
state-changing POSTs are sent exactly once.
"""
import asyncio
import logging
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 20.0
DEFAULT_RETRIES = 2
RETRY_BACKOFF_BASE = 1.0  # seconds


async def _sleep_backoff(attempt: int) -> None:
    if attempt <= 0 or RETRY_BACKOFF_BASE <= 0:
        return
    delay = RETRY_BACKOFF_BASE * (2 ** (attempt - 1))
    await asyncio.sleep(min(delay, 10.0))


def _client(timeout: float, transport: Optional[httpx.AsyncBaseTransport]) -> httpx.AsyncClient:
    if transport is not None:
        return httpx.AsyncClient(timeout=timeout, transport=transport)
    return httpx.AsyncClient(timeout=timeout)


async def request_with_retry(
    method: str,
    url: str,
    *,
    timeout: float = DEFAULT_TIMEOUT,
    max_retries: int = DEFAULT_RETRIES,
    retry_on: tuple[int, ...] = (502, 503, 504),
    transport: Optional[httpx.AsyncBaseTransport] = None,
    **kwargs: Any,
) -> httpx.Response:
    """
    Perform HTTP request with timeout and bounded retries for server/network errors.
    Only use for idempotent requests.
    """
    resp: Optional[httpx.Response] = None
    for attempt in range(max_retries + 1):
        try:
            async with _client(timeout, transport) as client:
                resp = await client.request(method, url, **kwargs)
            if attempt < max_retries and resp.status_code in retry_on:
                logger.warning("HTTP %s %s returned %s, retrying", method, url, resp.status_code)
                await _sleep_backoff(attempt + 1)
                continue
            return resp
        except (httpx.ConnectError, httpx.ReadTimeout, httpx.ConnectTimeout) as e:
            if attempt < max_retries:
                logger.warning("HTTP %s %s attempt %s failed: %s", method, url, attempt + 1, e)
                await _sleep_backoff(attempt + 1)
            else:
                raise
    return resp  # type: ignore


async def get_with_retry(
    url: str,
    *,
    params: Optional[dict] = None,
    headers: Optional[dict] = None,
    timeout: float = DEFAULT_TIMEOUT,
    max_retries: int = DEFAULT_RETRIES,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.Response:
    """GET with retries on 5xx and connection errors."""
    return await request_with_retry(
        "GET", url, params=params, headers=headers, timeout=timeout, max_retries=max_retries, transport=transport
    )


async def post_no_retry(
    url: str,
    *,
    json: Optional[dict] = None,
    headers: Optional[dict] = None,
    timeout: float = DEFAULT_TIMEOUT,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.Response:
    """POST with no retries (non-idempotent). Single attempt with timeout."""
    async with _client(timeout, transport) as client:
        return await client.post(url, json=json or {}, headers=headers or {})
