# Copyright 2026 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#
# SPDX-License-Identifier: Apache-2.0

"""HTTP utilities for cratepub.

Provides a managed :class:`httpx.AsyncClient` with connection pooling and
a :func:`request_with_retry` helper that backs off on rate limits, 5xx
responses and connection errors.

The crates.io crawler policy rejects requests without a descriptive
``User-Agent``, so every client sends :data:`USER_AGENT` unless the
caller overrides it.

Usage::

    from cratepub.net import http_client, request_with_retry

    async with http_client(base_url='https://crates.io') as client:
        response = await request_with_retry(client, 'GET', '/api/v1/crates/serde')
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Final

import httpx

from cratepub import __version__
from cratepub.logging import get_logger

log = get_logger('cratepub.net')

DEFAULT_POOL_SIZE: Final[int] = 10
DEFAULT_TIMEOUT: Final[float] = 30.0

MAX_RETRIES: Final[int] = 3
RETRY_BACKOFF_BASE: Final[float] = 1.0

# Upper bound on a server-supplied Retry-After.
MAX_RETRY_AFTER: Final[float] = 60.0

RETRYABLE_STATUS_CODES: Final[frozenset[int]] = frozenset({429, 500, 502, 503, 504})

USER_AGENT: Final[str] = f'cratepub/{__version__} (dependency-ordered crate publisher)'


@asynccontextmanager
async def http_client(
    *,
    pool_size: int = DEFAULT_POOL_SIZE,
    timeout: float = DEFAULT_TIMEOUT,
    base_url: str = '',
    headers: dict[str, str] | None = None,
) -> AsyncGenerator[httpx.AsyncClient]:
    """Create a managed async HTTP client with connection pooling.

    Args:
        pool_size: Maximum number of connections in the pool.
        timeout: Request timeout in seconds.
        base_url: Optional base URL for all requests.
        headers: Extra default headers, merged over the ``User-Agent``.
    """
    limits = httpx.Limits(
        max_connections=pool_size,
        max_keepalive_connections=pool_size,
    )
    async with httpx.AsyncClient(
        limits=limits,
        timeout=httpx.Timeout(timeout),
        base_url=base_url,
        headers={'User-Agent': USER_AGENT, **(headers or {})},
        follow_redirects=True,
    ) as client:
        yield client


# Transport failures worth another try; anything else propagates at once.
TRANSIENT_ERRORS: Final[tuple[type[httpx.TransportError], ...]] = (
    httpx.ConnectError,
    httpx.ReadTimeout,
    httpx.WriteTimeout,
    httpx.PoolTimeout,
)


def _retry_delay(response: httpx.Response | None, attempt: int, backoff_base: float) -> float:
    """Seconds to wait before retry ``attempt + 1``.

    A numeric ``Retry-After`` from the server wins, capped at
    :data:`MAX_RETRY_AFTER`. Otherwise the delay doubles per attempt.
    """
    retry_after = response.headers.get('Retry-After', '') if response is not None else ''
    if retry_after.isdigit():
        return min(float(retry_after), MAX_RETRY_AFTER)
    return backoff_base * (2**attempt)


async def _back_off(
    url: str,
    attempt: int,
    backoff_base: float,
    response: httpx.Response | None,
    **why: object,
) -> None:
    delay = _retry_delay(response, attempt, backoff_base)
    event = 'http_retry' if response is not None else 'http_retry_error'
    log.warning(event, url=url, attempt=attempt + 1, delay=delay, **why)
    await asyncio.sleep(delay)


async def request_with_retry(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    max_retries: int = MAX_RETRIES,
    backoff_base: float = RETRY_BACKOFF_BASE,
    **kwargs: object,
) -> httpx.Response:
    """Send a request, retrying rate limits, 5xx and :data:`TRANSIENT_ERRORS`.

    The request is tried at most ``max_retries + 1`` times. Whatever
    response the last try gets is returned untouched, retryable status
    or not, so callers decide what a lingering 503 means.

    Raises:
        httpx.TransportError: The last try failed before any response.
    """
    if max_retries < 0:
        msg = f'max_retries must be >= 0, got {max_retries}'
        raise ValueError(msg)

    attempt = 0
    while True:
        exhausted = attempt >= max_retries
        try:
            response = await client.request(method, url, **kwargs)  # type: ignore[arg-type]
        except TRANSIENT_ERRORS as exc:
            if exhausted:
                raise
            await _back_off(url, attempt, backoff_base, None, error=str(exc))
        else:
            if exhausted or response.status_code not in RETRYABLE_STATUS_CODES:
                return response
            await _back_off(url, attempt, backoff_base, response, status=response.status_code)
        attempt += 1


__all__ = [
    'DEFAULT_POOL_SIZE',
    'DEFAULT_TIMEOUT',
    'MAX_RETRIES',
    'RETRYABLE_STATUS_CODES',
    'TRANSIENT_ERRORS',
    'USER_AGENT',
    'http_client',
    'request_with_retry',
]
