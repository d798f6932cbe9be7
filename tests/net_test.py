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

"""Tests for cratepub.net module."""

from __future__ import annotations

import httpx
import pytest
from cratepub.logging import configure_logging
from cratepub.net import (
    DEFAULT_POOL_SIZE,
    DEFAULT_TIMEOUT,
    MAX_RETRIES,
    RETRYABLE_STATUS_CODES,
    USER_AGENT,
    _retry_delay,
    http_client,
    request_with_retry,
)

configure_logging(quiet=True)


class TestConstants:
    """Tests for module-level constants."""

    def test_defaults(self) -> None:
        """Pool size, timeout and retries have their documented defaults."""
        assert DEFAULT_POOL_SIZE == 10
        assert DEFAULT_TIMEOUT == 30.0
        assert MAX_RETRIES == 3

    def test_retryable_status_codes(self) -> None:
        """Retryable codes are 429 and the 5xx gateway errors."""
        assert RETRYABLE_STATUS_CODES == {429, 500, 502, 503, 504}

    def test_user_agent_names_tool(self) -> None:
        """crates.io requires a descriptive User-Agent."""
        assert USER_AGENT.startswith('cratepub/')


class TestHttpClient:
    """Tests for the http_client context manager."""

    @pytest.mark.asyncio
    async def test_sends_user_agent(self) -> None:
        """The User-Agent header is set by default."""
        async with http_client() as client:
            assert client.headers['User-Agent'] == USER_AGENT

    @pytest.mark.asyncio
    async def test_extra_headers_override(self) -> None:
        """Caller headers are merged over the defaults."""
        async with http_client(headers={'User-Agent': 'custom', 'X-Test': 'hello'}) as client:
            assert client.headers['User-Agent'] == 'custom'
            assert client.headers['X-Test'] == 'hello'

    @pytest.mark.asyncio
    async def test_timeout_and_base_url(self) -> None:
        """Timeout and base_url are passed through."""
        async with http_client(timeout=60.0, base_url='https://example.com') as client:
            assert client.timeout.connect == 60.0
            assert str(client.base_url) == 'https://example.com'


class TestRetryDelay:
    """Tests for the backoff computation."""

    def test_exponential(self) -> None:
        """Without Retry-After the delay doubles per attempt."""
        assert [_retry_delay(None, n, 1.0) for n in range(4)] == [1.0, 2.0, 4.0, 8.0]

    def test_retry_after_honoured(self) -> None:
        """A numeric Retry-After wins over the backoff."""
        response = httpx.Response(429, headers={'Retry-After': '7'})
        assert _retry_delay(response, 0, 1.0) == 7.0

    def test_retry_after_capped(self) -> None:
        """An absurd Retry-After is capped."""
        response = httpx.Response(429, headers={'Retry-After': '3600'})
        assert _retry_delay(response, 0, 1.0) == 60.0

    def test_retry_after_date_ignored(self) -> None:
        """A date-form Retry-After falls back to the backoff."""
        response = httpx.Response(503, headers={'Retry-After': 'Wed, 21 Oct 2015 07:28:00 GMT'})
        assert _retry_delay(response, 2, 0.5) == 2.0


class TestRequestWithRetry:
    """Tests for request_with_retry."""

    @pytest.mark.asyncio
    async def test_success_no_retry(self) -> None:
        """A successful request returns immediately."""
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(200, json={'ok': True})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            response = await request_with_retry(client, 'GET', 'https://example.com/api')
        assert response.status_code == 200
        assert calls == 1

    @pytest.mark.asyncio
    async def test_non_retryable_status(self) -> None:
        """A 404 is returned without retrying."""
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(404, text='not found')

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            response = await request_with_retry(client, 'GET', 'https://example.com/missing', max_retries=2)
        assert response.status_code == 404
        assert calls == 1

    @pytest.mark.asyncio
    async def test_retryable_status_exhausted(self) -> None:
        """After the last retry the retryable response is returned for the caller to classify."""
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(503, text='unavailable')

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            response = await request_with_retry(
                client, 'GET', 'https://example.com/fail', max_retries=2, backoff_base=0.0
            )
        assert response.status_code == 503
        assert calls == 3

    @pytest.mark.asyncio
    async def test_retryable_then_success(self) -> None:
        """Retries on 503 then succeeds."""
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            if calls < 2:
                return httpx.Response(503, text='try again')
            return httpx.Response(200, json={'ok': True})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            response = await request_with_retry(
                client, 'GET', 'https://example.com/retry', max_retries=3, backoff_base=0.0
            )
        assert response.status_code == 200
        assert calls == 2

    @pytest.mark.asyncio
    async def test_connection_error_retries(self) -> None:
        """Connection errors trigger retries."""
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            if calls < 2:
                raise httpx.ConnectError('connection refused')
            return httpx.Response(200)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            response = await request_with_retry(
                client, 'GET', 'https://example.com/retry', max_retries=3, backoff_base=0.0
            )
        assert response.status_code == 200
        assert calls == 2

    @pytest.mark.asyncio
    async def test_connection_error_exhausted(self) -> None:
        """Connection errors exhaust retries then raise."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError('connection refused')

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(httpx.ConnectError):
                await request_with_retry(client, 'GET', 'https://example.com/fail', max_retries=1, backoff_base=0.0)

    @pytest.mark.asyncio
    async def test_non_transient_error_not_retried(self) -> None:
        """Protocol errors outside the transient set propagate on the first try."""
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            raise httpx.RemoteProtocolError('garbled')

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(httpx.RemoteProtocolError):
                await request_with_retry(client, 'GET', 'https://example.com/x', max_retries=3, backoff_base=0.0)
        assert calls == 1

    @pytest.mark.asyncio
    async def test_negative_retries_rejected(self) -> None:
        """A negative retry count is a caller bug."""
        async with httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200))) as client:
            with pytest.raises(ValueError, match='max_retries'):
                await request_with_retry(client, 'GET', 'https://example.com/x', max_retries=-1)
