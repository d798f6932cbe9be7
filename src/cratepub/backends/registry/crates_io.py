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

"""crates.io registry backend for cratepub.

The :class:`CratesIoRegistry` implements the
:class:`~cratepub.backends.registry.RegistryClient` protocol. Reads use
the `crates.io web API <https://crates.io/api/v1>`_; writes shell out to
``cargo publish``, which handles packaging and authentication
(``CARGO_REGISTRY_TOKEN`` or ``~/.cargo/credentials.toml``).

API endpoints used::

    GET /api/v1/crates/{name}              → crate metadata + versions
    GET /api/v1/crates/{name}/{version}    → specific version info

``cargo publish`` failures are classified from stderr into a
:class:`~cratepub.backends.registry.PublishErrorKind`. Resolution errors
for a just-published dependency ("failed to select a version") are
transient: the sparse index lags the API by a few seconds.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import httpx

from cratepub.backends._run import TimeoutExpired, run_command
from cratepub.backends.registry._types import PackageArtifact, PublishError, PublishErrorKind, RegistryError
from cratepub.errors import E
from cratepub.logging import get_logger
from cratepub.net import DEFAULT_POOL_SIZE, http_client, request_with_retry

log = get_logger('cratepub.backends.registry.crates_io')

# Ordered: the first matching group wins.
_STDERR_PATTERNS: tuple[tuple[PublishErrorKind, tuple[str, ...]], ...] = (
    (PublishErrorKind.VERSION_EXISTS, ('already uploaded', 'already exists')),
    (
        PublishErrorKind.AUTH,
        (
            'no token found',
            'non-empty token',
            'unauthorized',
            'forbidden',
            'invalid token',
            'status 401',
            'status 403',
            '401 unauthorized',
            '403 forbidden',
        ),
    ),
    (PublishErrorKind.RATE_LIMITED, ('too many requests', 'rate limit', 'status 429', '429 too many')),
    (
        PublishErrorKind.TRANSIENT,
        (
            'failed to select a version',
            'no matching package named',
            'spurious network error',
            'timed out',
            'connection reset',
            'connection refused',
            'status 500',
            'status 502',
            'status 503',
            'status 504',
            'service unavailable',
            'bad gateway',
        ),
    ),
    (
        PublishErrorKind.VALIDATION,
        (
            'missing or empty metadata',
            'failed to verify',
            'invalid',
            'all dependencies must have a version',
            'crate name is too long',
            'is a reserved name',
        ),
    ),
)


def classify_publish_failure(stderr: str) -> PublishErrorKind:
    """Map ``cargo publish`` stderr to a :class:`PublishErrorKind`."""
    text = stderr.lower()
    for kind, needles in _STDERR_PATTERNS:
        if any(needle in text for needle in needles):
            return kind
    return PublishErrorKind.UNKNOWN


def _last_error_line(stderr: str) -> str:
    lines = [line.strip() for line in stderr.strip().splitlines() if line.strip()]
    for line in reversed(lines):
        if line.lower().startswith(('error', 'caused by')):
            return line
    return lines[-1] if lines else 'cargo publish failed with no output'


class CratesIoRegistry:
    """crates.io :class:`~cratepub.backends.registry.RegistryClient` implementation.

    Args:
        base_url: Base URL of the registry web API.
        index: Alternative registry index URL, passed to cargo as
            ``--index``.
        registry_name: Named alternative registry from
            ``.cargo/config.toml``, passed to cargo as ``--registry``.
        workspace_root: Directory ``cargo publish`` runs in.
        pool_size: HTTP connection pool size.
    """

    #: Base URL for the production crates.io registry.
    DEFAULT_BASE_URL: str = 'https://crates.io'

    def __init__(
        self,
        *,
        base_url: str = DEFAULT_BASE_URL,
        index: str = '',
        registry_name: str = '',
        workspace_root: Path | None = None,
        pool_size: int = DEFAULT_POOL_SIZE,
    ) -> None:
        """Initialize with the registry location and cargo options."""
        self._base_url = base_url.rstrip('/')
        self._index = index
        self._registry_name = registry_name
        self._workspace_root = workspace_root
        self._pool_size = pool_size

    async def get_published_versions(self, crate_name: str, *, timeout: float) -> list[str] | None:
        """List every version of ``crate_name`` the registry knows, newest first.

        Raises:
            RegistryError: On a transport failure or an unexpected status
                (retryable), or a malformed body (not retryable).
        """
        url = f'{self._base_url}/api/v1/crates/{crate_name}'
        async with http_client(pool_size=self._pool_size, timeout=timeout) as client:
            try:
                response = await request_with_retry(client, 'GET', url)
            except httpx.TransportError as exc:
                raise RegistryError(f'GET {url} failed: {exc}') from exc

        if response.status_code == 404:
            log.debug('crate_not_found', crate=crate_name)
            return None
        if response.status_code != 200:
            raise RegistryError(
                f'GET {url} returned HTTP {response.status_code}',
                retryable=response.status_code >= 500 or response.status_code == 429,
            )

        try:
            data = response.json()
            versions = [str(v['num']) for v in data['versions']]
        except (ValueError, KeyError, TypeError) as exc:
            raise RegistryError(
                f'Malformed response for {crate_name!r} from {url}',
                retryable=False,
                code=E.REGISTRY_MALFORMED_RESPONSE,
                hint='Check that registry_url points at a crates.io-compatible API.',
            ) from exc

        log.debug('crate_versions', crate=crate_name, count=len(versions))
        return versions

    async def is_resolvable(self, crate_name: str, version: str, *, timeout: float) -> bool:
        """Whether ``crate_name@version`` is served and not yanked.

        Transport errors count as "not yet": the caller polls again.
        """
        url = f'{self._base_url}/api/v1/crates/{crate_name}/{version}'
        async with http_client(pool_size=self._pool_size, timeout=timeout) as client:
            try:
                response = await request_with_retry(client, 'GET', url)
            except httpx.TransportError as exc:
                log.debug('resolvable_check_failed', crate=crate_name, version=version, error=str(exc))
                return False

        if response.status_code != 200:
            log.debug('crate_version_not_found', crate=crate_name, version=version, status=response.status_code)
            return False
        try:
            yanked = bool(response.json()['version'].get('yanked', False))
        except (ValueError, KeyError, TypeError, AttributeError):
            log.warning('crates_io_parse_error', crate=crate_name, version=version)
            return False
        return not yanked

    def _publish_command(self, crate_name: str, *, verify: bool = True) -> list[str]:
        # --allow-dirty: version bumps are written to the manifests right
        # before publishing and are never committed by cratepub.
        cmd = ['cargo', 'publish', '-p', crate_name, '--allow-dirty']
        if not verify:
            cmd.append('--no-verify')
        if self._registry_name:
            cmd.extend(['--registry', self._registry_name])
        elif self._index:
            cmd.extend(['--index', self._index])
        return cmd

    async def publish(
        self,
        crate_name: str,
        version: str,
        artifact: PackageArtifact,
        *,
        timeout: float,
    ) -> None:
        """Run ``cargo publish`` for ``crate_name``.

        Raises:
            PublishError: Classified from the exit status and stderr.
        """
        cmd = self._publish_command(crate_name, verify=artifact.verify)
        cwd = self._workspace_root or artifact.path
        log.info('cargo_publish', crate=crate_name, version=version, cwd=str(cwd), verify=artifact.verify)
        try:
            result = await asyncio.to_thread(run_command, cmd, cwd=cwd, timeout=timeout)
        except TimeoutExpired as exc:
            raise PublishError(
                PublishErrorKind.TIMEOUT,
                f'cargo publish for {crate_name} {version} did not finish within {timeout:.0f}s',
            ) from exc
        except FileNotFoundError as exc:
            raise PublishError(
                PublishErrorKind.VALIDATION,
                'cargo executable not found',
                retryable=False,
                hint='Install the Rust toolchain or put cargo on PATH.',
            ) from exc

        if result.ok:
            return

        kind = classify_publish_failure(result.stderr)
        raise PublishError(kind, f'{crate_name} {version}: {_last_error_line(result.stderr)}')


__all__ = [
    'CratesIoRegistry',
    'classify_publish_failure',
]
