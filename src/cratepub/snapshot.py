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

"""Read-through cache of per-crate registry state.

A :class:`RegistrySnapshot` combines what the registry says about a
crate (its published versions) with what the ledger knows (the
fingerprint each version was published from). :class:`SnapshotCache`
fetches snapshots lazily, keeps them for ``ttl`` seconds, and drops a
crate's entry as soon as that crate is published.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from cratepub.backends.registry import RegistryClient, RegistryError
from cratepub.errors import E
from cratepub.ledger import FingerprintLedger
from cratepub.logging import get_logger
from cratepub.semver import max_version

logger = get_logger(__name__)


@dataclass(frozen=True)
class RegistrySnapshot:
    """Registry state of one crate at ``fetched_at``.

    Attributes:
        crate: Crate name.
        versions: Published versions in registry order; empty when the
            crate has never been published.
        latest: Highest version by semver precedence, or ``None``.
        fingerprints: Ledger fingerprint per published version, where
            known.
        fetched_at: Monotonic clock reading when the snapshot was taken.
    """

    crate: str
    versions: tuple[str, ...] = ()
    latest: str | None = None
    fingerprints: dict[str, str] = field(default_factory=dict)
    fetched_at: float = 0.0

    @property
    def published(self) -> bool:
        """Whether the registry has any version of the crate."""
        return bool(self.versions)

    def fingerprint_for(self, version: str) -> str | None:
        """Ledger fingerprint for ``version``, if one was recorded."""
        return self.fingerprints.get(version)

    @classmethod
    def build(
        cls,
        crate: str,
        versions: list[str] | None,
        ledger: FingerprintLedger,
        *,
        fetched_at: float = 0.0,
    ) -> RegistrySnapshot:
        """Assemble a snapshot from a registry listing and the ledger."""
        versions = versions or []
        recorded = ledger.versions(crate)
        return cls(
            crate=crate,
            versions=tuple(versions),
            latest=max_version(versions),
            fingerprints={v: recorded[v] for v in versions if v in recorded},
            fetched_at=fetched_at,
        )


class SnapshotCache:
    """Per-crate snapshot cache with a validity window.

    Concurrent :meth:`get` calls for the same crate share one registry
    lookup.

    Args:
        registry: Source of published versions.
        ledger: Source of recorded fingerprints.
        ttl: Seconds a snapshot stays valid.
        timeout: Per-lookup timeout in seconds.
        clock: Monotonic clock, injectable for tests.
    """

    def __init__(
        self,
        registry: RegistryClient,
        ledger: FingerprintLedger,
        *,
        ttl: float = 60.0,
        timeout: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize an empty cache."""
        self._registry = registry
        self._ledger = ledger
        self._ttl = ttl
        self._timeout = timeout
        self._clock = clock
        self._entries: dict[str, RegistrySnapshot] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def peek(self, crate: str) -> RegistrySnapshot | None:
        """Return the cached snapshot if it is still valid."""
        snap = self._entries.get(crate)
        if snap is None or self._clock() - snap.fetched_at >= self._ttl:
            return None
        return snap

    async def get(self, crate: str) -> RegistrySnapshot:
        """Return a valid snapshot for ``crate``, fetching if needed.

        Raises:
            RegistryError: If the registry lookup fails or times out, or the
                registry lists no valid semver version (not retryable).
        """
        cached = self.peek(crate)
        if cached is not None:
            return cached

        lock = self._locks.setdefault(crate, asyncio.Lock())
        async with lock:
            cached = self.peek(crate)
            if cached is not None:
                return cached
            try:
                versions = await asyncio.wait_for(
                    self._registry.get_published_versions(crate, timeout=self._timeout),
                    timeout=self._timeout,
                )
            except asyncio.TimeoutError as exc:
                raise RegistryError(f'Looking up {crate!r} timed out after {self._timeout}s') from exc
            snap = RegistrySnapshot.build(crate, versions, self._ledger, fetched_at=self._clock())
            if snap.versions and snap.latest is None:
                raise RegistryError(
                    f'Registry lists versions of {crate!r} but none is valid semver: {list(snap.versions)}',
                    retryable=False,
                    code=E.REGISTRY_MALFORMED_RESPONSE,
                )
            self._entries[crate] = snap
            logger.debug('snapshot_fetched', crate=crate, versions=len(snap.versions), latest=snap.latest)
            return snap

    def invalidate(self, crate: str) -> None:
        """Drop the cached snapshot of ``crate``."""
        if self._entries.pop(crate, None) is not None:
            logger.debug('snapshot_invalidated', crate=crate)


__all__ = [
    'RegistrySnapshot',
    'SnapshotCache',
]
