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

"""Registry protocol for cratepub.

The :class:`RegistryClient` protocol is the narrow interface the core
uses to read registry state and submit crates. Implementations:

- :class:`~cratepub.backends.registry.crates_io.CratesIoRegistry` — crates.io
  (or any registry with the same web API) plus ``cargo publish``.

Every method takes an explicit ``timeout`` in seconds; callers also
wrap the call in :func:`asyncio.wait_for` with the same value.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from cratepub.backends.registry._types import PackageArtifact as PackageArtifact
from cratepub.backends.registry._types import PublishError as PublishError
from cratepub.backends.registry._types import PublishErrorKind as PublishErrorKind
from cratepub.backends.registry._types import RegistryError as RegistryError
from cratepub.backends.registry.crates_io import CratesIoRegistry as CratesIoRegistry

__all__ = [
    'CratesIoRegistry',
    'PackageArtifact',
    'PublishError',
    'PublishErrorKind',
    'RegistryClient',
    'RegistryError',
]


@runtime_checkable
class RegistryClient(Protocol):
    """Protocol for crate registry reads and publish submission."""

    async def get_published_versions(self, crate_name: str, *, timeout: float) -> list[str] | None:
        """Return every published version, in registry order.

        Returns:
            The version strings (yanked ones included, since they can
            never be published again), or ``None`` if the registry has
            never seen the crate.

        Raises:
            RegistryError: If the lookup fails.
        """
        ...

    async def publish(
        self,
        crate_name: str,
        version: str,
        artifact: PackageArtifact,
        *,
        timeout: float,
    ) -> None:
        """Submit ``artifact`` as ``crate_name@version``.

        Raises:
            PublishError: With ``kind`` and ``retryable`` describing the
                failure.
        """
        ...

    async def is_resolvable(self, crate_name: str, version: str, *, timeout: float) -> bool:
        """Whether dependents can already resolve ``crate_name@version``."""
        ...
