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

"""Workspace protocol for cratepub.

The :class:`WorkspaceSource` protocol defines the async interface for
discovering workspace crates, fingerprinting their sources, and
rewriting versions. Implementations:

- :class:`~cratepub.backends.workspace.cargo.CargoWorkspace` — ``Cargo.toml`` + ``[workspace]``
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from cratepub.backends.workspace._types import CrateRecord as CrateRecord
from cratepub.backends.workspace.cargo import CargoWorkspace as CargoWorkspace

__all__ = [
    'CargoWorkspace',
    'CrateRecord',
    'WorkspaceSource',
]


@runtime_checkable
class WorkspaceSource(Protocol):
    """Protocol for crate discovery, fingerprinting, and version rewriting.

    All methods are async to avoid blocking the event loop during
    file I/O operations.
    """

    async def list_crates(self) -> list[CrateRecord]:
        """Discover every crate in the workspace.

        Returns:
            One record per crate, in a stable order.
        """
        ...

    async def apply_version_bump(self, crate_name: str, new_version: str) -> None:
        """Rewrite the crate's own version and every workspace pin on it.

        Args:
            crate_name: Crate whose version changes.
            new_version: The new version string.
        """
        ...

    async def fingerprint(self, crate_name: str) -> str:
        """Recompute the content fingerprint of a crate.

        Called after a bump so the ledger records exactly what was
        published.
        """
        ...
