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

"""Shared types for the workspace subpackage."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

__all__ = [
    'CrateRecord',
]


@dataclass(frozen=True)
class CrateRecord:
    """A single crate discovered in the workspace.

    Records are built once per run and never mutated; a fresh run
    re-reads the workspace.

    Attributes:
        name: The crate name, unique within the workspace.
        version: The declared version string from ``Cargo.toml``.
        deps: Names of workspace crates this crate depends on, in
            manifest order. External (registry) crates are not listed.
        fingerprint: SHA-256 of the crate's source tree. Used to detect
            "nothing changed since the last publish" independently of the
            declared version text.
        path: Absolute path to the crate directory.
        manifest_path: Absolute path to the crate's ``Cargo.toml``.
        publishable: ``False`` when the manifest says ``publish = false``.
        shares_version_with: Other members that read the same
            ``[workspace.package].version`` (``version.workspace = true``).
            Empty when the crate declares its own version or is the only
            one inheriting it.
    """

    name: str
    version: str
    deps: tuple[str, ...] = ()
    fingerprint: str = ''
    path: Path = Path()
    manifest_path: Path = Path()
    publishable: bool = True
    shares_version_with: tuple[str, ...] = ()
