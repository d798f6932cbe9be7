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

"""Fingerprint ledger: what source was published as which version.

crates.io does not tell us what a published version was built from, so
cratepub keeps its own record. After every successful publish it stores
``crate → version → fingerprint`` in a JSON file at the workspace root.
On the next run, a crate whose current fingerprint matches the one
recorded for its latest published version has nothing new to publish.

File format::

    {
      "schema": 1,
      "crates": {
        "my-core": {"1.0.0": "9f86d0...", "1.0.1": "60303a..."}
      }
    }

Saves are atomic (``tempfile`` + ``os.replace``): a crash mid-write
leaves the previous ledger intact.
"""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path

from cratepub.errors import E, CratePubError
from cratepub.logging import get_logger

logger = get_logger(__name__)

LEDGER_FILENAME = '.cratepub-ledger.json'
_SCHEMA = 1


class FingerprintLedger:
    """Persisted ``crate → version → fingerprint`` mapping.

    Args:
        path: Where :meth:`record` persists the ledger. ``None`` keeps it
            in memory only (dry runs, tests).
        entries: Initial contents.
    """

    def __init__(
        self,
        path: Path | None = None,
        entries: dict[str, dict[str, str]] | None = None,
    ) -> None:
        """Initialize with an optional backing file and initial entries."""
        self.path = path
        self._entries: dict[str, dict[str, str]] = {name: dict(v) for name, v in (entries or {}).items()}

    @classmethod
    def load(cls, path: Path) -> FingerprintLedger:
        """Load the ledger at ``path``; a missing file is an empty ledger.

        Raises:
            CratePubError: If the file exists but is not a valid ledger.
        """
        if not path.exists():
            logger.debug('ledger_missing', path=str(path))
            return cls(path)

        try:
            data = json.loads(path.read_text(encoding='utf-8'))
        except (OSError, json.JSONDecodeError) as exc:
            raise CratePubError(
                E.LEDGER_CORRUPTED,
                f'Ledger file {path} could not be read: {exc}',
                hint='Delete the ledger file; unchanged crates then fall back to version comparison.',
            ) from exc

        crates = data.get('crates') if isinstance(data, dict) else None
        if not isinstance(crates, dict) or not all(
            isinstance(versions, dict) and all(isinstance(fp, str) for fp in versions.values())
            for versions in crates.values()
        ):
            raise CratePubError(
                E.LEDGER_CORRUPTED,
                f'Ledger file {path} does not map crates to version fingerprints',
                hint='Delete the ledger file; unchanged crates then fall back to version comparison.',
            )

        logger.debug('ledger_loaded', path=str(path), crates=len(crates))
        return cls(path, crates)

    def lookup(self, crate: str, version: str) -> str | None:
        """Fingerprint recorded for ``crate@version``, if any."""
        return self._entries.get(crate, {}).get(version)

    def versions(self, crate: str) -> dict[str, str]:
        """Every recorded ``version → fingerprint`` for ``crate``."""
        return dict(self._entries.get(crate, {}))

    def record(self, crate: str, version: str, fingerprint: str) -> None:
        """Record a publish and persist the ledger if it has a path."""
        self._entries.setdefault(crate, {})[version] = fingerprint
        logger.debug('ledger_recorded', crate=crate, version=version)
        if self.path is not None:
            self.save(self.path)

    def save(self, path: Path) -> None:
        """Atomically write the ledger to ``path``."""
        content = json.dumps({'schema': _SCHEMA, 'crates': self._entries}, indent=2, sort_keys=True) + '\n'
        fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix='.cratepub-ledger-', suffix='.tmp')
        closed = False
        try:
            os.write(fd, content.encode('utf-8'))
            os.close(fd)
            closed = True
            os.replace(tmp_path, path)
        except BaseException:
            if not closed:
                os.close(fd)
            Path(tmp_path).unlink(missing_ok=True)
            raise

    def __len__(self) -> int:
        """Return the number of crates with at least one entry."""
        return len(self._entries)


__all__ = [
    'LEDGER_FILENAME',
    'FingerprintLedger',
]
