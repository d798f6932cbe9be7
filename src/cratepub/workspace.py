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

"""In-memory store of the workspace's crates.

A :class:`CrateStore` is built once per run from a
:class:`~cratepub.backends.workspace.WorkspaceSource` and validated up
front, so everything downstream can rely on:

- crate names being unique;
- no crate listing itself as a dependency;
- every dependency name referring to another crate in the store.

Usage::

    from cratepub.backends.workspace import CargoWorkspace
    from cratepub.workspace import CrateStore

    store = await CrateStore.load(CargoWorkspace(Path('.')))
    print(store.get('my-core').version)
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator

from cratepub.backends.workspace import CrateRecord, WorkspaceSource
from cratepub.errors import E, CratePubError, UnknownCrate
from cratepub.logging import get_logger

log = get_logger(__name__)

# Re-exported for callers that only deal with the store.
__all__ = [
    'CrateRecord',
    'CrateStore',
]


class CrateStore:
    """Validated, ordered collection of :class:`CrateRecord` objects.

    Iteration follows the order the records were supplied in, which is
    the workspace's member-declaration order.

    Raises:
        CratePubError: On a duplicate name, a self-dependency, or a
            dependency on a crate that is not in the store.
    """

    def __init__(self, records: Iterable[CrateRecord]) -> None:
        """Validate and index ``records``."""
        self._records: dict[str, CrateRecord] = {}
        for record in records:
            if record.name in self._records:
                raise CratePubError(
                    code=E.WORKSPACE_DUPLICATE_CRATE,
                    message=f'Crate name {record.name!r} appears more than once in the workspace',
                    hint='Each workspace member needs a distinct [package].name.',
                )
            self._records[record.name] = record

        for record in self._records.values():
            for dep in record.deps:
                if dep == record.name:
                    raise CratePubError(
                        code=E.WORKSPACE_INVALID_EDGE,
                        message=f'Crate {record.name!r} depends on itself',
                        hint='Remove the self-dependency from its Cargo.toml.',
                    )
                if dep not in self._records:
                    raise CratePubError(
                        code=E.WORKSPACE_INVALID_EDGE,
                        message=f'Crate {record.name!r} depends on {dep!r}, which is not a workspace crate',
                        hint='Only intra-workspace dependencies can be publish edges.',
                    )

    @classmethod
    async def load(cls, source: WorkspaceSource) -> CrateStore:
        """Build a store from everything ``source`` discovers."""
        store = cls(await source.list_crates())
        log.debug('crate_store_loaded', crates=len(store))
        return store

    def get(self, name: str) -> CrateRecord:
        """Return the record for ``name``.

        Raises:
            UnknownCrate: If ``name`` is not in the store.
        """
        try:
            return self._records[name]
        except KeyError:
            raise UnknownCrate(name, self._records) from None

    @property
    def names(self) -> list[str]:
        """Crate names in store order."""
        return list(self._records)

    def __contains__(self, name: object) -> bool:
        """Whether ``name`` is a crate in the store."""
        return name in self._records

    def __iter__(self) -> Iterator[CrateRecord]:
        """Iterate over records in store order."""
        return iter(self._records.values())

    def __len__(self) -> int:
        """Return the number of crates."""
        return len(self._records)
