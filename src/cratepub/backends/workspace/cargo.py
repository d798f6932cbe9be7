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

"""Cargo workspace backend for cratepub.

The :class:`CargoWorkspace` implements the
:class:`~cratepub.backends.workspace.WorkspaceSource` protocol by parsing
``Cargo.toml`` workspace and member manifests with tomlkit.

Cargo workspace layout (directory name is arbitrary)::

    rust/
    ├── Cargo.toml       ← workspace root ([workspace] with members)
    ├── core/
    │   └── Cargo.toml   ← crate: my-core
    ├── utils/
    │   └── Cargo.toml   ← crate: my-utils (depends on my-core)
    └── cli/
        └── Cargo.toml   ← crate: my-cli (depends on my-core, my-utils)

Dependency edges:

    Only ``[dependencies]``, ``[build-dependencies]`` and their
    ``[target.*]`` variants become publish edges. ``cargo publish``
    strips path-only dev-dependencies, so a dev-dependency never forces
    an ordering (and dev-dependency cycles are common and harmless).
    Renamed dependencies (``foo = { package = "real-name", ... }``) are
    resolved to the real crate name, including renames declared once in
    ``[workspace.dependencies]`` and inherited with ``workspace = true``.

Version handling:

    ``version.workspace = true`` members read the root
    ``[workspace.package].version``. A crate that is the only one
    inheriting it is bumped by rewriting the root version. When several
    crates share it, rewriting it would move them all, so cratepub
    refuses (``CP-VERSION-SHARED``) and leaves the bump to the operator.
"""

from __future__ import annotations

import asyncio
import hashlib
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import tomlkit

from cratepub.backends._run import TimeoutExpired, run_command
from cratepub.backends.workspace._io import read_toml, write_file
from cratepub.backends.workspace._types import CrateRecord
from cratepub.errors import E, CratePubError
from cratepub.logging import get_logger

log = get_logger('cratepub.backends.workspace.cargo')

# Tables whose entries are publish edges.
_EDGE_TABLES = ('dependencies', 'build-dependencies')

# Tables whose version requirements are rewritten on a bump.
_PIN_TABLES = ('dependencies', 'build-dependencies', 'dev-dependencies')

# Requirement operators preserved when a pin is rewritten.
_REQ_OPERATORS = ('>=', '<=', '=', '^', '~', '>', '<')

# Files cratepub itself writes next to a root crate.
_IGNORED_FILES = frozenset({'.cratepub-ledger.json'})


@dataclass
class _Member:
    """A parsed workspace member, before edges are classified."""

    name: str
    version: str
    crate_dir: Path
    manifest_path: Path
    dep_names: list[str] = field(default_factory=list)
    publishable: bool = True
    inherits_version: bool = False


class CargoWorkspace:
    """Cargo :class:`~cratepub.backends.workspace.WorkspaceSource` implementation.

    Args:
        workspace_root: Path to the directory containing the workspace
            ``Cargo.toml``.
    """

    def __init__(self, workspace_root: Path) -> None:
        """Initialize with the Cargo workspace root."""
        self._root = workspace_root.resolve()
        self._members: dict[str, _Member] = {}

    @property
    def root(self) -> Path:
        """Resolved workspace root directory."""
        return self._root

    async def list_crates(self) -> list[CrateRecord]:
        """Discover every crate in the workspace, in member-declaration order.

        Raises:
            CratePubError: If the root manifest is missing, is neither a
                workspace nor a package, or a member manifest cannot be
                parsed.
        """
        root_toml = self._root / 'Cargo.toml'
        if not root_toml.is_file():
            raise CratePubError(
                code=E.WORKSPACE_NOT_FOUND,
                message=f'No Cargo.toml found at {self._root}',
                hint='Pass --root pointing at the directory that holds the workspace Cargo.toml.',
            )

        root_doc = (await read_toml(root_toml)).unwrap()
        workspace = root_doc.get('workspace')
        if not isinstance(workspace, dict) and 'package' not in root_doc:
            raise CratePubError(
                code=E.WORKSPACE_NOT_FOUND,
                message=f'{root_toml} has neither a [workspace] nor a [package] table',
                hint='Point --root at a Cargo workspace root.',
            )
        workspace = workspace if isinstance(workspace, dict) else {}

        ws_version = workspace.get('package', {}).get('version')
        ws_renames = _renames(workspace.get('dependencies', {}), {})

        members: list[_Member] = []
        for crate_dir in _member_dirs(self._root, root_doc, workspace):
            manifest = crate_dir / 'Cargo.toml'
            doc = root_doc if crate_dir == self._root else (await read_toml(manifest)).unwrap()
            members.append(_parse_member(doc, crate_dir, manifest, ws_version, ws_renames))

        names = {m.name for m in members}
        self._members = {m.name: m for m in members}
        inheriting = [m.name for m in members if m.inherits_version]

        records: list[CrateRecord] = []
        for member in members:
            fingerprint = await asyncio.to_thread(fingerprint_tree, member.crate_dir)
            records.append(
                CrateRecord(
                    name=member.name,
                    version=member.version,
                    deps=tuple(d for d in member.dep_names if d in names),
                    fingerprint=fingerprint,
                    path=member.crate_dir,
                    manifest_path=member.manifest_path,
                    publishable=member.publishable,
                    shares_version_with=_sharing(member, inheriting),
                )
            )

        log.info('crates_discovered', count=len(records), root=str(self._root))
        return records

    async def fingerprint(self, crate_name: str) -> str:
        """Recompute the content fingerprint of ``crate_name``."""
        member = await self._member(crate_name)
        return await asyncio.to_thread(fingerprint_tree, member.crate_dir)

    async def apply_version_bump(self, crate_name: str, new_version: str) -> None:
        """Set ``crate_name``'s version and update every pin on it.

        Rewrites, preserving formatting and comments:

        - the crate's ``[package].version`` (or the root
          ``[workspace.package].version`` if the crate alone inherits it);
        - ``version`` requirements on the crate in every member's
          dependency tables and in ``[workspace.dependencies]``.

        Raises:
            CratePubError: ``CP-VERSION-SHARED`` if the crate inherits the
                workspace version together with other members.
        """
        member = await self._member(crate_name)
        docs: dict[Path, tomlkit.TOMLDocument] = {}
        originals: dict[Path, str] = {}

        async def load(path: Path) -> tomlkit.TOMLDocument:
            if path not in docs:
                docs[path] = await read_toml(path)
                originals[path] = docs[path].as_string()
            return docs[path]

        root_toml = self._root / 'Cargo.toml'
        own = await load(member.manifest_path)
        package = own['package']
        if member.inherits_version:
            others = [m.name for m in self._members.values() if m.inherits_version and m.name != crate_name]
            if others:
                raise CratePubError(
                    code=E.VERSION_SHARED,
                    message=(
                        f'Cannot bump {crate_name!r} to {new_version}: it shares [workspace.package].version '
                        f'with {", ".join(others)}'
                    ),
                    hint='Bump [workspace.package].version in the root Cargo.toml yourself, then re-run.',
                )
            root_doc = await load(root_toml)
            root_doc['workspace']['package']['version'] = new_version
            log.info('workspace_version_rewritten', crate=crate_name, version=new_version, manifest=str(root_toml))
        else:
            package['version'] = new_version

        root_doc = await load(root_toml)
        workspace = root_doc.get('workspace')
        if isinstance(workspace, dict):
            _rewrite_pins(workspace.get('dependencies'), crate_name, new_version, {})

        ws_renames = _renames(workspace.get('dependencies', {}) if isinstance(workspace, dict) else {}, {})
        for other in self._members.values():
            doc = await load(other.manifest_path)
            for table in _dependency_tables(doc, _PIN_TABLES):
                _rewrite_pins(table, crate_name, new_version, ws_renames)

        changed = 0
        for path, doc in docs.items():
            text = tomlkit.dumps(doc)
            if text != originals[path]:
                await write_file(path, text)
                changed += 1
        log.info('version_bump_applied', crate=crate_name, version=new_version, manifests=changed)

    async def post_check(self, crate_names: list[str], *, timeout: float = 600.0) -> None:
        """Build the workspace against the versions just published.

        Runs ``cargo update -p <crate>...`` so the lockfile picks up the
        new releases, then ``cargo check -p <crate>`` for each crate.

        Raises:
            CratePubError: ``CP-POST-CHECK-FAILED`` on the first command
                that fails, times out or cannot be started.
        """
        if not crate_names:
            return
        update = ['cargo', 'update', '--quiet']
        for name in crate_names:
            update += ['-p', name]
        commands = [update] + [['cargo', 'check', '--quiet', '-p', name] for name in crate_names]
        for cmd in commands:
            await self._check_command(cmd, timeout)
        log.info('post_check_passed', crates=len(crate_names))

    async def _check_command(self, cmd: list[str], timeout: float) -> None:
        command = ' '.join(cmd)
        try:
            result = await asyncio.to_thread(run_command, cmd, cwd=self._root, timeout=timeout)
        except TimeoutExpired as exc:
            raise CratePubError(
                code=E.POST_CHECK_FAILED,
                message=f'{command} did not finish within {timeout:.0f}s',
            ) from exc
        except FileNotFoundError as exc:
            raise CratePubError(
                code=E.POST_CHECK_FAILED,
                message='cargo executable not found',
                hint='Install the Rust toolchain or put cargo on PATH.',
            ) from exc
        if not result.ok:
            last = result.stderr.strip().splitlines()[-1:] or [f'exit {result.return_code}']
            log.error('post_check_failed', cmd=command, return_code=result.return_code)
            raise CratePubError(code=E.POST_CHECK_FAILED, message=f'{command}: {last[0]}')

    async def _member(self, crate_name: str) -> _Member:
        if not self._members:
            await self.list_crates()
        member = self._members.get(crate_name)
        if member is None:
            raise CratePubError(
                code=E.GRAPH_UNKNOWN_CRATE,
                message=f'Crate {crate_name!r} is not a member of {self._root}',
                hint="Run 'cratepub graph' to list the workspace crates.",
            )
        return member


def _member_dirs(root: Path, root_doc: dict[str, Any], workspace: dict[str, Any]) -> list[Path]:
    """Expand ``members`` globs, drop ``exclude`` entries, keep declaration order."""
    excluded = {(root / p).resolve() for p in workspace.get('exclude', [])}
    dirs: list[Path] = []
    if 'package' in root_doc:
        dirs.append(root)
    for pattern in workspace.get('members', []):
        for match in sorted(root.glob(pattern)):
            crate_dir = match.resolve()
            if crate_dir in excluded or crate_dir in dirs:
                continue
            if crate_dir.is_dir() and (crate_dir / 'Cargo.toml').is_file():
                dirs.append(crate_dir)
    return dirs


def _parse_member(
    doc: dict[str, Any],
    crate_dir: Path,
    manifest: Path,
    ws_version: str | None,
    ws_renames: dict[str, str],
) -> _Member:
    package = doc.get('package')
    if not isinstance(package, dict) or not package.get('name'):
        raise CratePubError(
            code=E.WORKSPACE_PARSE_ERROR,
            message=f'{manifest} has no [package].name',
            hint='Every workspace member needs a [package] table with a name.',
        )
    name = str(package['name'])

    version = package.get('version', '0.0.0')
    inherits_version = isinstance(version, dict)
    if inherits_version:
        if not version.get('workspace') or ws_version is None:
            raise CratePubError(
                code=E.WORKSPACE_PARSE_ERROR,
                message=f'{name}: version.workspace = true but the root has no [workspace.package].version',
                hint='Add version = "..." under [workspace.package] in the root Cargo.toml.',
            )
        version = ws_version

    # publish = false, or publish = [] (no allowed registries).
    publish = package.get('publish', True)
    publishable = publish is not False and publish != []

    dep_names: list[str] = []
    for table in _dependency_tables(doc, _EDGE_TABLES):
        for dep in _renames(table, ws_renames).values():
            if dep not in dep_names:
                dep_names.append(dep)

    return _Member(
        name=name,
        version=str(version),
        crate_dir=crate_dir,
        manifest_path=manifest,
        dep_names=dep_names,
        publishable=publishable,
        inherits_version=inherits_version,
    )


def _sharing(member: _Member, inheriting: list[str]) -> tuple[str, ...]:
    if not member.inherits_version:
        return ()
    return tuple(n for n in inheriting if n != member.name)


def _dependency_tables(doc: Any, keys: tuple[str, ...]) -> list[Any]:
    """Return the dependency tables of a manifest, including ``[target.*]`` ones."""
    tables = [doc.get(key) for key in keys]
    target = doc.get('target')
    if isinstance(target, dict):
        for target_table in target.values():
            if isinstance(target_table, dict):
                tables.extend(target_table.get(key) for key in keys)
    return [t for t in tables if isinstance(t, dict)]


def _renames(table: Any, ws_renames: dict[str, str]) -> dict[str, str]:
    """Map each dependency key in ``table`` to the real crate name."""
    resolved: dict[str, str] = {}
    for key, spec in table.items():
        if isinstance(spec, dict) and spec.get('package'):
            resolved[key] = str(spec['package'])
        elif isinstance(spec, dict) and spec.get('workspace'):
            resolved[key] = ws_renames.get(key, key)
        else:
            resolved[key] = key
    return resolved


def _rewrite_pins(table: Any, crate_name: str, new_version: str, ws_renames: dict[str, str]) -> int:
    """Rewrite version requirements on ``crate_name`` in one dependency table."""
    if not isinstance(table, dict):
        return 0
    rewritten = 0
    for key, real_name in _renames(table, ws_renames).items():
        if real_name != crate_name:
            continue
        spec = table[key]
        if isinstance(spec, str):
            table[key] = _requirement(spec, new_version)
            rewritten += 1
        elif isinstance(spec, dict) and 'version' in spec:
            spec['version'] = _requirement(str(spec['version']), new_version)
            rewritten += 1
    return rewritten


def _requirement(old: str, new_version: str) -> str:
    """Replace the version in a requirement string, keeping its operator."""
    stripped = old.strip()
    for op in _REQ_OPERATORS:
        if stripped.startswith(op):
            return f'{op}{new_version}'
    return new_version


def fingerprint_tree(crate_dir: Path) -> str:
    """SHA-256 over the relative paths and bytes of a crate's files.

    Skips ``target/``, dot-directories, nested crates (subdirectories
    with their own ``Cargo.toml``) and the cratepub ledger.
    Files are hashed in sorted relative-path order so the digest does not
    depend on directory iteration order.
    """
    files: list[tuple[str, Path]] = []
    for dirpath, dirnames, filenames in os.walk(crate_dir):
        current = Path(dirpath)
        dirnames[:] = [
            d
            for d in dirnames
            if d != 'target' and not d.startswith('.') and not (current / d / 'Cargo.toml').is_file()
        ]
        for filename in filenames:
            if filename in _IGNORED_FILES:
                continue
            path = current / filename
            files.append((path.relative_to(crate_dir).as_posix(), path))

    digest = hashlib.sha256()
    for rel, path in sorted(files):
        digest.update(rel.encode('utf-8'))
        digest.update(b'\0')
        digest.update(path.read_bytes())
        digest.update(b'\0')
    return digest.hexdigest()


__all__ = [
    'CargoWorkspace',
    'fingerprint_tree',
]
