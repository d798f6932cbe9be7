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

"""Per-crate version decisions against registry state.

For every crate in the publish closure, :func:`decide` compares the local
crate with its :class:`~cratepub.snapshot.RegistrySnapshot` and answers
one question: publish, and as which version?

Key Concepts (ELI5)::

    ┌─────────────────────┬────────────────────────────────────────────────┐
    │ Concept             │ ELI5 Explanation                               │
    ├─────────────────────┼────────────────────────────────────────────────┤
    │ Fingerprint         │ A hash of the crate's files. Same hash as the  │
    │                     │ last publish = nothing new to ship.            │
    ├─────────────────────┼────────────────────────────────────────────────┤
    │ BumpCategory        │ How the target version was chosen: initial,    │
    │                     │ patch, minor, major, already ahead, or none.   │
    ├─────────────────────┼────────────────────────────────────────────────┤
    │ Dependency bump     │ If something I depend on gets a new version,   │
    │                     │ I must be republished to point at it.          │
    ├─────────────────────┼────────────────────────────────────────────────┤
    │ BumpPolicy          │ Which category to use when a bump is needed.   │
    │                     │ Patch unless configured otherwise per crate.   │
    └─────────────────────┴────────────────────────────────────────────────┘

Decision rules, first match wins::

    never published                         →  Bump(declared, INITIAL)
    declared > latest published             →  Bump(declared, ALREADY_AHEAD)
    unchanged and no dependency bumped      →  NoChange
    otherwise                               →  Bump(policy(latest), category)

"Unchanged" means the fingerprint equals the one the ledger recorded for
the latest published version. With no recorded fingerprint it falls back
to the declared version equalling the latest published one.

Usage::

    from cratepub.versioning import BumpPolicy, decide_all

    decisions = decide_all(graph, order, snapshots, BumpPolicy())
    for name, decision in decisions.items():
        print(name, decision.category.value, decision.target)
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum

from cratepub.backends.registry import RegistryError
from cratepub.backends.workspace import CrateRecord
from cratepub.errors import E, CratePubError
from cratepub.graph import DependencyGraph
from cratepub.logging import get_logger
from cratepub.semver import Version
from cratepub.snapshot import RegistrySnapshot

logger = get_logger(__name__)


class BumpCategory(str, Enum):
    """How a plan entry's target version was chosen."""

    INITIAL = 'initial'
    PATCH = 'patch'
    MINOR = 'minor'
    MAJOR = 'major'
    NONE = 'none'
    ALREADY_AHEAD = 'already_ahead'


# Categories a policy may ask for.
POLICY_CATEGORIES: tuple[BumpCategory, ...] = (BumpCategory.PATCH, BumpCategory.MINOR, BumpCategory.MAJOR)


@dataclass(frozen=True)
class BumpPolicy:
    """Bump category to apply when a crate needs a new version.

    Attributes:
        default: Category for crates without an override.
        overrides: Per-crate category.
    """

    default: BumpCategory = BumpCategory.PATCH
    overrides: dict[str, BumpCategory] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Reject categories a policy cannot produce."""
        for name, category in [('default', self.default), *self.overrides.items()]:
            if category not in POLICY_CATEGORIES:
                raise CratePubError(
                    code=E.CONFIG_INVALID_VALUE,
                    message=f'Bump category for {name!r} must be patch, minor or major, got {category.value!r}',
                )

    @classmethod
    def from_names(cls, default: str = 'patch', overrides: Mapping[str, str] | None = None) -> BumpPolicy:
        """Build a policy from category names as written in config."""
        try:
            return cls(
                default=BumpCategory(default),
                overrides={name: BumpCategory(cat) for name, cat in (overrides or {}).items()},
            )
        except ValueError as exc:
            raise CratePubError(
                code=E.CONFIG_INVALID_VALUE,
                message=f'Invalid bump category: {exc}',
                hint="Use 'patch', 'minor' or 'major'.",
            ) from exc

    def category_for(self, crate: str) -> BumpCategory:
        """Category to apply to ``crate``."""
        return self.overrides.get(crate, self.default)


@dataclass(frozen=True)
class Decision:
    """Outcome of :func:`decide` for one crate.

    Attributes:
        crate: Crate name.
        current: Declared local version.
        target: Version to publish; for ``NONE`` the latest published
            version, which is what dependents resolve to.
        category: How ``target`` was chosen.
        reason: Short human-readable explanation.
    """

    crate: str
    current: str
    target: str
    category: BumpCategory
    reason: str = ''

    @property
    def bumped(self) -> bool:
        """Whether the crate is to be published."""
        return self.category is not BumpCategory.NONE


def _next_version(latest: Version, category: BumpCategory) -> Version:
    if category is BumpCategory.MAJOR:
        return latest.next_major()
    if category is BumpCategory.MINOR:
        return latest.next_minor()
    return latest.next_patch()


def decide(
    record: CrateRecord,
    snapshot: RegistrySnapshot,
    *,
    dependency_bumped: bool = False,
    policy: BumpPolicy | None = None,
) -> Decision:
    """Decide whether and how to publish ``record``.

    Raises:
        CratePubError: If the declared version is not valid semver.
        RegistryError: If the registry lists versions but none of them
            is valid semver (not retryable).
    """
    policy = policy or BumpPolicy()
    declared = Version.parse(record.version)

    if not snapshot.published:
        return Decision(record.name, record.version, record.version, BumpCategory.INITIAL, 'never published')

    if snapshot.latest is None:
        raise RegistryError(
            f'Registry lists versions of {record.name!r} but none is valid semver: {list(snapshot.versions)}',
            retryable=False,
            code=E.REGISTRY_MALFORMED_RESPONSE,
        )
    latest = Version.parse(snapshot.latest)

    if declared > latest:
        return Decision(
            record.name,
            record.version,
            record.version,
            BumpCategory.ALREADY_AHEAD,
            f'declared {record.version} is ahead of published {snapshot.latest}',
        )

    known = snapshot.fingerprint_for(snapshot.latest)
    unchanged = record.fingerprint == known if known is not None else declared == latest
    if unchanged and not dependency_bumped:
        return Decision(record.name, record.version, snapshot.latest, BumpCategory.NONE, 'unchanged')

    category = policy.category_for(record.name)
    target = _next_version(latest, category)
    if unchanged:
        reason = 'dependency bumped'
    elif known is not None:
        reason = 'sources changed since last publish'
    else:
        reason = f'declared {record.version} is behind published {snapshot.latest}'
    return Decision(record.name, record.version, str(target), category, reason)


def decide_all(
    graph: DependencyGraph,
    order: list[str],
    snapshots: Mapping[str, RegistrySnapshot],
    policy: BumpPolicy | None = None,
) -> dict[str, Decision]:
    """Run :func:`decide` over ``order`` so dependency bumps propagate.

    ``order`` must be topological. Crates without a snapshot (their
    registry lookup failed) are skipped; a dependent of such a crate is
    treated as having a bumped dependency.
    """
    decisions: dict[str, Decision] = {}
    selected = set(order)
    for name in order:
        snapshot = snapshots.get(name)
        if snapshot is None:
            continue
        dependency_bumped = any(
            dep not in decisions or decisions[dep].bumped for dep in graph.edges[name] if dep in selected
        )
        decision = decide(graph.records[name], snapshot, dependency_bumped=dependency_bumped, policy=policy)
        decisions[name] = decision
        logger.debug(
            'version_decided',
            crate=name,
            category=decision.category.value,
            current=decision.current,
            target=decision.target,
            reason=decision.reason,
        )
    return decisions


__all__ = [
    'POLICY_CATEGORIES',
    'BumpCategory',
    'BumpPolicy',
    'Decision',
    'decide',
    'decide_all',
]
