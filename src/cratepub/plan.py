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

"""Publish plan: what happens to each crate, in which order.

A :class:`PublishPlan` is produced by :func:`cratepub.pipeline.plan` and
consumed by the scheduler. Each :class:`PlanEntry` carries the decision
made for its crate plus a mutable outcome that the scheduler advances.

Entry status transitions::

    pending → publishing → published
                         → failed
              publishing → pending        (retryable failure, attempts left)
    pending → not_attempted               (blocked or cancelled)
    no_change                             (decided at plan time)
    failed                                (registry lookup failed at plan time)

Usage::

    plan = await pipeline.plan(['my-cli'], workspace=ws, registry=reg)
    print(plan.format_table())
    print(plan.format_json())
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from cratepub.versioning import BumpCategory


class EntryStatus(str, Enum):
    """Outcome of a plan entry."""

    PENDING = 'pending'
    PUBLISHING = 'publishing'
    PUBLISHED = 'published'
    FAILED = 'failed'
    NO_CHANGE = 'no_change'
    NOT_ATTEMPTED = 'not_attempted'


TERMINAL_STATUSES = frozenset({
    EntryStatus.PUBLISHED,
    EntryStatus.FAILED,
    EntryStatus.NO_CHANGE,
    EntryStatus.NOT_ATTEMPTED,
})

# Statuses that let a dependent go ahead.
SATISFIED_STATUSES = frozenset({EntryStatus.PUBLISHED, EntryStatus.NO_CHANGE})

_STATUS_EMOJI: dict[EntryStatus, str] = {
    EntryStatus.PENDING: '📦',
    EntryStatus.PUBLISHING: '⏳',
    EntryStatus.PUBLISHED: '✅',
    EntryStatus.FAILED: '❌',
    EntryStatus.NO_CHANGE: '⏭️',
    EntryStatus.NOT_ATTEMPTED: '🚫',
}


@dataclass
class PlanEntry:
    """One crate in the plan.

    Attributes:
        name: Crate name.
        current_version: Declared local version.
        target_version: Version to publish (latest published for
            ``NONE``; empty when the decision failed).
        category: How ``target_version`` was chosen.
        order: Global publish order index.
        level: Topological level within the plan.
        deps: Names of plan entries this crate depends on.
        status: Current outcome.
        reason: Why the entry has its status.
        attempts: Publish submissions made so far.
        path: Crate directory.
        manifest_path: Crate ``Cargo.toml``.
        verify: Whether cargo builds the packaged crate before upload.
    """

    name: str
    current_version: str
    target_version: str
    category: BumpCategory
    order: int = 0
    level: int = 0
    deps: list[str] = field(default_factory=list)
    status: EntryStatus = EntryStatus.PENDING
    reason: str = ''
    attempts: int = 0
    path: Path = Path()
    manifest_path: Path = Path()
    verify: bool = True

    @property
    def terminal(self) -> bool:
        """Whether the entry has reached a final status."""
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready representation."""
        return {
            'name': self.name,
            'order': self.order,
            'level': self.level,
            'current_version': self.current_version,
            'target_version': self.target_version,
            'category': self.category.value,
            'deps': list(self.deps),
            'status': self.status.value,
            'reason': self.reason,
            'attempts': self.attempts,
            'verify': self.verify,
        }


@dataclass
class PublishPlan:
    """Ordered plan entries for one run.

    Invariant: if ``A`` depends on ``B`` and both are in the plan,
    ``B.order < A.order``.

    Attributes:
        entries: Entries by ascending ``order``.
        seeds: Crates the operator asked for.
    """

    entries: list[PlanEntry] = field(default_factory=list)
    seeds: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        """Index entries by name."""
        self._by_name = {e.name: e for e in self.entries}

    def get(self, name: str) -> PlanEntry:
        """Return the entry for ``name``."""
        return self._by_name[name]

    def __contains__(self, name: object) -> bool:
        """Whether ``name`` has an entry."""
        return name in self._by_name

    def __len__(self) -> int:
        """Return the number of entries."""
        return len(self.entries)

    @property
    def names(self) -> list[str]:
        """Entry names in publish order."""
        return [e.name for e in self.entries]

    @property
    def to_publish(self) -> list[PlanEntry]:
        """Entries still waiting to be published."""
        return [e for e in self.entries if e.status is EntryStatus.PENDING]

    def dependents(self, name: str) -> list[str]:
        """Entries that depend on ``name``, transitively, in publish order."""
        blocked = {name}
        result: list[str] = []
        for entry in self.entries:
            if any(dep in blocked for dep in entry.deps):
                blocked.add(entry.name)
                result.append(entry.name)
        return result

    def summary(self) -> dict[str, int]:
        """Count of entries per status."""
        counts: dict[str, int] = {}
        for entry in self.entries:
            counts[entry.status.value] = counts.get(entry.status.value, 0) + 1
        return counts

    def format_table(self) -> str:
        """Format the plan as a human-readable table."""
        if not self.entries:
            return 'No crates in the publish plan.'

        headers = ['', 'Order', 'Level', 'Crate', 'Current', 'Target', 'Bump', 'Status', 'Reason']
        rows: list[list[str]] = [
            [
                _STATUS_EMOJI.get(e.status, '❓'),
                str(e.order),
                str(e.level),
                e.name,
                e.current_version,
                e.target_version or '—',
                e.category.value,
                e.status.value,
                e.reason,
            ]
            for e in self.entries
        ]

        widths = [len(h) for h in headers]
        for row in rows:
            for i, cell in enumerate(row):
                widths[i] = max(widths[i], len(cell))

        fmt = '  '.join(f'{{:<{w}}}' for w in widths)
        lines = [fmt.format(*headers), fmt.format(*('─' * w for w in widths))]
        lines.extend(fmt.format(*row) for row in rows)

        summary_parts = [f'{count} {status}' for status, count in sorted(self.summary().items())]
        lines.append('')
        lines.append(f'Total: {len(self.entries)} crates ({", ".join(summary_parts)})')
        return '\n'.join(lines)

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready representation."""
        return {
            'seeds': list(self.seeds),
            'summary': self.summary(),
            'entries': [e.to_dict() for e in self.entries],
        }

    def format_json(self) -> str:
        """Format the plan as machine-readable JSON."""
        return json.dumps(self.to_dict(), indent=2)


__all__ = [
    'SATISFIED_STATUSES',
    'TERMINAL_STATUSES',
    'EntryStatus',
    'PlanEntry',
    'PublishPlan',
]
