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

"""Plan and execute a dependency-ordered publish.

Two entry points wire the components together::

    seeds ──▶ plan() ──────────────────────────────▶ PublishPlan
               │  CrateStore.load        (workspace)
               │  build_graph            (cycle = abort)
               │  select + publish_closure
               │  SnapshotCache.get      (registry reads, concurrent)
               └─ decide_all             (bump or no change)

    PublishPlan ──▶ execute() ──▶ PublishScheduler.run() ──▶ RunReport
                     prepare:       apply_version_bump + fingerprint
                     on_published:  ledger.record + snapshot invalidate

:func:`run` does both and turns structural errors into an ``aborted``
report, which is what the CLI uses.

Usage::

    from cratepub.pipeline import plan, execute

    the_plan = await plan(['my-cli'], workspace=ws, registry=reg, config=cfg)
    report = await execute(the_plan, workspace=ws, registry=reg, config=cfg)
    sys.exit(report.exit_code)
"""

from __future__ import annotations

import asyncio
import fnmatch
import json
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from cratepub.backends.registry import PackageArtifact, RegistryClient, RegistryError
from cratepub.backends.workspace import WorkspaceSource
from cratepub.config import PublishConfig
from cratepub.errors import E, CratePubError
from cratepub.graph import DependencyGraph, Direction, build_graph, closure, publish_closure, topo_levels
from cratepub.ledger import FingerprintLedger
from cratepub.logging import get_logger
from cratepub.plan import EntryStatus, PlanEntry, PublishPlan
from cratepub.scheduler import PublishScheduler, SleepFn
from cratepub.semver import Version
from cratepub.snapshot import RegistrySnapshot, SnapshotCache
from cratepub.versioning import BumpCategory, Decision, decide_all
from cratepub.workspace import CrateStore

logger = get_logger(__name__)

EXIT_SUCCESS = 0
EXIT_UNEXPECTED = 1
EXIT_PARTIAL_FAILURE = 2
EXIT_ABORTED = 3
EXIT_INTERRUPTED = 130


class RunStatus(str, Enum):
    """Overall outcome of a run."""

    SUCCESS = 'success'
    PARTIAL_FAILURE = 'partial_failure'
    ABORTED = 'aborted'


_EXIT_CODES: dict[RunStatus, int] = {
    RunStatus.SUCCESS: EXIT_SUCCESS,
    RunStatus.PARTIAL_FAILURE: EXIT_PARTIAL_FAILURE,
    RunStatus.ABORTED: EXIT_ABORTED,
}


@dataclass(frozen=True)
class CrateOutcome:
    """Terminal outcome of one crate.

    Attributes:
        name: Crate name.
        status: ``published``, ``no_change``, ``failed`` or ``not_attempted``.
        version: Published version, or the version that resolves for
            ``no_change``. Empty when nothing was decided.
        reason: Why the crate ended this way.
        attempts: Publish submissions made.
    """

    name: str
    status: EntryStatus
    version: str = ''
    reason: str = ''
    attempts: int = 0

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready representation."""
        return {
            'name': self.name,
            'status': self.status.value,
            'version': self.version,
            'reason': self.reason,
            'attempts': self.attempts,
        }


@dataclass
class RunReport:
    """What happened to every crate of a run.

    Attributes:
        status: Overall outcome.
        outcomes: One outcome per plan entry, in publish order.
        error: The structural error that aborted the run, if any.
        cancelled: Whether the run was cancelled part way.
    """

    status: RunStatus
    outcomes: list[CrateOutcome] = field(default_factory=list)
    error: CratePubError | None = None
    cancelled: bool = False

    @classmethod
    def from_plan(cls, plan: PublishPlan, *, cancelled: bool = False) -> RunReport:
        """Summarize an executed plan."""
        outcomes = [
            CrateOutcome(
                name=e.name,
                status=e.status,
                version=e.target_version if e.status in (EntryStatus.PUBLISHED, EntryStatus.NO_CHANGE) else '',
                reason=e.reason,
                attempts=e.attempts,
            )
            for e in plan.entries
        ]
        ok = all(o.status in (EntryStatus.PUBLISHED, EntryStatus.NO_CHANGE) for o in outcomes)
        status = RunStatus.SUCCESS if ok else RunStatus.PARTIAL_FAILURE
        return cls(status=status, outcomes=outcomes, cancelled=cancelled)

    @classmethod
    def aborted(cls, error: CratePubError) -> RunReport:
        """Report for a run stopped by a structural error before any publish."""
        return cls(status=RunStatus.ABORTED, error=error)

    @property
    def exit_code(self) -> int:
        """Process exit code for this outcome."""
        return _EXIT_CODES[self.status]

    def by_status(self, status: EntryStatus) -> list[str]:
        """Names of crates that ended with ``status``."""
        return [o.name for o in self.outcomes if o.status is status]

    @property
    def published(self) -> list[str]:
        """Crates published by this run."""
        return self.by_status(EntryStatus.PUBLISHED)

    @property
    def failed(self) -> list[str]:
        """Crates that failed."""
        return self.by_status(EntryStatus.FAILED)

    @property
    def not_attempted(self) -> list[str]:
        """Crates never submitted (blocked or cancelled)."""
        return self.by_status(EntryStatus.NOT_ATTEMPTED)

    def get(self, name: str) -> CrateOutcome:
        """Outcome for ``name``."""
        for outcome in self.outcomes:
            if outcome.name == name:
                return outcome
        raise KeyError(name)

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready representation."""
        data: dict[str, Any] = {
            'status': self.status.value,
            'exit_code': self.exit_code,
            'cancelled': self.cancelled,
            'crates': [o.to_dict() for o in self.outcomes],
        }
        if self.error is not None:
            data['error'] = {'code': self.error.code.value, 'message': self.error.info.message}
        return data

    def format_json(self) -> str:
        """Format the report as machine-readable JSON."""
        return json.dumps(self.to_dict(), indent=2)

    def format_table(self) -> str:
        """Format the report for humans."""
        if self.error is not None:
            return f'Run aborted: [{self.error.code.value}] {self.error.info.message}'

        lines = []
        width = max((len(o.name) for o in self.outcomes), default=0)
        for o in self.outcomes:
            detail = o.version if o.status is EntryStatus.PUBLISHED else o.reason
            lines.append(f'  {o.name:<{width}}  {o.status.value:<13}  {detail}'.rstrip())
        tail = f'Status: {self.status.value} (exit {self.exit_code})'
        if self.cancelled:
            tail += ', cancelled'
        lines.append('')
        lines.append(tail)
        return '\n'.join(lines)


def _excluded(graph: DependencyGraph, patterns: Sequence[str]) -> set[str]:
    """Crates matching ``patterns`` plus every crate that depends on one."""
    matched = [name for name in graph.names if any(fnmatch.fnmatchcase(name, p) for p in patterns)]
    return set(closure(graph, matched, Direction.ANCESTORS)) if matched else set()


def select_crates(
    graph: DependencyGraph,
    seeds: Sequence[str] | None,
    *,
    exclude: Sequence[str] = (),
    include_dependents: bool = False,
) -> list[str]:
    """Crates to consider for publishing ``seeds``.

    With no seeds, every publishable crate that is not excluded is
    selected. Excluding a crate excludes its dependents too.

    Raises:
        UnknownCrate: A seed is not a workspace member.
        CratePubError: Nothing is selected, or a selected crate needs an
            excluded or unpublishable crate.
    """
    excluded = _excluded(graph, exclude)
    unpublishable = [n for n in graph.names if not graph.records[n].publishable]
    # Dependents that cannot be published because of what they depend on.
    skip = excluded | set(closure(graph, unpublishable, Direction.ANCESTORS))

    if seeds:
        seeds = list(dict.fromkeys(seeds))
        closure(graph, seeds)  # unknown seeds fail here
        for seed in seeds:
            if seed in excluded:
                raise CratePubError(
                    code=E.SELECT_EXCLUDED_DEPENDENCY,
                    message=f'Crate {seed!r} was requested but is excluded, directly or through a dependency',
                    hint='Drop the --exclude pattern that matches it or its dependency.',
                )
    else:
        seeds = [n for n in graph.names if n not in skip]

    if not seeds:
        raise CratePubError(
            code=E.SELECT_EMPTY,
            message='No crates selected for publishing',
            hint='Every crate is excluded or marked publish = false.',
        )

    selected = publish_closure(graph, seeds, include_dependents=include_dependents, skip=skip)
    for name in selected:
        record = graph.records[name]
        for dep in graph.edges[name]:
            if dep in excluded:
                raise CratePubError(
                    code=E.SELECT_EXCLUDED_DEPENDENCY,
                    message=f'Crate {name!r} depends on excluded crate {dep!r}',
                    hint=f'Stop excluding {dep!r} or do not select {name!r}.',
                )
            if not graph.records[dep].publishable:
                raise CratePubError(
                    code=E.SELECT_UNPUBLISHABLE_DEPENDENCY,
                    message=f'Crate {name!r} depends on {dep!r}, which is marked publish = false',
                    hint=f'Make {dep!r} publishable or drop the dependency.',
                )
        if not record.publishable:
            raise CratePubError(
                code=E.SELECT_UNPUBLISHABLE_DEPENDENCY,
                message=f'Crate {name!r} is marked publish = false',
            )
    return selected


def _suffix_from(graph: DependencyGraph, order: list[str], name: str, option: str) -> list[str]:
    """``order`` from ``name`` on.

    Raises:
        UnknownCrate: ``name`` is not a workspace member.
        CratePubError: ``name`` is a member but not in ``order``.
    """
    if name not in order:
        closure(graph, [name])  # unknown crates fail here
        raise CratePubError(
            code=E.SELECT_EMPTY if option == 'start_from' else E.CONFIG_INVALID_VALUE,
            message=f'{option} names {name!r}, which is not among the crates being published',
            hint="Pick a crate listed by 'cratepub plan'.",
        )
    return order[order.index(name) :]


def _check_shared_versions(graph: DependencyGraph, decisions: dict[str, Decision]) -> None:
    """Refuse bumps that would move other crates' inherited version too.

    Raises:
        CratePubError: ``CP-VERSION-SHARED`` naming every such crate.
    """
    clashes = [
        f'{name} ({record.version} -> {decisions[name].target}, shared with {", ".join(record.shares_version_with)})'
        for name, record in ((n, graph.records[n]) for n in decisions)
        if record.shares_version_with and decisions[name].bumped and decisions[name].target != record.version
    ]
    if clashes:
        raise CratePubError(
            code=E.VERSION_SHARED,
            message=f'Version bumps would rewrite a shared [workspace.package].version: {"; ".join(clashes)}',
            hint='Bump [workspace.package].version in the root Cargo.toml yourself, then re-run.',
        )


async def _snapshots(
    names: list[str],
    cache: SnapshotCache,
    config: PublishConfig,
    sleep: SleepFn,
) -> tuple[dict[str, RegistrySnapshot], dict[str, str]]:
    """Fetch a snapshot per crate. Returns snapshots and lookup failures."""
    semaphore = asyncio.Semaphore(config.http_pool_size)
    scheduling = config.scheduler_config()
    snapshots: dict[str, RegistrySnapshot] = {}
    failures: dict[str, str] = {}

    async def fetch(name: str) -> None:
        async with semaphore:
            for attempt in range(1, config.max_attempts + 1):
                try:
                    snapshots[name] = await cache.get(name)
                    return
                except RegistryError as exc:
                    if not exc.retryable or attempt == config.max_attempts:
                        logger.error('registry_lookup_failed', crate=name, attempts=attempt, error=exc.info.message)
                        failures[name] = f'registry lookup failed: {exc.info.message}'
                        return
                    logger.warning('registry_lookup_retry', crate=name, attempt=attempt, error=exc.info.message)
                    await sleep(scheduling.backoff(attempt))

    await asyncio.gather(*(fetch(name) for name in names))
    return snapshots, failures


async def plan(
    seeds: Sequence[str] | None,
    *,
    workspace: WorkspaceSource,
    registry: RegistryClient,
    config: PublishConfig | None = None,
    ledger: FingerprintLedger | None = None,
    cache: SnapshotCache | None = None,
    exclude: Sequence[str] = (),
    include_dependents: bool | None = None,
    start_from: str | None = None,
    sleep: SleepFn = asyncio.sleep,
) -> PublishPlan:
    """Build the publish plan for ``seeds`` without writing anything.

    Args:
        seeds: Crates the operator asked for; empty or ``None`` selects
            every publishable crate.
        workspace: Source of crate records.
        registry: Registry to read published versions from.
        config: Settings; defaults apply when omitted.
        ledger: Recorded fingerprints; empty when omitted.
        cache: Snapshot cache to reuse (``execute`` invalidates it).
        exclude: Extra exclude patterns on top of ``config.exclude``.
        include_dependents: Overrides ``config.include_dependents``.
        start_from: Resume point: crates ordered before it are left out
            of the plan, as if an earlier run had handled them.
        sleep: Awaitable sleep for lookup retries, injectable for tests.

    Raises:
        CratePubError: On structural problems (cycle, unknown seed,
            invalid version, bad selection, unreadable workspace,
            a bump of a crate sharing the workspace version).
    """
    config = config or PublishConfig()
    ledger = ledger if ledger is not None else FingerprintLedger()
    cache = cache or SnapshotCache(registry, ledger, ttl=config.snapshot_ttl, timeout=config.request_timeout)
    if include_dependents is None:
        include_dependents = config.include_dependents

    store = await CrateStore.load(workspace)
    graph = build_graph(store)
    selected = select_crates(
        graph,
        seeds,
        exclude=[*config.exclude, *exclude],
        include_dependents=include_dependents,
    )
    for name in selected:
        Version.parse(graph.records[name].version)

    levels = topo_levels(graph, selected)
    order = [name for level in levels for name in level]
    if start_from:
        # Crates before start_from are taken as already handled by an earlier run.
        resumed = _suffix_from(graph, order, start_from, 'start_from')
        levels = topo_levels(graph, resumed)
        order = [name for level in levels for name in level]
        logger.info('plan_resumed', start_from=start_from, skipped=len(selected) - len(order))
    verified = set(_suffix_from(graph, order, config.verify_from, 'verify_from') if config.verify_from else order)
    level_of = {name: i for i, level in enumerate(levels) for name in level}

    snapshots, failures = await _snapshots(order, cache, config, sleep)
    decisions = decide_all(graph, order, snapshots, config.bump_policy())
    _check_shared_versions(graph, decisions)

    members = set(order)
    entries: list[PlanEntry] = []
    for index, name in enumerate(order):
        record = graph.records[name]
        entry = PlanEntry(
            name=name,
            current_version=record.version,
            target_version='',
            category=BumpCategory.NONE,
            order=index,
            level=level_of[name],
            deps=[d for d in graph.edges[name] if d in members],
            path=record.path,
            manifest_path=record.manifest_path,
            verify=name in verified,
        )
        decision = decisions.get(name)
        if decision is None:
            entry.status = EntryStatus.FAILED
            entry.reason = failures[name]
        else:
            entry.target_version = decision.target
            entry.category = decision.category
            entry.reason = decision.reason
            if not decision.bumped:
                entry.status = EntryStatus.NO_CHANGE
        entries.append(entry)

    result = PublishPlan(entries=entries, seeds=list(seeds or []))
    logger.info('plan_built', crates=len(result), levels=len(levels), **result.summary())
    return result


async def execute(
    the_plan: PublishPlan,
    *,
    workspace: WorkspaceSource,
    registry: RegistryClient,
    config: PublishConfig | None = None,
    ledger: FingerprintLedger | None = None,
    cache: SnapshotCache | None = None,
    cancel_event: asyncio.Event | None = None,
    sleep: SleepFn = asyncio.sleep,
) -> RunReport:
    """Publish ``the_plan`` and report every crate's outcome.

    Before a crate's first submission its version bump is written to the
    workspace manifests. After it is confirmed published, its fingerprint
    goes into the ledger and its snapshot is invalidated.
    """
    config = config or PublishConfig()
    ledger = ledger if ledger is not None else FingerprintLedger()
    cancel_event = cancel_event or asyncio.Event()

    async def prepare(entry: PlanEntry) -> PackageArtifact:
        if entry.target_version != entry.current_version:
            await workspace.apply_version_bump(entry.name, entry.target_version)
        return PackageArtifact(
            name=entry.name,
            version=entry.target_version,
            path=entry.path,
            manifest_path=entry.manifest_path,
            fingerprint=await workspace.fingerprint(entry.name),
            verify=entry.verify,
        )

    async def on_published(entry: PlanEntry, artifact: PackageArtifact) -> None:
        ledger.record(entry.name, entry.target_version, artifact.fingerprint)
        if cache is not None:
            cache.invalidate(entry.name)
        if config.after_publish_delay > 0:
            await sleep(config.after_publish_delay)

    scheduler = PublishScheduler(
        the_plan,
        registry,
        config=config.scheduler_config(),
        prepare=prepare,
        on_published=on_published,
        cancel_event=cancel_event,
        sleep=sleep,
    )
    await scheduler.run()
    report = RunReport.from_plan(the_plan, cancelled=scheduler.cancelled)
    logger.info(
        'run_complete',
        status=report.status.value,
        published=len(report.published),
        failed=len(report.failed),
        not_attempted=len(report.not_attempted),
    )
    return report


async def run(
    seeds: Sequence[str] | None,
    *,
    workspace: WorkspaceSource,
    registry: RegistryClient,
    config: PublishConfig | None = None,
    ledger: FingerprintLedger | None = None,
    exclude: Sequence[str] = (),
    include_dependents: bool | None = None,
    start_from: str | None = None,
    cancel_event: asyncio.Event | None = None,
    sleep: SleepFn = asyncio.sleep,
) -> RunReport:
    """Plan then execute; a structural error yields an ``aborted`` report."""
    config = config or PublishConfig()
    ledger = ledger if ledger is not None else FingerprintLedger()
    cache = SnapshotCache(registry, ledger, ttl=config.snapshot_ttl, timeout=config.request_timeout)
    try:
        the_plan = await plan(
            seeds,
            workspace=workspace,
            registry=registry,
            config=config,
            ledger=ledger,
            cache=cache,
            exclude=exclude,
            include_dependents=include_dependents,
            start_from=start_from,
            sleep=sleep,
        )
    except CratePubError as exc:
        logger.error('run_aborted', code=exc.code.value, error=exc.info.message)
        return RunReport.aborted(exc)
    return await execute(
        the_plan,
        workspace=workspace,
        registry=registry,
        config=config,
        ledger=ledger,
        cache=cache,
        cancel_event=cancel_event,
        sleep=sleep,
    )


__all__ = [
    'EXIT_ABORTED',
    'EXIT_INTERRUPTED',
    'EXIT_PARTIAL_FAILURE',
    'EXIT_SUCCESS',
    'EXIT_UNEXPECTED',
    'CrateOutcome',
    'RunReport',
    'RunStatus',
    'execute',
    'plan',
    'run',
    'select_crates',
]
