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

"""Layer-by-layer publish scheduler.

Drives every :class:`~cratepub.plan.PlanEntry` of a
:class:`~cratepub.plan.PublishPlan` to a terminal status.

Key Concepts (ELI5)::

    ┌─────────────────────────┬─────────────────────────────────────────────┐
    │ Concept                 │ Plain-English                               │
    ├─────────────────────────┼─────────────────────────────────────────────┤
    │ Layer                   │ Every pending crate whose plan deps are all │
    │                         │ published or unchanged. Published together, │
    │                         │ at most ``concurrency`` at a time.          │
    ├─────────────────────────┼─────────────────────────────────────────────┤
    │ Propagation             │ crates.io accepts an upload before the      │
    │                         │ index serves it. Dependents wait until the  │
    │                         │ new version resolves.                       │
    ├─────────────────────────┼─────────────────────────────────────────────┤
    │ Reconciliation          │ After a timeout we don't know if the upload │
    │                         │ landed, so we ask the registry instead of   │
    │                         │ guessing.                                   │
    │                         │ A later "version exists" for that same      │
    │                         │ version means our timed-out upload landed.  │
    ├─────────────────────────┼─────────────────────────────────────────────┤
    │ Blocking                │ A failed crate's dependents are never       │
    │                         │ submitted; they end ``not_attempted``.      │
    └─────────────────────────┴─────────────────────────────────────────────┘

One submission::

    publish(name, version)
         │
         ├── ok ────────────────────────────────────────────┐
         │                                                  ▼
         ├── timeout ──▶ poll listed/resolvable ── seen ──▶ poll is_resolvable (doubling interval)
         │                  │                               │
         │                  never seen                      ├── resolvable ──▶ published
         │                  ▼                               └── exhausted ──▶ listed? ── yes ──▶ published (warn)
         ├── retryable ──▶ attempts left? ── yes ──▶ sleep(min(base·2ⁿ, max)) ──▶ retry
         │                  │                                               no ──▶ failed
         │                  no ──▶ failed
         ├── version exists after our own timeout ──▶ poll is_resolvable (as above)
         └── non-retryable ──▶ failed

Cancellation (the ``cancel_event``) is checked between layers and between
attempts. Submissions already in flight finish; entries not yet started
end ``not_attempted``.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterator
from dataclasses import dataclass

from cratepub.backends.registry import PackageArtifact, PublishError, PublishErrorKind, RegistryClient, RegistryError
from cratepub.errors import CratePubError
from cratepub.logging import get_logger
from cratepub.plan import SATISFIED_STATUSES, EntryStatus, PlanEntry, PublishPlan

logger = get_logger(__name__)

# Builds the artifact for an entry (applies the version bump, fingerprints).
PrepareFn = Callable[[PlanEntry], Awaitable[PackageArtifact]]

# Called once per entry after it is confirmed published.
PublishedFn = Callable[[PlanEntry, PackageArtifact], Awaitable[None]]

SleepFn = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class SchedulerConfig:
    """Retry, polling and timeout settings.

    Attributes:
        concurrency: Maximum concurrent submissions within a layer.
        max_attempts: Publish submissions per entry, first one included.
        retry_base_delay: Backoff before the second attempt; doubles
            after each further failure.
        retry_max_delay: Backoff cap.
        poll_attempts: ``is_resolvable`` checks after a publish.
        poll_interval: Wait before the second check; doubles after each.
        poll_max_interval: Poll interval cap.
        request_timeout: Timeout for registry reads.
        publish_timeout: Timeout for one publish submission.
    """

    concurrency: int = 4
    max_attempts: int = 3
    retry_base_delay: float = 2.0
    retry_max_delay: float = 60.0
    poll_attempts: int = 30
    poll_interval: float = 5.0
    poll_max_interval: float = 30.0
    request_timeout: float = 30.0
    publish_timeout: float = 600.0

    def backoff(self, failures: int) -> float:
        """Delay after ``failures`` failed attempts (1-based)."""
        return min(self.retry_base_delay * (2 ** (failures - 1)), self.retry_max_delay)


class _Retry(Exception):
    """Internal: the attempt failed in a way worth retrying."""


class PublishScheduler:
    """Publishes a plan layer by layer.

    The scheduler only mutates plan entries; turning the final plan into
    a run status is the caller's job.

    Args:
        plan: The plan to execute. Entries are updated in place.
        registry: Registry to publish to and poll.
        config: Retry, polling and timeout settings.
        prepare: Produces the artifact for an entry right before its
            first submission. Defaults to an artifact built from the
            entry alone.
        on_published: Called after an entry is confirmed published.
        cancel_event: Set it to stop the run between layers/attempts.
        sleep: Awaitable sleep, injectable for tests.
    """

    def __init__(
        self,
        plan: PublishPlan,
        registry: RegistryClient,
        *,
        config: SchedulerConfig | None = None,
        prepare: PrepareFn | None = None,
        on_published: PublishedFn | None = None,
        cancel_event: asyncio.Event | None = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        """Initialize the scheduler."""
        self._plan = plan
        self._registry = registry
        self._config = config or SchedulerConfig()
        self._prepare = prepare or _default_artifact
        self._on_published = on_published
        self._cancel_event = cancel_event or asyncio.Event()
        self._sleep = sleep
        self._semaphore = asyncio.Semaphore(max(1, self._config.concurrency))
        self._locks: dict[str, asyncio.Lock] = {}
        # Crates with a submission that timed out with an unknown outcome.
        self._timed_out: set[str] = set()

    @property
    def cancelled(self) -> bool:
        """Whether cancellation was requested."""
        return self._cancel_event.is_set()

    def cancel(self) -> None:
        """Request cancellation. Safe to call from a signal handler via the loop."""
        self._cancel_event.set()

    async def run(self) -> PublishPlan:
        """Publish until every entry is terminal. Returns the plan."""
        logger.info(
            'scheduler_start',
            total=len(self._plan),
            pending=len(self._plan.to_publish),
            concurrency=self._config.concurrency,
        )
        layer_no = 0
        while True:
            self._block_dependents()
            if self.cancelled:
                self._abandon('cancelled before start')
                logger.warning('scheduler_cancelled', layer=layer_no)
                break

            layer = self._next_layer()
            if not layer:
                # Whatever is left waits on a dependency that never got published.
                self._abandon('dependency not published')
                break

            logger.info('layer_start', layer=layer_no, crates=[e.name for e in layer])
            await asyncio.gather(*(self._publish_entry(entry) for entry in layer))
            layer_no += 1

        logger.info('scheduler_complete', layers=layer_no, **self._plan.summary())
        return self._plan

    def _next_layer(self) -> list[PlanEntry]:
        return [
            e
            for e in self._plan.entries
            if e.status is EntryStatus.PENDING
            and all(self._plan.get(dep).status in SATISFIED_STATUSES for dep in e.deps)
        ]

    def _block_dependents(self) -> None:
        """Mark pending dependents of every failed entry ``not_attempted``.

        Failures are visited in publish order, so an entry below several
        failures is blamed on the earliest one.
        """
        for failed in self._plan.entries:
            if failed.status is not EntryStatus.FAILED:
                continue
            for name in self._plan.dependents(failed.name):
                entry = self._plan.get(name)
                if entry.status is EntryStatus.PENDING:
                    entry.status = EntryStatus.NOT_ATTEMPTED
                    entry.reason = f'blocked by {failed.name}'
                    logger.info('crate_blocked', crate=entry.name, blocked_by=failed.name)

    def _abandon(self, reason: str) -> None:
        for entry in self._plan.entries:
            if not entry.terminal:
                entry.status = EntryStatus.NOT_ATTEMPTED
                entry.reason = reason

    def _lock(self, name: str) -> asyncio.Lock:
        return self._locks.setdefault(name, asyncio.Lock())

    async def _publish_entry(self, entry: PlanEntry) -> None:
        async with self._semaphore, self._lock(entry.name):
            if self.cancelled:
                entry.status = EntryStatus.NOT_ATTEMPTED
                entry.reason = 'cancelled before start'
                return

            entry.status = EntryStatus.PUBLISHING
            try:
                artifact = await self._prepare(entry)
            except CratePubError as exc:
                self._fail(entry, f'could not prepare {entry.name}: {exc.info.message}')
                return

            while True:
                entry.status = EntryStatus.PUBLISHING
                entry.attempts += 1
                try:
                    await self._attempt(entry, artifact)
                    return
                except _Retry as exc:
                    if entry.attempts >= self._config.max_attempts:
                        self._fail(entry, f'{exc} (gave up after {entry.attempts} attempts)')
                        return
                    delay = self._config.backoff(entry.attempts)
                    entry.status = EntryStatus.PENDING
                    entry.reason = str(exc)
                    logger.warning(
                        'publish_retry',
                        crate=entry.name,
                        version=entry.target_version,
                        attempt=entry.attempts,
                        max_attempts=self._config.max_attempts,
                        delay=delay,
                        error=str(exc),
                    )
                    await self._sleep(delay)
                    if self.cancelled:
                        self._fail(entry, f'cancelled after {entry.attempts} attempts: {exc}')
                        return

    async def _attempt(self, entry: PlanEntry, artifact: PackageArtifact) -> None:
        """One submission plus propagation. Raises :class:`_Retry` to try again."""
        name, version = entry.name, entry.target_version
        timeout = self._config.publish_timeout
        logger.info('publish_start', crate=name, version=version, attempt=entry.attempts)
        try:
            await asyncio.wait_for(self._registry.publish(name, version, artifact, timeout=timeout), timeout=timeout)
        except (PublishError, asyncio.TimeoutError) as exc:
            timed_out = isinstance(exc, asyncio.TimeoutError) or exc.kind is PublishErrorKind.TIMEOUT
            if not timed_out:
                if exc.kind is PublishErrorKind.VERSION_EXISTS and name in self._timed_out:
                    # An earlier submission of ours landed after all.
                    logger.info('publish_reconciled', crate=name, version=version, via='version_exists')
                elif exc.retryable:
                    raise _Retry(exc.info.message) from exc
                else:
                    self._fail(entry, exc.info.message)
                    return
            else:
                self._timed_out.add(name)
                logger.warning('publish_timeout', crate=name, version=version, timeout=timeout)
                landed = await self._reconcile(name, version)
                if landed is None:
                    self._fail(entry, f'publish of {version} timed out and the registry could not confirm the outcome')
                    return
                if not landed:
                    raise _Retry(f'publish of {version} timed out after {timeout:.0f}s') from exc
                logger.info('publish_reconciled', crate=name, version=version, via='registry')

        await self._confirm(entry, artifact)

    def _poll_delays(self) -> Iterator[float]:
        """Waits between polls: ``poll_attempts - 1`` delays, doubling to the cap."""
        interval = self._config.poll_interval
        for _ in range(self._config.poll_attempts - 1):
            yield interval
            interval = min(interval * 2, self._config.poll_max_interval)

    async def _reconcile(self, name: str, version: str) -> bool | None:
        """Poll for a timed-out upload on the propagation schedule.

        Returns:
            ``True`` once the version is listed or resolvable, ``False``
            if it never showed up, ``None`` if no listing lookup ever
            succeeded.
        """
        answered = False
        delays = self._poll_delays()
        while True:
            listed = await self._listed(name, version)
            if listed or await self._resolvable(name, version):
                return True
            answered = answered or listed is not None
            delay = next(delays, None)
            if delay is None:
                return False if answered else None
            await self._sleep(delay)

    async def _confirm(self, entry: PlanEntry, artifact: PackageArtifact) -> None:
        """Wait for the new version to resolve, then mark the entry published."""
        name, version = entry.name, entry.target_version
        delays = self._poll_delays()
        poll = 0
        while True:
            poll += 1
            if await self._resolvable(name, version):
                logger.info('crate_published', crate=name, version=version, polls=poll)
                await self._mark_published(entry, artifact, f'published {version}')
                return
            delay = next(delays, None)
            if delay is None:
                break
            await self._sleep(delay)

        # Never re-submit: the upload was accepted.
        if await self._listed(name, version):
            logger.warning('crate_published_not_resolvable', crate=name, version=version)
            await self._mark_published(entry, artifact, f'published {version} (not yet resolvable)')
            return
        self._fail(entry, f'{version} was accepted but never appeared on the registry')

    async def _mark_published(self, entry: PlanEntry, artifact: PackageArtifact, reason: str) -> None:
        entry.status = EntryStatus.PUBLISHED
        entry.reason = reason
        if self._on_published is None:
            return
        try:
            await self._on_published(entry, artifact)
        except (OSError, CratePubError) as exc:
            logger.error('post_publish_hook_failed', crate=entry.name, version=entry.target_version, error=str(exc))

    def _fail(self, entry: PlanEntry, reason: str) -> None:
        entry.status = EntryStatus.FAILED
        entry.reason = reason
        logger.error('publish_failed', crate=entry.name, version=entry.target_version, reason=reason)

    async def _resolvable(self, name: str, version: str) -> bool:
        timeout = self._config.request_timeout
        try:
            return await asyncio.wait_for(self._registry.is_resolvable(name, version, timeout=timeout), timeout=timeout)
        except (RegistryError, asyncio.TimeoutError) as exc:
            logger.debug('resolvable_check_failed', crate=name, version=version, error=str(exc))
            return False

    async def _listed(self, name: str, version: str) -> bool | None:
        """Whether the registry lists ``version``; ``None`` if it can't be asked."""
        timeout = self._config.request_timeout
        try:
            versions = await asyncio.wait_for(
                self._registry.get_published_versions(name, timeout=timeout),
                timeout=timeout,
            )
        except (RegistryError, asyncio.TimeoutError) as exc:
            logger.warning('reconcile_lookup_failed', crate=name, version=version, error=str(exc))
            return None
        return version in (versions or [])


async def _default_artifact(entry: PlanEntry) -> PackageArtifact:
    return PackageArtifact(
        name=entry.name,
        version=entry.target_version,
        path=entry.path,
        manifest_path=entry.manifest_path,
    )


__all__ = [
    'PrepareFn',
    'PublishScheduler',
    'PublishedFn',
    'SchedulerConfig',
    'SleepFn',
]
