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

"""Tests for cratepub.versioning: per-crate bump decisions."""

from __future__ import annotations

import pytest
from cratepub.errors import E, CratePubError
from cratepub.graph import build_graph
from cratepub.ledger import FingerprintLedger
from cratepub.logging import configure_logging
from cratepub.semver import Version
from cratepub.snapshot import RegistrySnapshot
from cratepub.versioning import BumpCategory, BumpPolicy, decide, decide_all

from tests._fakes import make_record

configure_logging(quiet=True)


def _snap(crate: str, versions: list[str] | None, fingerprints: dict[str, str] | None = None) -> RegistrySnapshot:
    ledger = FingerprintLedger(entries={crate: fingerprints} if fingerprints else None)
    return RegistrySnapshot.build(crate, versions, ledger)


class TestDecide:
    """Tests for decide()."""

    def test_never_published_is_initial(self) -> None:
        """Unpublished crates go out at their declared version."""
        d = decide(make_record('a', '0.3.0'), _snap('a', None))
        assert d.category is BumpCategory.INITIAL
        assert d.target == '0.3.0'
        assert d.bumped

    def test_declared_ahead(self) -> None:
        """A declared version above the registry is used as-is."""
        d = decide(make_record('a', '2.0.0'), _snap('a', ['1.0.0']))
        assert d.category is BumpCategory.ALREADY_AHEAD
        assert d.target == '2.0.0'

    def test_unchanged_fingerprint_is_no_change(self) -> None:
        """Same fingerprint as the latest publish: nothing to do."""
        d = decide(make_record('a', '1.0.0', fingerprint='fp'), _snap('a', ['1.0.0'], {'1.0.0': 'fp'}))
        assert d.category is BumpCategory.NONE
        assert d.target == '1.0.0'
        assert not d.bumped

    def test_unchanged_fingerprint_declared_behind(self) -> None:
        """An old declared version with unchanged sources is still no change."""
        d = decide(make_record('a', '0.9.0', fingerprint='fp'), _snap('a', ['1.0.0'], {'1.0.0': 'fp'}))
        assert d.category is BumpCategory.NONE
        assert d.target == '1.0.0'

    def test_changed_fingerprint_bumps_latest(self) -> None:
        """Changed sources bump from the latest published version."""
        d = decide(make_record('a', '1.0.0', fingerprint='new'), _snap('a', ['1.0.0', '0.9.0'], {'1.0.0': 'old'}))
        assert d.category is BumpCategory.PATCH
        assert d.target == '1.0.1'
        assert d.reason == 'sources changed since last publish'

    def test_no_fingerprint_falls_back_to_versions(self) -> None:
        """Without a ledger entry, declared == latest counts as unchanged."""
        assert decide(make_record('a', '1.0.0'), _snap('a', ['1.0.0'])).category is BumpCategory.NONE
        behind = decide(make_record('a', '0.9.0'), _snap('a', ['1.0.0']))
        assert behind.category is BumpCategory.PATCH
        assert behind.target == '1.0.1'

    def test_dependency_bumped(self) -> None:
        """An unchanged crate is bumped when a dependency is."""
        d = decide(
            make_record('a', '1.0.0', fingerprint='fp'),
            _snap('a', ['1.0.0'], {'1.0.0': 'fp'}),
            dependency_bumped=True,
        )
        assert d.category is BumpCategory.PATCH
        assert d.reason == 'dependency bumped'

    def test_policy_override(self) -> None:
        """The policy picks the category."""
        policy = BumpPolicy.from_names('patch', {'a': 'minor', 'b': 'major'})
        a = decide(make_record('a', '1.2.3', fingerprint='x'), _snap('a', ['1.2.3'], {'1.2.3': 'y'}), policy=policy)
        b = decide(make_record('b', '1.2.3', fingerprint='x'), _snap('b', ['1.2.3'], {'1.2.3': 'y'}), policy=policy)
        assert (a.category, a.target) == (BumpCategory.MINOR, '1.3.0')
        assert (b.category, b.target) == (BumpCategory.MAJOR, '2.0.0')

    def test_prerelease_latest(self) -> None:
        """A patch bump from a pre-release releases its core."""
        d = decide(make_record('a', '1.0.0-rc.1', fingerprint='x'), _snap('a', ['1.0.0-rc.1'], {'1.0.0-rc.1': 'y'}))
        assert d.target == '1.0.0'

    def test_invalid_declared_version(self) -> None:
        """Unparsable local versions are structural errors."""
        with pytest.raises(CratePubError) as exc_info:
            decide(make_record('a', 'one'), _snap('a', None))
        assert exc_info.value.code is E.VERSION_INVALID

    def test_target_always_above_latest_when_bumped(self) -> None:
        """A bump never targets an existing version."""
        for latest in ['0.0.1', '1.0.0', '3.2.1-beta.2']:
            d = decide(make_record('a', '0.0.0', fingerprint='x'), _snap('a', [latest]))
            assert d.bumped
            assert Version.parse(d.target) > Version.parse(latest)


class TestBumpPolicy:
    """Tests for BumpPolicy."""

    def test_rejects_non_policy_category(self) -> None:
        """INITIAL and friends can't be a policy."""
        with pytest.raises(CratePubError):
            BumpPolicy(default=BumpCategory.INITIAL)

    def test_from_names_invalid(self) -> None:
        """Unknown names are config errors."""
        with pytest.raises(CratePubError) as exc_info:
            BumpPolicy.from_names('giant')
        assert exc_info.value.code is E.CONFIG_INVALID_VALUE


class TestDecideAll:
    """Tests for decide_all(): bump propagation through the graph."""

    def test_chain_propagation(self) -> None:
        """A → B → C with only C changed bumps all three."""
        graph = build_graph([
            make_record('a', deps=['b'], fingerprint='a1'),
            make_record('b', deps=['c'], fingerprint='b1'),
            make_record('c', fingerprint='c2'),
        ])
        snaps = {
            'a': _snap('a', ['1.0.0'], {'1.0.0': 'a1'}),
            'b': _snap('b', ['1.0.0'], {'1.0.0': 'b1'}),
            'c': _snap('c', ['1.0.0'], {'1.0.0': 'c1'}),
        }
        decisions = decide_all(graph, ['c', 'b', 'a'], snaps)
        assert {n: d.category for n, d in decisions.items()} == {
            'c': BumpCategory.PATCH,
            'b': BumpCategory.PATCH,
            'a': BumpCategory.PATCH,
        }
        assert decisions['a'].reason == 'dependency bumped'

    def test_unchanged_chain(self) -> None:
        """Nothing changed, nothing bumped."""
        graph = build_graph([make_record('a', deps=['b']), make_record('b')])
        snaps = {'a': _snap('a', ['1.0.0']), 'b': _snap('b', ['1.0.0'])}
        decisions = decide_all(graph, ['b', 'a'], snaps)
        assert all(not d.bumped for d in decisions.values())

    def test_missing_snapshot_counts_as_bumped(self) -> None:
        """A dependency whose lookup failed forces its dependents to bump."""
        graph = build_graph([make_record('a', deps=['b']), make_record('b')])
        decisions = decide_all(graph, ['b', 'a'], {'a': _snap('a', ['1.0.0'])})
        assert 'b' not in decisions
        assert decisions['a'].category is BumpCategory.PATCH

    def test_dependency_outside_order_ignored(self) -> None:
        """Only dependencies inside the plan propagate."""
        graph = build_graph([make_record('a', deps=['b']), make_record('b')])
        decisions = decide_all(graph, ['a'], {'a': _snap('a', ['1.0.0'])})
        assert decisions['a'].category is BumpCategory.NONE
