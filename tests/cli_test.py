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

"""Tests for cratepub.cli: parser, dispatch and exit codes."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from cratepub import cli
from cratepub.backends.registry import PublishErrorKind
from cratepub.backends.workspace import CargoWorkspace
from cratepub.cli import build_parser, main
from cratepub.config import PublishConfig
from cratepub.errors import E, CratePubError
from cratepub.pipeline import EXIT_ABORTED, EXIT_PARTIAL_FAILURE, EXIT_SUCCESS, EXIT_UNEXPECTED

from tests._fakes import FakeRegistry


def _write(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding='utf-8')


def _workspace(root: Path) -> Path:
    """my-cli depends on my-core; both at 0.1.0."""
    _write(root / 'Cargo.toml', '[workspace]\nmembers = ["core", "cli"]\n')
    _write(root / 'core' / 'Cargo.toml', '[package]\nname = "my-core"\nversion = "0.1.0"\nedition = "2021"\n')
    _write(root / 'core' / 'src' / 'lib.rs', '// my-core\n')
    _write(
        root / 'cli' / 'Cargo.toml',
        '[package]\nname = "my-cli"\nversion = "0.1.0"\nedition = "2021"\n\n'
        '[dependencies]\nmy-core = { path = "../core", version = "0.1.0" }\n',
    )
    _write(root / 'cli' / 'src' / 'main.rs', 'fn main() {}\n')
    return root


@pytest.fixture
def fake_registry(monkeypatch: pytest.MonkeyPatch) -> FakeRegistry:
    """Replace the crates.io backend; my-core 0.1.0 is already published."""
    registry = FakeRegistry({'my-core': ['0.1.0']})

    def _registry(root: Path, config: PublishConfig) -> FakeRegistry:
        return registry

    monkeypatch.setattr(cli, '_registry', _registry)
    return registry


class TestBuildParser:
    """Tests for the argument parser structure."""

    def test_publish_flags(self) -> None:
        """Selection and tuning flags parse."""
        args = build_parser().parse_args([
            'publish',
            '--root',
            'ws',
            '-c',
            'my-cli',
            '-c',
            'my-core',
            '-e',
            '*-example',
            '--include-dependents',
            '--max-attempts',
            '5',
            '--concurrency',
            '2',
            '--after-publish-delay',
            '1.5',
            '--format',
            'json',
            '--start-from',
            'my-core',
            '--verify-from',
            'my-cli',
            '--post-check',
        ])
        assert args.command == 'publish'
        assert args.root == Path('ws')
        assert args.crates == ['my-cli', 'my-core']
        assert args.exclude == ['*-example']
        assert args.include_dependents is True
        assert (args.max_attempts, args.concurrency, args.after_publish_delay) == (5, 2, 1.5)
        assert args.format == 'json'
        assert args.dry_run is False
        assert (args.start_from, args.verify_from, args.post_check) == ('my-core', 'my-cli', True)

    def test_plan_defaults(self) -> None:
        """Unset options stay unset so the config file applies."""
        args = build_parser().parse_args(['plan'])
        assert args.crates == []
        assert args.exclude == []
        assert args.include_dependents is None
        assert args.format == 'table'
        assert args.start_from is None
        assert args.verify_from is None

    def test_graph_format(self) -> None:
        """Graph accepts text and json."""
        assert build_parser().parse_args(['graph', '--format', 'json']).format == 'json'
        with pytest.raises(SystemExit):
            build_parser().parse_args(['graph', '--format', 'dot'])


class TestMain:
    """Tests for main() dispatch and exit codes."""

    def test_no_command(self, capsys: pytest.CaptureFixture[str]) -> None:
        """No subcommand prints help and fails."""
        assert main([]) == EXIT_UNEXPECTED
        assert 'please provide a command' in capsys.readouterr().err

    def test_explain_known(self, capsys: pytest.CaptureFixture[str]) -> None:
        """A known code is explained."""
        assert main(['explain', 'CP-GRAPH-CYCLE-DETECTED']) == EXIT_SUCCESS
        assert 'CP-GRAPH-CYCLE-DETECTED' in capsys.readouterr().out

    def test_explain_unknown(self, capsys: pytest.CaptureFixture[str]) -> None:
        """An unknown code is reported."""
        assert main(['explain', 'CP-NOPE']) == EXIT_UNEXPECTED
        assert 'Unknown error code' in capsys.readouterr().out

    def test_explain_typo_suggests(self, capsys: pytest.CaptureFixture[str]) -> None:
        """A near-miss code lists the closest known codes."""
        assert main(['explain', 'CP-GRAPH-CYCLE-DETECTD']) == EXIT_UNEXPECTED
        assert 'Did you mean: CP-GRAPH-CYCLE-DETECTED' in capsys.readouterr().out

    def test_graph_text(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        """Levels are printed with versions."""
        _workspace(tmp_path)
        assert main(['-q', 'graph', '--root', str(tmp_path)]) == EXIT_SUCCESS
        assert capsys.readouterr().out.splitlines() == ['Level 0: my-core@0.1.0', 'Level 1: my-cli@0.1.0']

    def test_graph_json(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        """JSON output carries levels and edges."""
        _workspace(tmp_path)
        assert main(['-q', 'graph', '--root', str(tmp_path), '--format', 'json']) == EXIT_SUCCESS
        data = json.loads(capsys.readouterr().out)
        assert data['levels'] == [['my-core'], ['my-cli']]
        assert data['edges']['my-cli'] == ['my-core']
        assert data['unpublishable'] == []

    def test_structural_error_exit_code(self, tmp_path: Path) -> None:
        """A missing workspace aborts with exit 3."""
        assert main(['-q', 'graph', '--root', str(tmp_path / 'missing')]) == EXIT_ABORTED

    def test_plan_json(
        self,
        tmp_path: Path,
        fake_registry: FakeRegistry,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        """The plan is printed and nothing is published."""
        _workspace(tmp_path)
        assert main(['-q', 'plan', '--root', str(tmp_path), '--format', 'json']) == EXIT_SUCCESS
        data = json.loads(capsys.readouterr().out)
        statuses = {e['name']: e['status'] for e in data['entries']}
        assert statuses == {'my-core': 'no_change', 'my-cli': 'pending'}
        assert fake_registry.publish_calls == []

    def test_publish_dry_run(self, tmp_path: Path, fake_registry: FakeRegistry) -> None:
        """--dry-run stops after planning."""
        _workspace(tmp_path)
        assert main(['-q', 'publish', '--root', str(tmp_path), '--dry-run']) == EXIT_SUCCESS
        assert fake_registry.publish_calls == []

    def test_publish(
        self,
        tmp_path: Path,
        fake_registry: FakeRegistry,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        """Changed crates are bumped, published in order and recorded in the ledger."""
        _workspace(tmp_path)
        ledger_path = tmp_path / '.cratepub-ledger.json'
        ledger_path.write_text(json.dumps({'schema': 1, 'crates': {'my-core': {'0.1.0': 'stale'}}}), encoding='utf-8')

        assert main(['-q', 'publish', '--root', str(tmp_path)]) == EXIT_SUCCESS
        assert fake_registry.publish_calls == [('my-core', '0.1.1'), ('my-cli', '0.1.0')]
        assert 'version = "0.1.1"' in (tmp_path / 'core' / 'Cargo.toml').read_text(encoding='utf-8')
        assert '0.1.1' in (tmp_path / 'cli' / 'Cargo.toml').read_text(encoding='utf-8')

        ledger = json.loads(ledger_path.read_text(encoding='utf-8'))
        assert set(ledger['crates']['my-core']) == {'0.1.0', '0.1.1'}
        assert '0.1.0' in ledger['crates']['my-cli']
        assert capsys.readouterr().out.rstrip().endswith('Status: success (exit 0)')

    def test_publish_partial_failure_exit_code(
        self,
        tmp_path: Path,
        fake_registry: FakeRegistry,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        """A crate the registry rejects gives exit 2 and blocks nothing else."""
        _workspace(tmp_path)
        fake_registry.fail_publish('my-cli', PublishErrorKind.VERSION_EXISTS)
        assert main(['-q', 'publish', '--root', str(tmp_path), '--format', 'json']) == EXIT_PARTIAL_FAILURE
        report = json.loads(capsys.readouterr().out)
        assert report['status'] == 'partial_failure'
        assert {c['name']: c['status'] for c in report['crates']} == {'my-core': 'no_change', 'my-cli': 'failed'}

    def test_publish_start_from(self, tmp_path: Path, fake_registry: FakeRegistry) -> None:
        """--start-from leaves out the crates ordered before it."""
        _workspace(tmp_path)
        assert main(['-q', 'publish', '--root', str(tmp_path), '--start-from', 'my-cli']) == EXIT_SUCCESS
        assert fake_registry.publish_calls == [('my-cli', '0.1.0')]


class TestPostCheck:
    """--post-check runs cargo update and cargo check after a successful run."""

    @pytest.fixture
    def checked(self, monkeypatch: pytest.MonkeyPatch) -> list[list[str]]:
        """Record post-check calls instead of running cargo."""
        calls: list[list[str]] = []

        async def fake_post_check(self: CargoWorkspace, crate_names: list[str], *, timeout: float = 600.0) -> None:
            calls.append(list(crate_names))

        monkeypatch.setattr(CargoWorkspace, 'post_check', fake_post_check)
        return calls

    def test_runs_after_success(self, tmp_path: Path, fake_registry: FakeRegistry, checked: list[list[str]]) -> None:
        """Published and unchanged crates are both checked."""
        _workspace(tmp_path)
        assert main(['-q', 'publish', '--root', str(tmp_path), '--post-check']) == EXIT_SUCCESS
        assert checked == [['my-core', 'my-cli']]

    def test_off_by_default(self, tmp_path: Path, fake_registry: FakeRegistry, checked: list[list[str]]) -> None:
        """Without the flag or config key, nothing is checked."""
        _workspace(tmp_path)
        assert main(['-q', 'publish', '--root', str(tmp_path)]) == EXIT_SUCCESS
        assert checked == []

    def test_enabled_from_config(self, tmp_path: Path, fake_registry: FakeRegistry, checked: list[list[str]]) -> None:
        """post_check = true in cratepub.toml turns it on."""
        _workspace(tmp_path)
        (tmp_path / 'cratepub.toml').write_text('post_check = true\n', encoding='utf-8')
        assert main(['-q', 'publish', '--root', str(tmp_path)]) == EXIT_SUCCESS
        assert checked == [['my-core', 'my-cli']]

    def test_skipped_after_failure(
        self,
        tmp_path: Path,
        fake_registry: FakeRegistry,
        checked: list[list[str]],
    ) -> None:
        """A partial failure is reported as is, without a post-check."""
        _workspace(tmp_path)
        fake_registry.fail_publish('my-cli', PublishErrorKind.VERSION_EXISTS)
        assert main(['-q', 'publish', '--root', str(tmp_path), '--post-check']) == EXIT_PARTIAL_FAILURE
        assert checked == []

    def test_failure_exit_code(
        self,
        tmp_path: Path,
        fake_registry: FakeRegistry,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """A failing post-check turns a successful run into exit 2."""

        async def failing_post_check(self: CargoWorkspace, crate_names: list[str], *, timeout: float = 600.0) -> None:
            raise CratePubError(code=E.POST_CHECK_FAILED, message='cargo check --quiet -p my-cli: error')

        monkeypatch.setattr(CargoWorkspace, 'post_check', failing_post_check)
        _workspace(tmp_path)
        assert main(['-q', 'publish', '--root', str(tmp_path), '-k']) == EXIT_PARTIAL_FAILURE
        assert fake_registry.publish_calls == [('my-cli', '0.1.0')]
