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

"""Tests for cratepub.ledger."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from cratepub.errors import E, CratePubError
from cratepub.ledger import LEDGER_FILENAME, FingerprintLedger
from cratepub.logging import configure_logging

configure_logging(quiet=True)


class TestFingerprintLedger:
    """Tests for FingerprintLedger."""

    def test_missing_file_is_empty(self, tmp_path: Path) -> None:
        """A ledger that was never written starts empty."""
        ledger = FingerprintLedger.load(tmp_path / LEDGER_FILENAME)
        assert len(ledger) == 0
        assert ledger.lookup('a', '1.0.0') is None

    def test_record_persists(self, tmp_path: Path) -> None:
        """record() writes through to the backing file."""
        path = tmp_path / LEDGER_FILENAME
        ledger = FingerprintLedger.load(path)
        ledger.record('core', '1.0.0', 'abc')
        ledger.record('core', '1.0.1', 'def')

        data = json.loads(path.read_text(encoding='utf-8'))
        assert data == {'schema': 1, 'crates': {'core': {'1.0.0': 'abc', '1.0.1': 'def'}}}

        reloaded = FingerprintLedger.load(path)
        assert reloaded.lookup('core', '1.0.1') == 'def'
        assert reloaded.versions('core') == {'1.0.0': 'abc', '1.0.1': 'def'}

    def test_in_memory(self, tmp_path: Path) -> None:
        """Without a path nothing is written."""
        ledger = FingerprintLedger(entries={'a': {'1.0.0': 'x'}})
        ledger.record('a', '1.0.1', 'y')
        assert ledger.lookup('a', '1.0.1') == 'y'
        assert list(tmp_path.iterdir()) == []

    def test_save_leaves_no_temp_files(self, tmp_path: Path) -> None:
        """The atomic write cleans up after itself."""
        path = tmp_path / LEDGER_FILENAME
        FingerprintLedger(entries={'a': {'1.0.0': 'x'}}).save(path)
        assert [p.name for p in tmp_path.iterdir()] == [LEDGER_FILENAME]

    @pytest.mark.parametrize(
        'content',
        ['not json', '[]', '{"crates": []}', '{"crates": {"a": {"1.0.0": 5}}}'],
    )
    def test_corrupted(self, tmp_path: Path, content: str) -> None:
        """Anything that isn't a crate → version → fingerprint map is rejected."""
        path = tmp_path / LEDGER_FILENAME
        path.write_text(content, encoding='utf-8')
        with pytest.raises(CratePubError) as exc_info:
            FingerprintLedger.load(path)
        assert exc_info.value.code is E.LEDGER_CORRUPTED
