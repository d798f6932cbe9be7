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

"""Tests for cratepub.logging module."""

from __future__ import annotations

import json
import logging

import pytest
from cratepub.logging import REDACTED, configure_logging, get_logger, redact_tokens


class TestConfigureLogging:
    """Tests for configure_logging()."""

    def test_default_level_is_info(self) -> None:
        """Default logging level should be INFO."""
        configure_logging()
        assert logging.root.level == logging.INFO

    def test_verbose_sets_debug(self) -> None:
        """Verbose flag should set DEBUG level."""
        configure_logging(verbose=True)
        assert logging.root.level == logging.DEBUG

    def test_quiet_wins_over_verbose(self) -> None:
        """Quiet takes precedence when both are given."""
        configure_logging(verbose=True, quiet=True)
        assert logging.root.level == logging.WARNING

    def test_json_lines_on_stderr(self, capsys: pytest.CaptureFixture[str]) -> None:
        """JSON mode writes one object per event to stderr, nothing to stdout."""
        configure_logging(json_log=True)
        get_logger('cratepub.test').warning('publish_retry', crate='my-core', attempt=2)
        captured = capsys.readouterr()
        assert captured.out == ''
        event = json.loads(captured.err.strip().splitlines()[-1])
        assert event['event'] == 'publish_retry'
        assert event['crate'] == 'my-core'
        assert event['attempt'] == 2
        assert event['level'] == 'warning'

    def test_quiet_drops_info(self, capsys: pytest.CaptureFixture[str]) -> None:
        """Info events are filtered in quiet mode."""
        configure_logging(quiet=True, json_log=True)
        get_logger('cratepub.test').info('layer_start', layer=0)
        assert capsys.readouterr().err == ''

    def test_idempotent(self) -> None:
        """Calling configure_logging twice should not crash."""
        configure_logging()
        configure_logging(verbose=True)
        assert logging.root.level == logging.DEBUG


class TestGetLogger:
    """Tests for get_logger()."""

    def test_logger_can_log(self) -> None:
        """Logger should be able to emit messages without crashing."""
        configure_logging(quiet=True)
        log = get_logger('test')
        log.info('test_message', key='value')
        log.debug('debug_message')
        log.warning('warning_message')

    def test_default_name(self) -> None:
        """The default logger is usable."""
        configure_logging(quiet=True)
        assert get_logger() is not None


class TestRedaction:
    """Registry tokens never reach the log."""

    _TOKEN = 'cio' + 'a1B2' * 8

    def test_token_in_value_masked(self) -> None:
        """A crates.io token inside a message is replaced."""
        event = redact_tokens(None, 'warning', {'stderr': f'error: bad token {self._TOKEN} rejected'})
        assert event['stderr'] == f'error: bad token {REDACTED} rejected'

    def test_secret_keys_masked(self) -> None:
        """Values under secret-looking keys are always masked."""
        event = redact_tokens(None, 'info', {'Authorization': 'Bearer x', 'crate': 'my-core'})
        assert event == {'Authorization': REDACTED, 'crate': 'my-core'}

    def test_other_values_untouched(self) -> None:
        """Ordinary values pass through, non-strings included."""
        event = redact_tokens(None, 'info', {'crate': 'cio-utils', 'attempt': 2})
        assert event == {'crate': 'cio-utils', 'attempt': 2}

    def test_redacted_in_output(self, capsys: pytest.CaptureFixture[str]) -> None:
        """The processor is installed by configure_logging."""
        configure_logging(json_log=True)
        get_logger('cratepub.test').error('command_failed', stderr=f'token {self._TOKEN}')
        event = json.loads(capsys.readouterr().err.strip().splitlines()[-1])
        assert self._TOKEN not in event['stderr']


class TestHttpLoggers:
    """httpx request lines only show up in verbose mode."""

    def test_quieted_by_default(self) -> None:
        """At INFO, httpx is held at WARNING."""
        configure_logging()
        assert logging.getLogger('httpx').level == logging.WARNING

    def test_verbose_lets_them_through(self) -> None:
        """Verbose mode shows request lines."""
        configure_logging(verbose=True)
        assert logging.getLogger('httpx').level == logging.DEBUG
