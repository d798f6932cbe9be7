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

"""Subprocess runner for ``cargo``.

:func:`run_command` runs one command to completion and hands back a
:class:`CommandResult`; a non-zero exit is a result, not an exception.
It is blocking, so async callers go through ``asyncio.to_thread()``.

Cargo output is parsed downstream (publish failures are classified from
stderr), so every command runs with :data:`CARGO_ENV`: no colors, no
progress bars. Escape sequences that get through anyway are stripped.

``dry_run=True`` logs the command and returns a synthetic success
without spawning anything.
"""

from __future__ import annotations

import os
import re
import subprocess  # noqa: S404 - subprocess is the core purpose of this module
import time
from dataclasses import dataclass
from pathlib import Path

from cratepub.logging import get_logger

log = get_logger('cratepub.backends.run')

# cargo publish packages, verifies and uploads in one step.
DEFAULT_TIMEOUT_SECONDS = 600.0

CARGO_ENV: dict[str, str] = {
    'CARGO_TERM_COLOR': 'never',
    'CARGO_TERM_PROGRESS_WHEN': 'never',
}

_ANSI_RE = re.compile(r'\x1b\[[0-9;?]*[ -/]*[@-~]')

# Cargo prints the error last; keep the tail when logging.
_LOGGED_STDERR_CHARS = 800


@dataclass(frozen=True)
class CommandResult:
    """Outcome of one command.

    Attributes:
        command: Argument vector that was run.
        return_code: Exit status; 0 is success.
        stdout: Captured standard output, escape sequences removed.
        stderr: Captured standard error, escape sequences removed.
        duration: Wall-clock time in milliseconds.
        dry_run: The command was only logged.
    """

    command: list[str]
    return_code: int
    stdout: str = ''
    stderr: str = ''
    duration: float = 0.0
    dry_run: bool = False

    @property
    def ok(self) -> bool:
        """Whether the command exited with status 0."""
        return self.return_code == 0

    @property
    def command_str(self) -> str:
        """The argument vector joined with spaces."""
        return ' '.join(self.command)


def strip_ansi(text: str) -> str:
    """Remove terminal escape sequences from ``text``."""
    return _ANSI_RE.sub('', text)


def run_command(
    cmd: list[str],
    *,
    cwd: Path | str | None = None,
    env: dict[str, str] | None = None,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    dry_run: bool = False,
) -> CommandResult:
    """Run ``cmd`` to completion.

    The child sees ``os.environ``, then :data:`CARGO_ENV`, then ``env``.

    Raises:
        subprocess.TimeoutExpired: If the command exceeds ``timeout``.
        FileNotFoundError: If the executable does not exist.
    """
    result = CommandResult(command=cmd, return_code=0, dry_run=True)
    log.debug('run_command', cmd=result.command_str, cwd=str(cwd or '.'), dry_run=dry_run)
    if dry_run:
        log.info('dry_run', cmd=result.command_str)
        return result

    start = time.monotonic()
    try:
        proc = subprocess.run(  # noqa: S603 -- argv built by cratepub, never a shell string
            cmd,
            cwd=cwd,
            env={**os.environ, **CARGO_ENV, **(env or {})},
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired:
        log.error('command_timeout', cmd=result.command_str, timeout=timeout)
        raise

    result = CommandResult(
        command=cmd,
        return_code=proc.returncode,
        stdout=strip_ansi(proc.stdout),
        stderr=strip_ansi(proc.stderr),
        duration=(time.monotonic() - start) * 1000,
    )
    if result.ok:
        log.debug('command_ok', cmd=result.command_str, duration=result.duration)
    else:
        log.warning(
            'command_failed',
            cmd=result.command_str,
            return_code=result.return_code,
            stderr=result.stderr[-_LOGGED_STDERR_CHARS:],
            duration=result.duration,
        )
    return result


# Re-exported so callers don't import subprocess directly.
TimeoutExpired = subprocess.TimeoutExpired

__all__ = [
    'CARGO_ENV',
    'DEFAULT_TIMEOUT_SECONDS',
    'CommandResult',
    'TimeoutExpired',
    'run_command',
    'strip_ansi',
]
