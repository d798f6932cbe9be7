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

"""Structured error system for cratepub.

Every error has a unique ``CP-NAMED-KEY`` code, a human-readable message,
and an optional hint with a suggested fix.

Code categories::

    CP-CONFIG-*       Configuration errors
    CP-WORKSPACE-*    Workspace discovery and manifest errors
    CP-GRAPH-*        Dependency graph errors (cycles, unknown crates)
    CP-SELECT-*       Crate selection errors (excluded / unpublishable deps)
    CP-VERSION-*      Version parsing errors
    CP-REGISTRY-*     Registry lookup errors
    CP-PUBLISH-*      Publish errors

Structural errors (graph, selection, version, config, workspace) abort a
run before anything is published. Registry and publish errors are
recorded per crate and only block that crate's dependents.

Usage::

    from cratepub.errors import CratePubError, E

    raise CratePubError(
        code=E.CONFIG_INVALID_KEY,
        message="Unknown key 'concurency' in cratepub.toml",
        hint="Did you mean 'concurrency'?",
    )
"""

from __future__ import annotations

import difflib
import sys
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from typing import TextIO

from rich.console import Console
from rich.markup import escape as rich_escape


class ErrorCode(str, Enum):
    """Enumeration of all cratepub diagnostic codes."""

    # Configuration
    CONFIG_NOT_FOUND = 'CP-CONFIG-NOT-FOUND'
    CONFIG_INVALID_KEY = 'CP-CONFIG-INVALID-KEY'
    CONFIG_INVALID_VALUE = 'CP-CONFIG-INVALID-VALUE'

    # Workspace discovery
    WORKSPACE_NOT_FOUND = 'CP-WORKSPACE-NOT-FOUND'
    WORKSPACE_PARSE_ERROR = 'CP-WORKSPACE-PARSE-ERROR'
    WORKSPACE_DUPLICATE_CRATE = 'CP-WORKSPACE-DUPLICATE-CRATE'
    WORKSPACE_INVALID_EDGE = 'CP-WORKSPACE-INVALID-EDGE'

    # Dependency graph
    GRAPH_CYCLE_DETECTED = 'CP-GRAPH-CYCLE-DETECTED'
    GRAPH_UNKNOWN_CRATE = 'CP-GRAPH-UNKNOWN-CRATE'

    # Selection
    SELECT_EMPTY = 'CP-SELECT-EMPTY'
    SELECT_EXCLUDED_DEPENDENCY = 'CP-SELECT-EXCLUDED-DEPENDENCY'
    SELECT_UNPUBLISHABLE_DEPENDENCY = 'CP-SELECT-UNPUBLISHABLE-DEPENDENCY'

    # Versioning
    VERSION_INVALID = 'CP-VERSION-INVALID'
    VERSION_SHARED = 'CP-VERSION-SHARED'

    # Registry reads
    REGISTRY_LOOKUP_FAILED = 'CP-REGISTRY-LOOKUP-FAILED'
    REGISTRY_MALFORMED_RESPONSE = 'CP-REGISTRY-MALFORMED-RESPONSE'

    # Publish
    PUBLISH_FAILED = 'CP-PUBLISH-FAILED'
    PUBLISH_ALREADY_EXISTS = 'CP-PUBLISH-ALREADY-EXISTS'
    PUBLISH_AUTH_REJECTED = 'CP-PUBLISH-AUTH-REJECTED'
    PUBLISH_TIMEOUT = 'CP-PUBLISH-TIMEOUT'
    PUBLISH_NOT_PROPAGATED = 'CP-PUBLISH-NOT-PROPAGATED'
    POST_CHECK_FAILED = 'CP-POST-CHECK-FAILED'

    # Ledger
    LEDGER_CORRUPTED = 'CP-LEDGER-CORRUPTED'


# Convenience alias for shorter imports.
E = ErrorCode


@dataclass(frozen=True)
class ErrorInfo:
    """Metadata for a single error code.

    Attributes:
        code: The ``CP-NAMED-KEY`` error code.
        message: Human-readable description of what went wrong.
        hint: Optional suggestion for how to fix the error.
    """

    code: ErrorCode
    message: str
    hint: str = ''


class CratePubError(Exception):
    """Base exception for all cratepub errors.

    Args:
        code: The error code from :class:`ErrorCode`.
        message: Human-readable description of what went wrong.
        hint: Optional suggestion for how to fix the error.
    """

    def __init__(self, code: ErrorCode, message: str, hint: str = '') -> None:
        """Initialize with an error code, message, and optional hint."""
        self.info = ErrorInfo(code=code, message=message, hint=hint)
        super().__init__(f'[{code.value}] {message}')

    @property
    def code(self) -> ErrorCode:
        """The error code."""
        return self.info.code

    @property
    def hint(self) -> str:
        """Suggestion for fixing this error, or empty string."""
        return self.info.hint


class CycleDetected(CratePubError):
    """The workspace dependency graph contains a cycle.

    Attributes:
        cycle: Crate names forming the loop, first name repeated at the
            end (``['a', 'b', 'a']``).
    """

    def __init__(self, cycle: list[str]) -> None:
        """Initialize with the offending cycle path."""
        self.cycle = list(cycle)
        super().__init__(
            E.GRAPH_CYCLE_DETECTED,
            f'Circular dependency detected: {" → ".join(self.cycle)}',
            hint='Crates in a cycle cannot be published in order. Break the cycle in the manifests.',
        )


class UnknownCrate(CratePubError):
    """A requested crate is not a member of the workspace.

    Attributes:
        name: The requested name.
        suggestion: Closest workspace crate name, if any is close.
    """

    def __init__(self, name: str, known: Iterable[str] = ()) -> None:
        """Initialize with the unknown name and, optionally, the real ones."""
        self.name = name
        matches = difflib.get_close_matches(name, list(known), n=1)
        self.suggestion = matches[0] if matches else None
        if self.suggestion is not None:
            hint = f'Did you mean {self.suggestion!r}?'
        else:
            hint = "Run 'cratepub graph' to list the workspace crates."
        super().__init__(E.GRAPH_UNKNOWN_CRATE, f'Crate {name!r} is not a member of the workspace.', hint=hint)


ERRORS: dict[ErrorCode, ErrorInfo] = {
    E.CONFIG_INVALID_KEY: ErrorInfo(
        code=E.CONFIG_INVALID_KEY,
        message='cratepub.toml contains a key that cratepub does not recognize.',
        hint='Check the spelling; the error message suggests the closest valid key.',
    ),
    E.WORKSPACE_NOT_FOUND: ErrorInfo(
        code=E.WORKSPACE_NOT_FOUND,
        message='No Cargo.toml with a [workspace] table was found at the given root.',
        hint='Pass --root pointing at the directory that holds the workspace Cargo.toml.',
    ),
    E.GRAPH_CYCLE_DETECTED: ErrorInfo(
        code=E.GRAPH_CYCLE_DETECTED,
        message='Circular dependency detected in the workspace dependency graph.',
        hint="Run 'cratepub graph' to inspect the graph, then break the cycle.",
    ),
    E.GRAPH_UNKNOWN_CRATE: ErrorInfo(
        code=E.GRAPH_UNKNOWN_CRATE,
        message='A crate passed with --crate is not a workspace member.',
        hint="Run 'cratepub graph' to list the workspace crates.",
    ),
    E.SELECT_EXCLUDED_DEPENDENCY: ErrorInfo(
        code=E.SELECT_EXCLUDED_DEPENDENCY,
        message='A selected crate depends on a crate excluded with --exclude.',
        hint='Stop excluding the dependency, or exclude the dependent as well.',
    ),
    E.SELECT_UNPUBLISHABLE_DEPENDENCY: ErrorInfo(
        code=E.SELECT_UNPUBLISHABLE_DEPENDENCY,
        message='A selected crate depends on a crate marked publish = false.',
        hint='Remove "publish = false" from the dependency, or drop the dependency.',
    ),
    E.VERSION_SHARED: ErrorInfo(
        code=E.VERSION_SHARED,
        message='A crate that needs a new version inherits [workspace.package].version with other crates.',
        hint='Bump [workspace.package].version in the root Cargo.toml yourself, then re-run.',
    ),
    E.PUBLISH_ALREADY_EXISTS: ErrorInfo(
        code=E.PUBLISH_ALREADY_EXISTS,
        message='The registry already has this crate version.',
        hint='Bump the version locally or let cratepub compute the next version.',
    ),
    E.PUBLISH_NOT_PROPAGATED: ErrorInfo(
        code=E.PUBLISH_NOT_PROPAGATED,
        message='A publish was acknowledged but the version never became visible on the registry.',
        hint='Check the registry manually before re-running; the version may still be indexing.',
    ),
    E.POST_CHECK_FAILED: ErrorInfo(
        code=E.POST_CHECK_FAILED,
        message='Every crate was published, but cargo update or cargo check failed afterwards.',
        hint='Run the reported cargo command yourself; the published versions stay on the registry.',
    ),
}


def _normalize_code(code: str) -> str:
    code = code.strip().upper()
    return code if code.startswith('CP-') else f'CP-{code}'


def explain(code: str) -> str | None:
    """Return a detailed explanation for an error code.

    Case and the ``CP-`` prefix are optional: ``graph-cycle-detected``
    finds ``CP-GRAPH-CYCLE-DETECTED``.

    Returns:
        A formatted explanation string, or ``None`` if the code is unknown.
    """
    try:
        error_code = ErrorCode(_normalize_code(code))
    except ValueError:
        return None

    info = ERRORS.get(error_code)
    if info is None:
        return f'{error_code.value}: No detailed explanation available.'
    lines = [f'{error_code.value}: {info.message}']
    if info.hint:
        lines.append(f'  Hint: {info.hint}')
    return '\n'.join(lines)


def similar_codes(code: str) -> list[str]:
    """Known codes that look like ``code``, closest first."""
    return difflib.get_close_matches(_normalize_code(code), [c.value for c in ErrorCode], n=3, cutoff=0.6)


def render_error(exc: CratePubError, *, file: TextIO | None = None) -> None:
    """Render an error in Rust-compiler style.

    Output format::

        error[CP-GRAPH-CYCLE-DETECTED]: Circular dependency detected: a → b → a
          |
          = hint: Crates in a cycle cannot be published in order.

    Colored through rich when ``file`` (default stderr) is a terminal,
    plain text otherwise.
    """
    out = file or sys.stderr
    head = (f'error[{exc.code.value}]', exc.info.message)
    tail = ['  |', f'  = hint: {exc.hint}'] if exc.hint else []

    if not out.isatty():
        for line in (f'{head[0]}: {head[1]}', *tail, ''):
            print(line, file=out)  # noqa: T201 - CLI output
        return

    console = Console(file=out, highlight=False)
    console.print(f'[bold red]{rich_escape(head[0])}[/bold red][bold]: {rich_escape(head[1])}[/bold]')
    if exc.hint:
        console.print('  [dim]|[/dim]')
        console.print(f'  [dim]=[/dim] [cyan]hint[/cyan]: {rich_escape(exc.hint)}')
    console.print()


__all__ = [
    'E',
    'ERRORS',
    'CratePubError',
    'CycleDetected',
    'ErrorCode',
    'ErrorInfo',
    'UnknownCrate',
    'explain',
    'render_error',
    'similar_codes',
]
