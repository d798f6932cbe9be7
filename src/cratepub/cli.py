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

"""CLI entry point for cratepub.

Constructs backend instances and injects them into the pipeline.

Subcommands::

    cratepub plan      Preview the publish plan (no registry writes)
    cratepub publish   Publish the selected crates in dependency order
    cratepub graph     Show the workspace dependency levels
    cratepub explain   Explain an error code

Usage::

    # Preview what publishing my-cli would take:
    cratepub plan --root . -c my-cli

    # Publish everything publishable, skipping examples:
    cratepub publish --root . -e '*-example'

    # Resume after a failure at my-utils, then build against the new releases:
    cratepub publish --root . --start-from my-utils --post-check

    # Explain an error:
    cratepub explain CP-GRAPH-CYCLE-DETECTED

Exit codes: 0 success, 2 some crates failed or were not attempted (or the
post-check failed), 3 aborted before publishing, 1 unexpected error, 130 interrupted.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import signal
import sys
from collections.abc import Sequence
from pathlib import Path

from rich_argparse import RichHelpFormatter

from cratepub import __version__
from cratepub.backends.registry import CratesIoRegistry
from cratepub.backends.workspace import CargoWorkspace
from cratepub.config import PublishConfig, load_config
from cratepub.errors import CratePubError, explain, render_error, similar_codes
from cratepub.graph import build_graph, topo_levels
from cratepub.ledger import FingerprintLedger
from cratepub.logging import configure_logging, get_logger
from cratepub.pipeline import (
    EXIT_ABORTED,
    EXIT_INTERRUPTED,
    EXIT_PARTIAL_FAILURE,
    EXIT_SUCCESS,
    EXIT_UNEXPECTED,
    RunStatus,
    plan,
    run,
)
from cratepub.plan import EntryStatus
from cratepub.workspace import CrateStore

logger = get_logger(__name__)


def _add_selection_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        '--root',
        type=Path,
        default=Path('.'),
        help='Workspace root holding Cargo.toml and cratepub.toml (default: current directory).',
    )
    parser.add_argument(
        '--crate',
        '-c',
        dest='crates',
        action='append',
        default=[],
        metavar='CRATE',
        help='Crate to publish; repeatable. Default: every publishable crate.',
    )
    parser.add_argument(
        '--exclude',
        '-e',
        action='append',
        default=[],
        metavar='PATTERN',
        help='Glob of crate names never to publish; their dependents are excluded too. Repeatable.',
    )
    parser.add_argument(
        '--include-dependents',
        action='store_true',
        default=None,
        help='Also republish crates that depend on the selection.',
    )
    parser.add_argument(
        '--start-from',
        '-s',
        metavar='CRATE',
        help='Resume a run: leave out every crate ordered before CRATE.',
    )
    parser.add_argument(
        '--verify-from',
        metavar='CRATE',
        help='Skip cargo verification for crates ordered before CRATE.',
    )


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser."""
    RichHelpFormatter.styles['argparse.groups'] = 'bold yellow'
    parser = argparse.ArgumentParser(
        prog='cratepub',
        description='Dependency-ordered publishing for Cargo workspaces.',
        formatter_class=RichHelpFormatter,
    )
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    parser.add_argument('--verbose', '-v', action='store_true', help='Debug logging.')
    parser.add_argument('--quiet', '-q', action='store_true', help='Only log warnings and errors.')
    parser.add_argument('--json-log', action='store_true', help='Log JSON lines instead of console output.')

    subparsers = parser.add_subparsers(dest='command')

    plan_parser = subparsers.add_parser(
        'plan',
        help='Preview the publish plan without publishing.',
        formatter_class=RichHelpFormatter,
    )
    _add_selection_args(plan_parser)
    plan_parser.add_argument(
        '--format',
        choices=['table', 'json'],
        default='table',
        help='Output format (default: table).',
    )

    publish_parser = subparsers.add_parser(
        'publish',
        help='Publish the selected crates in dependency order.',
        formatter_class=RichHelpFormatter,
    )
    _add_selection_args(publish_parser)
    publish_parser.add_argument(
        '--format',
        choices=['table', 'json'],
        default='table',
        help='Report format (default: table).',
    )
    publish_parser.add_argument(
        '--after-publish-delay',
        type=float,
        metavar='SECONDS',
        help='Extra pause after each successful publish.',
    )
    publish_parser.add_argument(
        '--max-attempts',
        type=int,
        metavar='N',
        help='Publish submissions per crate, first one included.',
    )
    publish_parser.add_argument(
        '--concurrency',
        type=int,
        metavar='N',
        help='Max crates publishing at once within a level.',
    )
    publish_parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Print the plan and stop.',
    )
    publish_parser.add_argument(
        '--post-check',
        '-k',
        action='store_true',
        default=None,
        help='After a successful run, cargo update and cargo check the published crates.',
    )

    graph_parser = subparsers.add_parser(
        'graph',
        help='Show the workspace dependency levels.',
        formatter_class=RichHelpFormatter,
    )
    graph_parser.add_argument(
        '--root',
        type=Path,
        default=Path('.'),
        help='Workspace root holding Cargo.toml (default: current directory).',
    )
    graph_parser.add_argument(
        '--format',
        choices=['text', 'json'],
        default='text',
        help='Output format (default: text).',
    )

    explain_parser = subparsers.add_parser(
        'explain',
        help='Explain an error code.',
        formatter_class=RichHelpFormatter,
    )
    explain_parser.add_argument('code', help='Error code, e.g. CP-GRAPH-CYCLE-DETECTED.')

    return parser


def _config(args: argparse.Namespace) -> PublishConfig:
    config = load_config(args.root)
    return config.with_overrides(
        after_publish_delay=getattr(args, 'after_publish_delay', None),
        max_attempts=getattr(args, 'max_attempts', None),
        concurrency=getattr(args, 'concurrency', None),
        verify_from=args.verify_from,
        post_check=getattr(args, 'post_check', None),
    )


def _registry(root: Path, config: PublishConfig) -> CratesIoRegistry:
    return CratesIoRegistry(
        base_url=config.registry_url,
        index=config.registry_index,
        registry_name=config.registry_name,
        workspace_root=root,
        pool_size=config.http_pool_size,
    )


def _install_signal_handlers(cancel_event: asyncio.Event) -> list[signal.Signals]:
    """Route SIGINT/SIGTERM to ``cancel_event``. Returns the signals handled."""
    loop = asyncio.get_running_loop()
    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _on_signal, sig, cancel_event)
        except (NotImplementedError, RuntimeError, ValueError):
            # Not the main thread, or no loop signal support on this platform.
            continue
        installed.append(sig)
    return installed


def _on_signal(sig: signal.Signals, cancel_event: asyncio.Event) -> None:
    if not cancel_event.is_set():
        logger.warning('cancel_requested', signal=sig.name)
    cancel_event.set()


async def _cmd_plan(args: argparse.Namespace) -> int:
    """Handle the ``plan`` subcommand."""
    config = _config(args)
    root = args.root
    the_plan = await plan(
        args.crates,
        workspace=CargoWorkspace(root),
        registry=_registry(root, config),
        config=config,
        ledger=FingerprintLedger.load(root / config.ledger_path),
        exclude=args.exclude,
        include_dependents=args.include_dependents,
        start_from=args.start_from,
    )
    if args.format == 'json':
        print(the_plan.format_json())  # noqa: T201 - CLI output
    else:
        print(the_plan.format_table())  # noqa: T201 - CLI output
    return EXIT_SUCCESS


async def _cmd_publish(args: argparse.Namespace) -> int:
    """Handle the ``publish`` subcommand."""
    if args.dry_run:
        return await _cmd_plan(args)

    config = _config(args)
    root = args.root
    cancel_event = asyncio.Event()
    installed = _install_signal_handlers(cancel_event)
    try:
        report = await run(
            args.crates,
            workspace=CargoWorkspace(root),
            registry=_registry(root, config),
            config=config,
            ledger=FingerprintLedger.load(root / config.ledger_path),
            exclude=args.exclude,
            include_dependents=args.include_dependents,
            start_from=args.start_from,
            cancel_event=cancel_event,
        )
    finally:
        loop = asyncio.get_running_loop()
        for sig in installed:
            loop.remove_signal_handler(sig)

    if report.error is not None:
        render_error(report.error)
    if args.format == 'json':
        print(report.format_json())  # noqa: T201 - CLI output
    else:
        print(report.format_table())  # noqa: T201 - CLI output
    if config.post_check and report.status is RunStatus.SUCCESS:
        done = [o.name for o in report.outcomes if o.status in (EntryStatus.PUBLISHED, EntryStatus.NO_CHANGE)]
        try:
            await CargoWorkspace(root).post_check(done, timeout=config.publish_timeout)
        except CratePubError as exc:
            render_error(exc)
            return EXIT_PARTIAL_FAILURE
    return report.exit_code


async def _cmd_graph(args: argparse.Namespace) -> int:
    """Handle the ``graph`` subcommand."""
    store = await CrateStore.load(CargoWorkspace(args.root))
    graph = build_graph(store)
    levels = topo_levels(graph, graph.names)

    if args.format == 'json':
        data = {
            'levels': levels,
            'edges': {name: list(deps) for name, deps in graph.edges.items()},
            'unpublishable': [name for name in graph.names if not graph.records[name].publishable],
        }
        print(json.dumps(data, indent=2))  # noqa: T201 - CLI output
        return EXIT_SUCCESS

    for i, level in enumerate(levels):
        names = ', '.join(f'{n}@{graph.records[n].version}' for n in level)
        print(f'Level {i}: {names}')  # noqa: T201 - CLI output
    return EXIT_SUCCESS


def _cmd_explain(args: argparse.Namespace) -> int:
    """Handle the ``explain`` subcommand."""
    result = explain(args.code)
    if result is None:
        print(f'Unknown error code: {args.code}')  # noqa: T201 - CLI output
        close = similar_codes(args.code)
        if close:
            print(f'Did you mean: {", ".join(close)}?')  # noqa: T201 - CLI output
        return EXIT_UNEXPECTED
    print(result)  # noqa: T201 - CLI output
    return EXIT_SUCCESS


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point.

    Returns:
        Process exit code.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(verbose=args.verbose, quiet=args.quiet, json_log=args.json_log)

    try:
        command = args.command
        if command == 'plan':
            return asyncio.run(_cmd_plan(args))
        if command == 'publish':
            return asyncio.run(_cmd_publish(args))
        if command == 'graph':
            return asyncio.run(_cmd_graph(args))
        if command == 'explain':
            return _cmd_explain(args)

        parser.print_help()
        print(f'\n{parser.prog}: error: please provide a command', file=sys.stderr)  # noqa: T201 - CLI output
        return EXIT_UNEXPECTED

    except CratePubError as exc:
        render_error(exc)
        return EXIT_ABORTED
    except KeyboardInterrupt:
        logger.info('interrupted')
        return EXIT_INTERRUPTED


def _main() -> None:
    """Wrapper for the ``cratepub`` console script."""
    sys.exit(main())


__all__ = [
    'build_parser',
    'main',
]
