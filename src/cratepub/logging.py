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

"""Structured logging for cratepub.

Every module logs through `structlog <https://www.structlog.org/>`_
with snake_case event names and key/value context::

    log = get_logger(__name__)
    log.info('crate_published', crate='my-core', version='1.0.1')

Events go to stderr, rendered for a console (colored on a TTY) or as JSON
lines with ``--json-log``. stdout is left to the plan and the run report,
so ``cratepub plan --format json | jq`` works.

Registry tokens never reach the log: cargo echoes them in some error
messages, and ``CARGO_REGISTRY_TOKEN`` may appear in captured
environments. :func:`redact_tokens` masks them in every event.
"""

from __future__ import annotations

import logging
import re
import sys
from collections.abc import MutableMapping
from typing import Any

import structlog

# crates.io API tokens: ``cio`` followed by 32 alphanumerics.
_TOKEN_RE = re.compile(r'\bcio[A-Za-z0-9]{32}\b')

# Event keys whose values are always masked.
_SECRET_KEYS = frozenset({'token', 'authorization', 'cargo_registry_token'})

# Libraries that log every request at INFO.
_CHATTY_LOGGERS = ('httpx', 'httpcore')

REDACTED = '[redacted]'


def redact_tokens(
    logger: Any,  # noqa: ANN401 - structlog processor signature
    method_name: str,
    event_dict: MutableMapping[str, Any],
) -> MutableMapping[str, Any]:
    """structlog processor masking registry tokens in event values."""
    for key, value in event_dict.items():
        if key.lower() in _SECRET_KEYS:
            event_dict[key] = REDACTED
        elif isinstance(value, str) and 'cio' in value:
            event_dict[key] = _TOKEN_RE.sub(REDACTED, value)
    return event_dict


def _level(*, verbose: bool, quiet: bool) -> int:
    if quiet:
        return logging.WARNING
    return logging.DEBUG if verbose else logging.INFO


def configure_logging(
    *,
    verbose: bool = False,
    quiet: bool = False,
    json_log: bool = False,
) -> None:
    """Configure structlog and the stdlib root logger.

    Call once at startup; calling again replaces the configuration.

    Args:
        verbose: Debug-level output, including HTTP request lines.
        quiet: Only warnings and errors. Wins over ``verbose``.
        json_log: One JSON object per line instead of console output.
    """
    level = _level(verbose=verbose, quiet=quiet)
    logging.basicConfig(format='%(message)s', stream=sys.stderr, level=level, force=True)
    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(level if verbose else max(level, logging.WARNING))

    renderer: structlog.types.Processor
    if json_log:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt='iso'),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.UnicodeDecoder(),
            redact_tokens,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
    )
    for handler in logging.root.handlers:
        handler.setFormatter(formatter)


def get_logger(name: str = 'cratepub') -> structlog.stdlib.BoundLogger:
    """Return a structlog logger named ``name``."""
    return structlog.get_logger(name)


__all__ = [
    'REDACTED',
    'configure_logging',
    'get_logger',
    'redact_tokens',
]
