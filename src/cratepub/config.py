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

"""Configuration loading for cratepub.

Settings live in ``cratepub.toml`` at the workspace root, next to the
workspace ``Cargo.toml``. Every key is optional::

    registry_url = "https://crates.io"
    concurrency = 4
    max_attempts = 3
    default_bump = "patch"
    exclude = ["*-example", "xtask"]
    verify_from = "my-cli"
    post_check = true

    [bump_overrides]
    my-core = "minor"

Unknown keys are rejected with a "did you mean" hint. The environment
variable ``CRATEPUB_REGISTRY`` overrides ``registry_name``; CLI flags
override both via :meth:`PublishConfig.with_overrides`.
"""

from __future__ import annotations

import dataclasses
import difflib
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import tomlkit
import tomlkit.exceptions

from cratepub.errors import E, CratePubError
from cratepub.ledger import LEDGER_FILENAME
from cratepub.logging import get_logger
from cratepub.scheduler import SchedulerConfig
from cratepub.versioning import BumpPolicy

logger = get_logger(__name__)

CONFIG_FILENAME = 'cratepub.toml'
REGISTRY_ENV_VAR = 'CRATEPUB_REGISTRY'

ALLOWED_BUMPS: frozenset[str] = frozenset({'patch', 'minor', 'major'})


@dataclass(frozen=True)
class PublishConfig:
    """Validated cratepub settings.

    Attributes:
        registry_url: Registry web API base URL.
        registry_index: Alternative registry index (cargo ``--index``).
        registry_name: Named registry from cargo config (cargo ``--registry``).
        concurrency: Maximum concurrent publishes within a layer.
        max_attempts: Publish submissions per crate, first included.
        retry_base_delay: Seconds before the first retry; doubles.
        retry_max_delay: Retry backoff cap in seconds.
        poll_attempts: Resolvability checks after each publish.
        poll_interval: Seconds between the first checks; doubles.
        poll_max_interval: Poll interval cap in seconds.
        request_timeout: Registry read timeout in seconds.
        publish_timeout: ``cargo publish`` timeout in seconds.
        snapshot_ttl: Seconds a registry snapshot stays valid.
        after_publish_delay: Extra pause after each successful publish.
        default_bump: Bump category for changed crates.
        bump_overrides: Per-crate bump category.
        exclude: Crate name glob patterns never to publish.
        include_dependents: Also republish dependents of the selection.
        verify_from: Crates ordered before this one are published with
            ``--no-verify``; empty verifies every crate.
        post_check: After a successful run, ``cargo update`` and
            ``cargo check`` every crate the run covered.
        ledger_path: Fingerprint ledger, relative to the workspace root.
        http_pool_size: HTTP connection pool size.
        config_path: The file the settings came from, if any.
    """

    registry_url: str = 'https://crates.io'
    registry_index: str = ''
    registry_name: str = ''
    concurrency: int = 4
    max_attempts: int = 3
    retry_base_delay: float = 2.0
    retry_max_delay: float = 60.0
    poll_attempts: int = 30
    poll_interval: float = 5.0
    poll_max_interval: float = 30.0
    request_timeout: float = 30.0
    publish_timeout: float = 600.0
    snapshot_ttl: float = 60.0
    after_publish_delay: float = 0.0
    default_bump: str = 'patch'
    bump_overrides: dict[str, str] = field(default_factory=dict)
    exclude: list[str] = field(default_factory=list)
    include_dependents: bool = False
    verify_from: str = ''
    post_check: bool = False
    ledger_path: str = LEDGER_FILENAME
    http_pool_size: int = 10
    config_path: Path | None = None

    def __post_init__(self) -> None:
        """Check value ranges and enumerations."""
        for key in ('concurrency', 'max_attempts', 'poll_attempts', 'http_pool_size'):
            if getattr(self, key) < 1:
                raise CratePubError(
                    code=E.CONFIG_INVALID_VALUE,
                    message=f"'{key}' must be at least 1, got {getattr(self, key)}",
                )
        for key in ('retry_base_delay', 'retry_max_delay', 'poll_interval', 'poll_max_interval', 'after_publish_delay'):
            if getattr(self, key) < 0:
                raise CratePubError(
                    code=E.CONFIG_INVALID_VALUE,
                    message=f"'{key}' must not be negative, got {getattr(self, key)}",
                )
        for key in ('request_timeout', 'publish_timeout', 'snapshot_ttl'):
            if getattr(self, key) <= 0:
                raise CratePubError(
                    code=E.CONFIG_INVALID_VALUE,
                    message=f"'{key}' must be positive, got {getattr(self, key)}",
                )
        for crate, bump in [('default_bump', self.default_bump), *self.bump_overrides.items()]:
            if bump not in ALLOWED_BUMPS:
                raise CratePubError(
                    code=E.CONFIG_INVALID_VALUE,
                    message=f"Bump for '{crate}' must be one of {sorted(ALLOWED_BUMPS)}, got '{bump}'",
                    hint="Use 'patch', 'minor' or 'major'.",
                )

    def with_overrides(self, **overrides: Any) -> PublishConfig:  # noqa: ANN401 - CLI values
        """Return a copy with every non-``None`` override applied."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return dataclasses.replace(self, **changes) if changes else self

    def scheduler_config(self) -> SchedulerConfig:
        """Retry, polling and timeout settings for the scheduler."""
        return SchedulerConfig(
            concurrency=self.concurrency,
            max_attempts=self.max_attempts,
            retry_base_delay=self.retry_base_delay,
            retry_max_delay=self.retry_max_delay,
            poll_attempts=self.poll_attempts,
            poll_interval=self.poll_interval,
            poll_max_interval=self.poll_max_interval,
            request_timeout=self.request_timeout,
            publish_timeout=self.publish_timeout,
        )

    def bump_policy(self) -> BumpPolicy:
        """Bump policy built from ``default_bump`` and ``bump_overrides``."""
        return BumpPolicy.from_names(self.default_bump, self.bump_overrides)


# Keys that may appear in cratepub.toml (config_path is internal).
VALID_KEYS: frozenset[str] = frozenset(f.name for f in dataclasses.fields(PublishConfig)) - {'config_path'}

_TYPE_MAP: dict[str, type | tuple[type, ...]] = {
    'registry_url': str,
    'registry_index': str,
    'registry_name': str,
    'concurrency': int,
    'max_attempts': int,
    'retry_base_delay': (int, float),
    'retry_max_delay': (int, float),
    'poll_attempts': int,
    'poll_interval': (int, float),
    'poll_max_interval': (int, float),
    'request_timeout': (int, float),
    'publish_timeout': (int, float),
    'snapshot_ttl': (int, float),
    'after_publish_delay': (int, float),
    'default_bump': str,
    'bump_overrides': dict,
    'exclude': list,
    'include_dependents': bool,
    'verify_from': str,
    'post_check': bool,
    'ledger_path': str,
    'http_pool_size': int,
}


def _validate_value_type(key: str, value: Any) -> None:  # noqa: ANN401 - dynamic config values
    """Raise if a config value has the wrong type."""
    expected = _TYPE_MAP[key]
    # bool is an int subclass; only bool keys accept it.
    wrong_bool = isinstance(value, bool) and expected is not bool
    if wrong_bool or not isinstance(value, expected):
        type_name = expected.__name__ if isinstance(expected, type) else 'a number'
        raise CratePubError(
            code=E.CONFIG_INVALID_VALUE,
            message=f"'{key}' must be {type_name}, got {type(value).__name__}",
            hint=f'Check the value of {key} in {CONFIG_FILENAME}.',
        )


def _validate_string_list(key: str, items: list[Any]) -> None:  # noqa: ANN401 - dynamic config values
    for item in items:
        if not isinstance(item, str):
            raise CratePubError(
                code=E.CONFIG_INVALID_VALUE,
                message=f"'{key}' entries must be strings, got {type(item).__name__}",
                hint=f'Example: {key} = ["*-example", "xtask"]',
            )


def _suggest_key(unknown: str) -> str:
    matches = difflib.get_close_matches(unknown, VALID_KEYS, n=1, cutoff=0.6)
    if matches:
        return f"Did you mean '{matches[0]}'?"
    return f'Valid keys: {", ".join(sorted(VALID_KEYS))}'


def load_config(workspace_root: Path, *, env: dict[str, str] | None = None) -> PublishConfig:
    """Load and validate ``cratepub.toml`` from ``workspace_root``.

    A missing file yields the defaults.

    Args:
        workspace_root: Directory containing ``cratepub.toml``.
        env: Environment to read ``CRATEPUB_REGISTRY`` from; defaults to
            ``os.environ``.

    Raises:
        CratePubError: If the file cannot be parsed or holds an unknown
            key or an invalid value.
    """
    env = os.environ if env is None else env
    config_path = workspace_root / CONFIG_FILENAME
    raw: dict[str, Any] = {}  # noqa: ANN401

    if config_path.is_file():
        try:
            raw = tomlkit.parse(config_path.read_text(encoding='utf-8')).unwrap()
        except OSError as exc:
            raise CratePubError(
                code=E.CONFIG_NOT_FOUND,
                message=f'Failed to read {config_path}: {exc}',
            ) from exc
        except tomlkit.exceptions.TOMLKitError as exc:
            raise CratePubError(
                code=E.CONFIG_INVALID_VALUE,
                message=f'Failed to parse {config_path}: {exc}',
                hint='Fix the TOML syntax error at the reported line.',
            ) from exc
        logger.debug('config_loaded', path=str(config_path), keys=sorted(raw))
    else:
        logger.debug('no_cratepub_config', path=str(config_path))
        config_path = None

    for key, value in raw.items():
        if key not in VALID_KEYS:
            raise CratePubError(
                code=E.CONFIG_INVALID_KEY,
                message=f"Unknown key '{key}' in {CONFIG_FILENAME}",
                hint=_suggest_key(key),
            )
        _validate_value_type(key, value)

    if 'exclude' in raw:
        _validate_string_list('exclude', raw['exclude'])
    if 'bump_overrides' in raw:
        _validate_string_list('bump_overrides', list(raw['bump_overrides'].values()))

    for key, expected in _TYPE_MAP.items():
        if expected == (int, float) and key in raw:
            raw[key] = float(raw[key])

    if env.get(REGISTRY_ENV_VAR):
        raw['registry_name'] = env[REGISTRY_ENV_VAR]

    return PublishConfig(**raw, config_path=config_path)


__all__ = [
    'CONFIG_FILENAME',
    'REGISTRY_ENV_VAR',
    'VALID_KEYS',
    'PublishConfig',
    'load_config',
]
