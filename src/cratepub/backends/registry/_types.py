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

"""Shared types for the registry subpackage."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from cratepub.errors import E, CratePubError, ErrorCode

__all__ = [
    'PackageArtifact',
    'PublishError',
    'PublishErrorKind',
    'RegistryError',
]


class PublishErrorKind(str, Enum):
    """Why a publish submission failed."""

    VERSION_EXISTS = 'version_exists'
    AUTH = 'auth'
    VALIDATION = 'validation'
    RATE_LIMITED = 'rate_limited'
    TRANSIENT = 'transient'
    TIMEOUT = 'timeout'
    UNKNOWN = 'unknown'


_KIND_CODES: dict[PublishErrorKind, ErrorCode] = {
    PublishErrorKind.VERSION_EXISTS: E.PUBLISH_ALREADY_EXISTS,
    PublishErrorKind.AUTH: E.PUBLISH_AUTH_REJECTED,
    PublishErrorKind.TIMEOUT: E.PUBLISH_TIMEOUT,
}

# Kinds worth another attempt. UNKNOWN is retried because a failed
# `cargo publish` exit means nothing was uploaded.
_RETRYABLE_KINDS = frozenset({
    PublishErrorKind.RATE_LIMITED,
    PublishErrorKind.TRANSIENT,
    PublishErrorKind.TIMEOUT,
    PublishErrorKind.UNKNOWN,
})


@dataclass(frozen=True)
class PackageArtifact:
    """What gets handed to :meth:`RegistryClient.publish`.

    Cargo publishes from source, so the artifact is the crate directory
    plus the fingerprint of its contents at submission time. ``verify``
    off skips cargo's build of the packaged crate (``--no-verify``).
    """

    name: str
    version: str
    path: Path
    manifest_path: Path
    fingerprint: str = ''
    verify: bool = True


class PublishError(CratePubError):
    """A publish submission failed.

    Attributes:
        kind: Failure classification.
        retryable: Whether the scheduler may try the same version again.
    """

    def __init__(
        self,
        kind: PublishErrorKind,
        message: str,
        *,
        retryable: bool | None = None,
        hint: str = '',
    ) -> None:
        """Initialize; ``retryable`` defaults from ``kind``."""
        self.kind = kind
        self.retryable = kind in _RETRYABLE_KINDS if retryable is None else retryable
        super().__init__(_KIND_CODES.get(kind, E.PUBLISH_FAILED), message, hint=hint)


class RegistryError(CratePubError):
    """A registry read failed.

    Attributes:
        retryable: ``False`` when repeating the lookup cannot help
            (malformed response, rejected request).
    """

    def __init__(
        self,
        message: str,
        *,
        retryable: bool = True,
        code: ErrorCode = E.REGISTRY_LOOKUP_FAILED,
        hint: str = '',
    ) -> None:
        """Initialize with a message and retryability."""
        self.retryable = retryable
        super().__init__(code, message, hint=hint)
