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

"""Semantic version parsing and precedence for crate versions.

Cargo versions follow `SemVer 2.0 <https://semver.org/>`_::

    MAJOR.MINOR.PATCH[-PRERELEASE][+BUILD]

Precedence ignores build metadata. A pre-release sorts before the release
with the same core (``1.0.0-rc.1 < 1.0.0``); numeric pre-release
identifiers compare numerically and sort before alphanumeric ones.

The ``next_*`` helpers return the smallest version of the requested
category that is strictly greater than ``self``. For a pre-release that
may be the release of the same core: ``1.0.0-rc.1`` → patch → ``1.0.0``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from cratepub.errors import E, CratePubError

_SEMVER_RE = re.compile(
    r'^(?P<major>0|[1-9]\d*)\.(?P<minor>0|[1-9]\d*)\.(?P<patch>0|[1-9]\d*)'
    r'(?:-(?P<pre>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?'
    r'(?:\+(?P<build>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?$'
)


@dataclass(frozen=True, eq=False)
class Version:
    """A parsed semantic version.

    Equality and ordering follow semver precedence, so build metadata is
    ignored: ``Version.parse('1.0.0+a') == Version.parse('1.0.0+b')``.
    """

    major: int
    minor: int
    patch: int
    prerelease: tuple[str, ...] = ()
    build: tuple[str, ...] = ()

    @classmethod
    def parse(cls, text: str) -> Version:
        """Parse a version string.

        Raises:
            CratePubError: If ``text`` is not a valid semver string.
        """
        m = _SEMVER_RE.match(text.strip())
        if m is None:
            raise CratePubError(
                code=E.VERSION_INVALID,
                message=f'Version {text!r} is not a valid semantic version',
                hint='Use MAJOR.MINOR.PATCH with optional -PRERELEASE and +BUILD parts.',
            )
        pre = m.group('pre')
        build = m.group('build')
        return cls(
            major=int(m.group('major')),
            minor=int(m.group('minor')),
            patch=int(m.group('patch')),
            prerelease=tuple(pre.split('.')) if pre else (),
            build=tuple(build.split('.')) if build else (),
        )

    @property
    def is_prerelease(self) -> bool:
        """Whether this version carries a pre-release tag."""
        return bool(self.prerelease)

    def _key(self) -> tuple[int, int, int, int, tuple[tuple[int, int | str], ...]]:
        pre_key = tuple((0, int(part)) if part.isdigit() else (1, part) for part in self.prerelease)
        # A release outranks any pre-release of the same core.
        return (self.major, self.minor, self.patch, 0 if self.prerelease else 1, pre_key)

    def __eq__(self, other: object) -> bool:
        """Compare by semver precedence."""
        if not isinstance(other, Version):
            return NotImplemented
        return self._key() == other._key()

    def __hash__(self) -> int:
        """Hash consistent with precedence equality."""
        return hash(self._key())

    def __lt__(self, other: Version) -> bool:
        """Order by semver precedence."""
        return self._key() < other._key()

    def __le__(self, other: Version) -> bool:
        """Order by semver precedence."""
        return self._key() <= other._key()

    def __gt__(self, other: Version) -> bool:
        """Order by semver precedence."""
        return self._key() > other._key()

    def __ge__(self, other: Version) -> bool:
        """Order by semver precedence."""
        return self._key() >= other._key()

    def __str__(self) -> str:
        """Render back to the canonical string form."""
        text = f'{self.major}.{self.minor}.{self.patch}'
        if self.prerelease:
            text += '-' + '.'.join(self.prerelease)
        if self.build:
            text += '+' + '.'.join(self.build)
        return text

    def next_patch(self) -> Version:
        """Smallest patch-level version greater than this one."""
        if self.prerelease:
            return Version(self.major, self.minor, self.patch)
        return Version(self.major, self.minor, self.patch + 1)

    def next_minor(self) -> Version:
        """Smallest minor-level version greater than this one."""
        if self.prerelease and self.patch == 0:
            return Version(self.major, self.minor, 0)
        return Version(self.major, self.minor + 1, 0)

    def next_major(self) -> Version:
        """Smallest major-level version greater than this one."""
        if self.prerelease and self.minor == 0 and self.patch == 0:
            return Version(self.major, 0, 0)
        return Version(self.major + 1, 0, 0)


def max_version(versions: list[str]) -> str | None:
    """Return the highest version string by semver precedence.

    Unparsable strings are ignored (registries occasionally list legacy
    versions that predate strict semver). Returns ``None`` when nothing
    parses.
    """
    best: tuple[Version, str] | None = None
    for text in versions:
        try:
            parsed = Version.parse(text)
        except CratePubError:
            continue
        if best is None or parsed > best[0]:
            best = (parsed, text)
    return best[1] if best else None


__all__ = [
    'Version',
    'max_version',
]
