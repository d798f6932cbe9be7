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

"""Tests for cratepub.semver."""

from __future__ import annotations

import pytest
from cratepub.errors import E, CratePubError
from cratepub.semver import Version, max_version


class TestParse:
    """Tests for Version.parse."""

    def test_release(self) -> None:
        """Plain MAJOR.MINOR.PATCH."""
        v = Version.parse('1.2.3')
        assert (v.major, v.minor, v.patch) == (1, 2, 3)
        assert not v.is_prerelease

    def test_prerelease_and_build(self) -> None:
        """Pre-release and build parts are split on dots."""
        v = Version.parse('1.0.0-rc.1+build.5')
        assert v.prerelease == ('rc', '1')
        assert v.build == ('build', '5')
        assert str(v) == '1.0.0-rc.1+build.5'

    @pytest.mark.parametrize('text', ['1.0', '01.0.0', '1.0.0-', 'v1.0.0', '', '1.0.0+'])
    def test_invalid(self, text: str) -> None:
        """Malformed versions raise VERSION_INVALID."""
        with pytest.raises(CratePubError) as exc_info:
            Version.parse(text)
        assert exc_info.value.code is E.VERSION_INVALID


class TestPrecedence:
    """Tests for version ordering."""

    def test_numeric_not_lexical(self) -> None:
        """1.10.0 is newer than 1.9.0."""
        assert Version.parse('1.10.0') > Version.parse('1.9.0')

    def test_prerelease_before_release(self) -> None:
        """A pre-release sorts before its release."""
        assert Version.parse('1.0.0-rc.1') < Version.parse('1.0.0')

    def test_prerelease_identifiers(self) -> None:
        """Numeric identifiers compare numerically and before alphanumerics."""
        assert Version.parse('1.0.0-alpha.2') < Version.parse('1.0.0-alpha.10')
        assert Version.parse('1.0.0-alpha.1') < Version.parse('1.0.0-alpha.beta')

    def test_build_metadata_ignored(self) -> None:
        """Build metadata does not affect equality or hashing."""
        a, b = Version.parse('1.0.0+a'), Version.parse('1.0.0+b')
        assert a == b
        assert hash(a) == hash(b)


class TestNext:
    """Tests for next_patch/next_minor/next_major."""

    def test_release_bumps(self) -> None:
        """Bumps of a release increment the component and reset the rest."""
        v = Version.parse('1.2.3')
        assert str(v.next_patch()) == '1.2.4'
        assert str(v.next_minor()) == '1.3.0'
        assert str(v.next_major()) == '2.0.0'

    def test_prerelease_patch_releases_core(self) -> None:
        """A patch bump of a pre-release yields the release of its core."""
        assert str(Version.parse('1.0.0-rc.1').next_patch()) == '1.0.0'

    def test_prerelease_minor(self) -> None:
        """1.2.0-rc.1 minor → 1.2.0; 1.2.3-rc.1 minor → 1.3.0."""
        assert str(Version.parse('1.2.0-rc.1').next_minor()) == '1.2.0'
        assert str(Version.parse('1.2.3-rc.1').next_minor()) == '1.3.0'

    def test_bump_is_strictly_greater(self) -> None:
        """Every bump moves forward."""
        for text in ['0.0.0', '0.1.0-alpha', '2.0.0-rc.3', '3.4.5']:
            v = Version.parse(text)
            assert v.next_patch() > v
            assert v.next_minor() > v
            assert v.next_major() > v


class TestMaxVersion:
    """Tests for max_version()."""

    def test_picks_highest(self) -> None:
        """Highest by precedence, not by list position."""
        assert max_version(['0.9.0', '1.0.0', '1.0.0-rc.1', '0.10.0']) == '1.0.0'

    def test_skips_unparsable(self) -> None:
        """Legacy junk entries are ignored."""
        assert max_version(['0.1', 'garbage', '0.2.0']) == '0.2.0'

    def test_empty(self) -> None:
        """Nothing parsable yields None."""
        assert max_version([]) is None
        assert max_version(['x']) is None
