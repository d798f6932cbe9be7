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

"""Shared test fakes for cratepub.

In-memory implementations of the :class:`RegistryClient` and
:class:`WorkspaceSource` protocols so test modules don't have to repeat
boilerplate classes.

Usage::

    from tests._fakes import FakeRegistry, FakeWorkspace, make_record

    registry = FakeRegistry({'core': ['1.0.0']}, propagation_polls=2)
    workspace = FakeWorkspace([make_record('core'), make_record('cli', deps=['core'])])
"""

from tests._fakes._registry import FakeRegistry as FakeRegistry
from tests._fakes._workspace import FakeWorkspace as FakeWorkspace, make_record as make_record

__all__ = [
    'FakeRegistry',
    'FakeWorkspace',
    'make_record',
]
