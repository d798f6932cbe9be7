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

"""Dependency graph operations for workspace crates.

Builds a directed acyclic graph from :class:`CrateRecord` objects,
detects cycles, computes dependency closures, and produces
deterministic topological orders and levels for publication.

Key Concepts (ELI5)::

    ┌─────────────────────────┬─────────────────────────────────────────────┐
    │ Concept                 │ ELI5 Explanation                            │
    ├─────────────────────────┼─────────────────────────────────────────────┤
    │ Descendants             │ Everything a crate needs, transitively.     │
    │                         │ You must publish these first (or they must │
    │                         │ already be on the registry).               │
    ├─────────────────────────┼─────────────────────────────────────────────┤
    │ Ancestors               │ Everything that needs a crate, transitively.│
    │                         │ Republishing a crate may mean republishing │
    │                         │ these so they pick up the new version.     │
    ├─────────────────────────┼─────────────────────────────────────────────┤
    │ Topological order       │ An order where every crate comes after its  │
    │                         │ dependencies. Ties keep the caller's order  │
    │                         │ so the same input always gives the same     │
    │                         │ plan.                                       │
    ├─────────────────────────┼─────────────────────────────────────────────┤
    │ Levels                  │ Groups with no edges between them. Level 0  │
    │                         │ has no dependencies inside the selection.   │
    └─────────────────────────┴─────────────────────────────────────────────┘

Architecture — Edge Direction::

    Forward edges (``edges``): dependent → dependency (who needs what)
    Reverse edges (``reverse_edges``): dependency → dependent (who uses me)

    my-cli ──→ my-core ←── my-utils

    edges["my-cli"] = ["my-core"]
    reverse_edges["my-core"] = ["my-cli", "my-utils"]

Crates are graph nodes by name; there are no node objects. All functions
here are pure.
"""

from __future__ import annotations

import heapq
from collections import deque
from collections.abc import Collection, Iterable
from dataclasses import dataclass, field
from enum import Enum

from cratepub.backends.workspace import CrateRecord
from cratepub.errors import E, CratePubError, CycleDetected, UnknownCrate
from cratepub.logging import get_logger

logger = get_logger(__name__)


class Direction(Enum):
    """Which edges a closure follows."""

    DESCENDANTS = 'descendants'
    """Dependencies of the seeds, transitively."""

    ANCESTORS = 'ancestors'
    """Dependents of the seeds, transitively."""


@dataclass
class DependencyGraph:
    """A directed graph of intra-workspace crate dependencies.

    Attributes:
        records: Mapping from crate name to its :class:`CrateRecord`.
        names: Every crate name, in workspace order.
        edges: Forward adjacency (dependent → dependencies), manifest order.
        reverse_edges: Reverse adjacency (dependency → dependents),
            workspace order.
    """

    records: dict[str, CrateRecord] = field(default_factory=dict)
    names: list[str] = field(default_factory=list)
    edges: dict[str, list[str]] = field(default_factory=dict)
    reverse_edges: dict[str, list[str]] = field(default_factory=dict)

    def __contains__(self, name: object) -> bool:
        """Whether ``name`` is a node of the graph."""
        return name in self.edges

    def __len__(self) -> int:
        """Return the number of crates in the graph."""
        return len(self.names)


def build_graph(records: Iterable[CrateRecord]) -> DependencyGraph:
    """Build the dependency graph for ``records``.

    Raises:
        CratePubError: If a record depends on a name not among ``records``.
        CycleDetected: If the edges contain a cycle. Carries the first
            cycle found.
    """
    records = list(records)
    graph = DependencyGraph()
    for record in records:
        graph.records[record.name] = record
        graph.names.append(record.name)
        graph.edges[record.name] = []
        graph.reverse_edges[record.name] = []

    for record in records:
        for dep in record.deps:
            if dep not in graph.edges:
                raise CratePubError(
                    code=E.WORKSPACE_INVALID_EDGE,
                    message=f'Crate {record.name!r} depends on unknown crate {dep!r}',
                )
            if dep not in graph.edges[record.name]:
                graph.edges[record.name].append(dep)
                graph.reverse_edges[dep].append(record.name)

    cycles = detect_cycles(graph)
    if cycles:
        raise CycleDetected(cycles[0])

    logger.debug(
        'built_dependency_graph',
        crates=len(graph),
        edges=sum(len(deps) for deps in graph.edges.values()),
    )
    return graph


def detect_cycles(graph: DependencyGraph) -> list[list[str]]:
    """Find cycles with an iterative DFS.

    Every back edge found yields one cycle, written as the path with its
    first crate repeated at the end (``['a', 'b', 'a']``). Iterative so
    deep dependency chains don't hit the recursion limit.

    Returns:
        Cycle paths, empty when the graph is acyclic.
    """
    white, gray, black = 0, 1, 2
    color = dict.fromkeys(graph.names, white)
    cycles: list[list[str]] = []

    for start in graph.names:
        if color[start] != white:
            continue
        path: list[str] = [start]
        color[start] = gray
        stack = [iter(graph.edges[start])]
        while stack:
            node = path[-1]
            neighbor = next(stack[-1], None)
            if neighbor is None:
                color[node] = black
                path.pop()
                stack.pop()
                continue
            if color[neighbor] == gray:
                cycles.append([*path[path.index(neighbor) :], neighbor])
            elif color[neighbor] == white:
                color[neighbor] = gray
                path.append(neighbor)
                stack.append(iter(graph.edges[neighbor]))

    if cycles:
        logger.warning('cycles_detected', count=len(cycles))
    return cycles


def closure(
    graph: DependencyGraph,
    seeds: Iterable[str],
    direction: Direction = Direction.DESCENDANTS,
) -> list[str]:
    """The smallest set containing ``seeds`` and closed under ``direction``.

    Returns:
        Names in discovery order: the seeds first (deduplicated, in the
        order given), then breadth-first.

    Raises:
        UnknownCrate: If a seed is not in the graph.
    """
    edge_map = graph.edges if direction is Direction.DESCENDANTS else graph.reverse_edges
    seen: set[str] = set()
    order: list[str] = []
    for seed in seeds:
        if seed not in edge_map:
            raise UnknownCrate(seed, edge_map)
        if seed not in seen:
            seen.add(seed)
            order.append(seed)

    queue: deque[str] = deque(order)
    while queue:
        for neighbor in edge_map[queue.popleft()]:
            if neighbor not in seen:
                seen.add(neighbor)
                order.append(neighbor)
                queue.append(neighbor)
    return order


def publish_closure(
    graph: DependencyGraph,
    seeds: Iterable[str],
    *,
    include_dependents: bool = False,
    skip: Collection[str] = (),
) -> list[str]:
    """Every crate that has to be considered to publish ``seeds``.

    That is the seeds plus their descendants. With ``include_dependents``
    it also takes in the seeds' ancestors, and those ancestors'
    descendants, so a republished dependent never points at a dependency
    nobody looked at. Ancestors named in ``skip`` are left out; ``skip``
    should be closed under ancestors itself.
    """
    seeds = list(seeds)
    selected = closure(graph, seeds, Direction.DESCENDANTS)
    if include_dependents:
        ancestors = [a for a in closure(graph, seeds, Direction.ANCESTORS) if a not in skip]
        seen = set(selected)
        for name in closure(graph, ancestors, Direction.DESCENDANTS):
            if name not in seen:
                seen.add(name)
                selected.append(name)
    return selected


def topo_order(graph: DependencyGraph, names: Iterable[str]) -> list[str]:
    """Kahn's algorithm restricted to ``names``.

    Among crates that are ready at the same time, the one appearing
    first in ``names`` goes first.

    Raises:
        CycleDetected: If ``names`` contain a cycle.
    """
    names = list(dict.fromkeys(names))
    rank = {name: i for i, name in enumerate(names)}
    in_degree = {name: sum(1 for dep in graph.edges[name] if dep in rank) for name in names}

    ready = [rank[name] for name in names if in_degree[name] == 0]
    heapq.heapify(ready)
    order: list[str] = []
    while ready:
        name = names[heapq.heappop(ready)]
        order.append(name)
        for dependent in graph.reverse_edges[name]:
            if dependent in rank:
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    heapq.heappush(ready, rank[dependent])

    if len(order) != len(names):
        done = set(order)
        remaining = [n for n in names if n not in done]
        sub = DependencyGraph(
            names=remaining,
            edges={n: [d for d in graph.edges[n] if d in remaining] for n in remaining},
            reverse_edges={n: [] for n in remaining},
        )
        cycles = detect_cycles(sub)
        raise CycleDetected(cycles[0] if cycles else remaining)
    return order


def topo_levels(graph: DependencyGraph, names: Iterable[str]) -> list[list[str]]:
    """Group ``names`` into publish levels.

    Level 0 holds crates with no dependency inside ``names``; level
    ``n`` holds crates whose deepest in-selection dependency is at level
    ``n - 1``. Each level keeps topological order.
    """
    order = topo_order(graph, names)
    selected = set(order)
    level: dict[str, int] = {}
    for name in order:
        deps = [level[d] for d in graph.edges[name] if d in selected]
        level[name] = max(deps) + 1 if deps else 0

    levels: list[list[str]] = [[] for _ in range(max(level.values(), default=-1) + 1)]
    for name in order:
        levels[level[name]].append(name)
    return levels


__all__ = [
    'DependencyGraph',
    'Direction',
    'build_graph',
    'closure',
    'detect_cycles',
    'publish_closure',
    'topo_levels',
    'topo_order',
]
