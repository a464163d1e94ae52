"""Topological stratification of the dependency graph.

Levels are computed by Kahn-style elimination: level 0 holds every node
with no dependencies; each later level holds the nodes whose dependencies
were all placed in earlier levels. Nodes within a level are mutually
independent and are listed in name order so repeated builds are identical.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import replace

from ecoflow.dag.builder import build_dag_nodes, get_leaves, get_roots
from ecoflow.dag.models import DAGNode, DependencyDAG, PackageRecord
from ecoflow.settings import DEFAULT_BRANCH, DEFAULT_HOST, DEFAULT_OWNER

logger = logging.getLogger(__name__)


class CycleDetectedError(ValueError):
    """The dependency graph contains a cycle and cannot be levelled."""

    def __init__(self, cycle: list[str], remaining: list[str]):
        self.cycle = cycle
        self.remaining = remaining
        path = " -> ".join(cycle) if cycle else ", ".join(remaining)
        super().__init__(f"Circular dependency detected: {path}")


def compute_levels(nodes: Mapping[str, DAGNode]) -> list[list[str]]:
    """Stratify ``nodes`` into dependency levels.

    Args:
        nodes: Closed node set (every dependency is a key of ``nodes``).

    Returns:
        List of levels, each a sorted list of node names.

    Raises:
        CycleDetectedError: If some nodes can never have all dependencies
            satisfied.
    """
    pending: dict[str, int] = {}
    dependents: dict[str, list[str]] = {name: [] for name in nodes}

    for name, node in nodes.items():
        deps = [dep for dep in node.dependencies if dep in nodes]
        pending[name] = len(deps)
        for dep in deps:
            dependents[dep].append(name)

    levels: list[list[str]] = []
    frontier = sorted(name for name, count in pending.items() if count == 0)
    placed = 0

    while frontier:
        levels.append(frontier)
        placed += len(frontier)
        next_frontier: list[str] = []
        for name in frontier:
            for dependent in dependents[name]:
                pending[dependent] -= 1
                if pending[dependent] == 0:
                    next_frontier.append(dependent)
        frontier = sorted(next_frontier)

    if placed != len(nodes):
        placed_names = {name for level in levels for name in level}
        remaining = sorted(name for name in nodes if name not in placed_names)
        cycle = find_cycle({name: nodes[name] for name in remaining})
        logger.error(f"Cycle among {len(remaining)} package(s): {' -> '.join(cycle)}")
        raise CycleDetectedError(cycle, remaining)

    return levels


def assign_levels(nodes: Mapping[str, DAGNode]) -> DependencyDAG:
    """Level a node set and wrap it in a DependencyDAG.

    The input nodes are not mutated; the returned DAG holds copies with
    ``level`` set.

    Raises:
        CycleDetectedError: If the node set is cyclic.
    """
    levels = compute_levels(nodes)

    levelled: dict[str, DAGNode] = {}
    for index, level in enumerate(levels):
        for name in level:
            levelled[name] = replace(
                nodes[name],
                dependencies=[dep for dep in nodes[name].dependencies if dep in nodes],
                level=index,
            )

    return DependencyDAG(
        nodes=levelled,
        levels=levels,
        roots=get_roots(levelled),
        leaves=get_leaves(levelled),
    )


def build_dag(
    packages: Mapping[str, PackageRecord],
    *,
    owner: str = DEFAULT_OWNER,
    host: str = DEFAULT_HOST,
    default_branch: str = DEFAULT_BRANCH,
) -> DependencyDAG:
    """Build and level a DAG from scanned package records.

    Raises:
        CycleDetectedError: If the declared dependencies are cyclic.
    """
    nodes = build_dag_nodes(
        packages, owner=owner, host=host, default_branch=default_branch
    )
    dag = assign_levels(nodes)
    logger.debug(f"Built DAG: {len(dag.nodes)} node(s) in {len(dag.levels)} level(s)")
    return dag


def find_cycle(nodes: Mapping[str, DAGNode]) -> list[str]:
    """Detect a dependency cycle via DFS. Returns the cycle path or []."""
    WHITE, GRAY, BLACK = 0, 1, 2
    color: dict[str, int] = {name: WHITE for name in nodes}
    parent: dict[str, str | None] = {name: None for name in nodes}

    def dfs(node: str) -> list[str]:
        color[node] = GRAY
        for dep in nodes[node].dependencies:
            if dep not in nodes:
                continue
            if color[dep] == GRAY:
                cycle = [dep, node]
                cur = node
                while parent[cur] is not None and cur != dep:
                    cur = parent[cur]  # type: ignore[assignment]
                    cycle.append(cur)
                    if cur == dep:
                        break
                cycle.reverse()
                return cycle
            if color[dep] == WHITE:
                parent[dep] = node
                result = dfs(dep)
                if result:
                    return result
        color[node] = BLACK
        return []

    for name in sorted(nodes):
        if color[name] == WHITE:
            result = dfs(name)
            if result:
                return result
    return []
