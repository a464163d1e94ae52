"""Dependency graph construction and traversal queries.

Builds ``DAGNode``s from scanned package records and answers the
relationship questions used for impact analysis ("what does X need",
"what needs X"). All queries are side-effect free and total: an unknown
name yields an empty result instead of an error.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping

from ecoflow.dag.models import DAGNode, PackageRecord
from ecoflow.git_ref import default_git_ref, required_branch_for
from ecoflow.settings import DEFAULT_BRANCH, DEFAULT_HOST, DEFAULT_OWNER

logger = logging.getLogger(__name__)


def build_dag_nodes(
    packages: Mapping[str, PackageRecord],
    *,
    owner: str = DEFAULT_OWNER,
    host: str = DEFAULT_HOST,
    default_branch: str = DEFAULT_BRANCH,
) -> dict[str, DAGNode]:
    """Build one DAGNode per package record.

    Dependencies on names outside ``packages`` are dropped (assumed to be
    satisfied externally, e.g. already published), so the resulting node
    set is closed over itself.

    Args:
        packages: Mapping of package name to scanned record.
        owner: Owner used to synthesize a ref for records without a remote.
        host: Host used to synthesize a ref for records without a remote.
        default_branch: Branch used when a ref carries no branch segment.

    Returns:
        Dict mapping package name to DAGNode (``level`` unset).
    """
    nodes: dict[str, DAGNode] = {}

    for name, record in packages.items():
        deps: list[str] = []
        for dep in record.dependencies:
            if dep in packages and dep not in deps:
                deps.append(dep)
            elif dep not in packages:
                logger.debug(f"{name}: dropping external dependency '{dep}'")

        git_ref = record.git_remote or default_git_ref(
            name, owner=owner, host=host, branch=default_branch
        )

        nodes[name] = DAGNode(
            name=name,
            repo_path=record.repo_path,
            git_ref=git_ref,
            required_branch=required_branch_for(git_ref, default=default_branch),
            dependencies=deps,
        )

    return nodes


def filter_dag_from_root(nodes: Mapping[str, DAGNode], root: str) -> dict[str, DAGNode]:
    """Return the subgraph reachable from ``root`` over dependency edges.

    The root itself is included. A missing root yields an empty dict.
    """
    filtered: dict[str, DAGNode] = {}
    stack = [root]

    while stack:
        name = stack.pop()
        if name in filtered:
            continue
        node = nodes.get(name)
        if node is None:
            continue
        filtered[name] = node
        stack.extend(dep for dep in node.dependencies if dep not in filtered)

    return filtered


def get_ancestors(nodes: Mapping[str, DAGNode], name: str) -> set[str]:
    """Transitive dependencies of ``name`` (what it needs), excluding itself."""
    return _closure(name, {n: node.dependencies for n, node in nodes.items()})


def get_descendants(nodes: Mapping[str, DAGNode], name: str) -> set[str]:
    """Transitive dependents of ``name`` (what needs it), excluding itself."""
    return _closure(name, reverse_adjacency(nodes))


def reverse_adjacency(nodes: Mapping[str, DAGNode]) -> dict[str, list[str]]:
    """Map each node name to the names that depend on it directly."""
    dependents: dict[str, list[str]] = {n: [] for n in nodes}
    for n, node in nodes.items():
        for dep in node.dependencies:
            if dep in dependents:
                dependents[dep].append(n)
    return dependents


def get_roots(nodes: Mapping[str, DAGNode]) -> list[str]:
    """Names nothing else depends on, sorted."""
    dependents = reverse_adjacency(nodes)
    return sorted(n for n, users in dependents.items() if not users)


def get_leaves(nodes: Mapping[str, DAGNode]) -> list[str]:
    """Names with no dependencies, sorted."""
    return sorted(n for n, node in nodes.items() if not node.dependencies)


def _closure(start: str, adjacency: Mapping[str, list[str]]) -> set[str]:
    """Depth-first reachability from ``start``, excluding ``start``."""
    visited: set[str] = set()
    stack = list(adjacency.get(start, []))

    while stack:
        current = stack.pop()
        if current in visited or current not in adjacency:
            continue
        visited.add(current)
        stack.extend(adjacency[current])

    visited.discard(start)
    return visited
