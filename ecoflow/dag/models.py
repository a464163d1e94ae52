"""Data model for the dependency DAG and its execution results."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Optional


class NodeStatus(str, Enum):
    """Per-run lifecycle of a node."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


class NodePhase(str, Enum):
    """Phase of per-node work in which a failure happened."""

    RECONCILE = "reconcile"
    CLONE = "clone"
    CLEAN = "clean"
    INSTALL = "install"
    BUILD = "build"
    COMMIT = "commit"
    PUSH = "push"
    ACTION = "action"


SKIP_REASON_UPSTREAM = "skipped: upstream failure"
SKIP_REASON_ABORTED = "skipped: fail-fast abort"


@dataclass
class PackageRecord:
    """A scanned package, as produced by the scanner."""

    name: str
    repo_path: Path
    dependencies: list[str] = field(default_factory=list)
    git_remote: Optional[str] = None
    current_branch: Optional[str] = None


@dataclass
class DAGNode:
    """One package plus its dependency edges within the graph.

    Edges point from dependent to dependency. ``level`` is unset until the
    leveler assigns it.
    """

    name: str
    repo_path: Path
    git_ref: str
    required_branch: str
    dependencies: list[str] = field(default_factory=list)
    level: Optional[int] = None


@dataclass
class DependencyDAG:
    """A levelled, acyclic package graph.

    ``levels[0]`` holds nodes with no dependencies; every dependency of a
    node in level k lies in some level < k.
    """

    nodes: dict[str, DAGNode]
    levels: list[list[str]] = field(default_factory=list)
    roots: list[str] = field(default_factory=list)
    leaves: list[str] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.nodes)

    def __contains__(self, name: object) -> bool:
        return name in self.nodes

    def get(self, name: str) -> DAGNode:
        """Return a node by name.

        Raises:
            KeyError: If ``name`` is not in the graph.
        """
        if name not in self.nodes:
            raise KeyError(
                f"Unknown package '{name}'. "
                f"Available: {', '.join(sorted(self.nodes.keys()))}"
            )
        return self.nodes[name]

    def ancestors(self, name: str) -> set[str]:
        """Everything ``name`` depends on, transitively."""
        from ecoflow.dag.builder import get_ancestors

        return get_ancestors(self.nodes, name)

    def descendants(self, name: str) -> set[str]:
        """Everything that depends on ``name``, transitively."""
        from ecoflow.dag.builder import get_descendants

        return get_descendants(self.nodes, name)

    def subgraph(self, root: str) -> DependencyDAG:
        """A new levelled DAG of ``root`` and everything it depends on."""
        from ecoflow.dag.builder import filter_dag_from_root
        from ecoflow.dag.leveler import assign_levels

        return assign_levels(filter_dag_from_root(self.nodes, root))

    def render_ascii(self) -> str:
        """Simple text visualization, one line per node in level order."""
        dependents: dict[str, list[str]] = {name: [] for name in self.nodes}
        for name, node in self.nodes.items():
            for dep in node.dependencies:
                dependents[dep].append(name)

        lines: list[str] = []
        for index, level in enumerate(self.levels):
            lines.append(f"level {index}:")
            for name in level:
                deps = self.nodes[name].dependencies
                if deps:
                    lines.append(f"  {name} <- [{', '.join(deps)}]")
                else:
                    lines.append(f"  {name} (leaf)")
                for dependent in sorted(dependents[name]):
                    lines.append(f"    -> {dependent}")
        return "\n".join(lines)


@dataclass
class NodeOutcome:
    """What a node processor reports back to the executor."""

    success: bool = True
    logs: list[str] = field(default_factory=list)
    error: Optional[str] = None
    phase: Optional[NodePhase] = None


@dataclass
class NodeResult:
    """Result of processing a single node."""

    node: DAGNode
    success: bool
    status: NodeStatus
    error: Optional[str] = None
    phase: Optional[NodePhase] = None
    duration: float = 0.0
    logs: list[str] = field(default_factory=list)

    @property
    def name(self) -> str:
        return self.node.name

    @property
    def skipped(self) -> bool:
        return self.status == NodeStatus.SKIPPED


@dataclass
class DAGResult:
    """Aggregate result of a leveled run.

    ``results`` keeps every node that completed even when the run failed;
    ``failed_nodes`` lists failures (and fail-fast skips) in the order they
    were recorded.
    """

    success: bool
    results: dict[str, NodeResult] = field(default_factory=dict)
    failed_nodes: list[str] = field(default_factory=list)
    total_duration: float = 0.0

    @property
    def succeeded_nodes(self) -> list[str]:
        return [name for name, r in self.results.items() if r.success]

    @property
    def skipped_nodes(self) -> list[str]:
        return [name for name, r in self.results.items() if r.skipped]


NodeStartCallback = Callable[[DAGNode], None]
NodeCompleteCallback = Callable[[NodeResult], None]


@dataclass
class DAGExecutionOptions:
    """Options for the leveled executor.

    ``concurrency`` of None means every node of a level may run at once.
    """

    concurrency: Optional[int] = None
    fail_fast: bool = True
    on_node_start: Optional[NodeStartCallback] = None
    on_node_complete: Optional[NodeCompleteCallback] = None

    def __post_init__(self) -> None:
        if self.concurrency is not None and self.concurrency < 1:
            raise ValueError(
                f"concurrency must be a positive integer or None, got {self.concurrency}"
            )


class NodePhaseError(RuntimeError):
    """A node failed during a specific phase of its work."""

    def __init__(self, phase: NodePhase, message: str, node: Optional[str] = None):
        super().__init__(message)
        self.phase = phase
        self.node = node
