"""Dependency DAG: builder, leveler, query layer and leveled executor."""

from __future__ import annotations

from ecoflow.dag.builder import (
    build_dag_nodes,
    filter_dag_from_root,
    get_ancestors,
    get_descendants,
    get_leaves,
    get_roots,
)
from ecoflow.dag.executor import NodeProcessor, execute_dag
from ecoflow.dag.leveler import (
    CycleDetectedError,
    assign_levels,
    build_dag,
    compute_levels,
)
from ecoflow.dag.models import (
    DAGExecutionOptions,
    DAGNode,
    DAGResult,
    DependencyDAG,
    NodeOutcome,
    NodePhase,
    NodePhaseError,
    NodeResult,
    NodeStatus,
    PackageRecord,
)

__all__ = [
    "CycleDetectedError",
    "DAGExecutionOptions",
    "DAGNode",
    "DAGResult",
    "DependencyDAG",
    "NodeOutcome",
    "NodePhase",
    "NodePhaseError",
    "NodeProcessor",
    "NodeResult",
    "NodeStatus",
    "PackageRecord",
    "assign_levels",
    "build_dag",
    "build_dag_nodes",
    "compute_levels",
    "execute_dag",
    "filter_dag_from_root",
    "get_ancestors",
    "get_descendants",
    "get_leaves",
    "get_roots",
]
