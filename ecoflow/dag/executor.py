"""Leveled executor: run a per-node action over a DependencyDAG.

Levels run strictly in ascending order with a barrier between them; inside
a level up to ``concurrency`` actions are in flight at once. Per-node
failures never escape the executor: they are captured into ``NodeResult``
and aggregated into the final ``DAGResult``.

Failure policy
- ``fail_fast=True``: after the first failure no new action is dispatched.
  In-flight actions finish normally; nodes that never started (in the
  current level or any later one) are reported as failed with a skip reason.
- ``fail_fast=False``: every node in every level is dispatched exactly once.
  A node whose dependency failed still runs; pruning dependents is left to
  the action itself.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional, Protocol, Union, runtime_checkable

from ecoflow.dag.models import (
    SKIP_REASON_ABORTED,
    SKIP_REASON_UPSTREAM,
    DAGExecutionOptions,
    DAGNode,
    DAGResult,
    DependencyDAG,
    NodeOutcome,
    NodePhase,
    NodePhaseError,
    NodeResult,
    NodeStatus,
)
from ecoflow.logging import new_run_id, node_logger

logger = logging.getLogger(__name__)

ActionReturn = Union[NodeOutcome, bool, None]
NodeAction = Callable[[DAGNode], Awaitable[ActionReturn]]


@runtime_checkable
class NodeProcessor(Protocol):
    """Anything that can process a single DAG node."""

    async def process(self, node: DAGNode) -> ActionReturn:
        """Do the node's work; raise or return a failed outcome on error."""
        ...


def _resolve_action(processor: Union[NodeProcessor, NodeAction]) -> NodeAction:
    if isinstance(processor, NodeProcessor):
        return processor.process
    if callable(processor):
        return processor
    raise TypeError(f"Expected a NodeProcessor or async callable, got {type(processor)!r}")


def _to_outcome(value: ActionReturn) -> NodeOutcome:
    if value is None:
        return NodeOutcome(success=True)
    if isinstance(value, bool):
        return NodeOutcome(success=value, error=None if value else "action reported failure")
    if not isinstance(value, NodeOutcome):
        raise TypeError(
            f"Action must return a NodeOutcome, a bool or None, got {type(value).__name__}"
        )
    return value


class _LeveledRun:
    """State of one executor run. Only this object writes to the results."""

    def __init__(
        self,
        dag: DependencyDAG,
        action: NodeAction,
        options: DAGExecutionOptions,
    ) -> None:
        self.dag = dag
        self.action = action
        self.options = options
        self.results: dict[str, NodeResult] = {}
        self.failed: list[str] = []
        self.aborted = False
        self._semaphore: Optional[asyncio.Semaphore] = (
            asyncio.Semaphore(options.concurrency) if options.concurrency else None
        )
        self._first_start: Optional[float] = None
        self._last_end: Optional[float] = None

    async def run(self) -> DAGResult:
        run_id = new_run_id()
        logger.info(
            f"DAG run {run_id}: {len(self.dag.nodes)} node(s), "
            f"{len(self.dag.levels)} level(s), concurrency="
            f"{self.options.concurrency or 'unbounded'}, fail_fast={self.options.fail_fast}"
        )

        for index, level in enumerate(self.dag.levels):
            if self.aborted:
                for name in level:
                    self._record_skip(self.dag.nodes[name], SKIP_REASON_UPSTREAM)
                continue

            logger.info(f"Level {index}: {len(level)} node(s): {', '.join(level)}")
            await asyncio.gather(*(self._admit(self.dag.nodes[name]) for name in level))

        total = 0.0
        if self._first_start is not None and self._last_end is not None:
            total = self._last_end - self._first_start

        result = DAGResult(
            success=not self.failed,
            results=self.results,
            failed_nodes=list(self.failed),
            total_duration=total,
        )
        if result.success:
            logger.info(f"DAG run {run_id} succeeded in {total:.2f}s")
        else:
            logger.error(
                f"DAG run {run_id} failed in {total:.2f}s; "
                f"failed: {', '.join(result.failed_nodes)}"
            )
        return result

    async def _admit(self, node: DAGNode) -> None:
        if self._semaphore is None:
            await self._run_node(node)
            return
        async with self._semaphore:
            await self._run_node(node)

    async def _run_node(self, node: DAGNode) -> None:
        if self.aborted:
            self._record_skip(node, SKIP_REASON_ABORTED)
            return

        nlog = node_logger(node.name, node.level)
        start = time.monotonic()
        if self._first_start is None:
            self._first_start = start
        nlog.info(f"{node.name}: start")
        self._notify_start(node)

        try:
            outcome = _to_outcome(await self.action(node))
        except NodePhaseError as e:
            outcome = NodeOutcome(success=False, error=str(e), phase=e.phase)
        except Exception as e:
            nlog.exception(f"{node.name}: action raised")
            outcome = NodeOutcome(
                success=False,
                error=str(e) or type(e).__name__,
                phase=NodePhase.ACTION,
            )

        end = time.monotonic()
        self._last_end = end

        result = NodeResult(
            node=node,
            success=outcome.success,
            status=NodeStatus.SUCCEEDED if outcome.success else NodeStatus.FAILED,
            error=None if outcome.success else (outcome.error or "failed"),
            phase=None if outcome.success else outcome.phase,
            duration=end - start,
            logs=list(outcome.logs),
        )
        self._record(result)

        if result.success:
            nlog.info(f"{node.name}: succeeded in {result.duration:.2f}s")
        else:
            phase = result.phase.value if result.phase else "unknown"
            nlog.error(f"{node.name}: failed during {phase}: {result.error}")
            if self.options.fail_fast and not self.aborted:
                self.aborted = True
                logger.warning(f"Fail-fast: {node.name} failed; no further nodes will start")

        self._notify_complete(result)

    def _record(self, result: NodeResult) -> None:
        self.results[result.node.name] = result
        if not result.success:
            self.failed.append(result.node.name)

    def _record_skip(self, node: DAGNode, reason: str) -> None:
        logger.info(f"{node.name}: {reason}")
        self._record(
            NodeResult(
                node=node,
                success=False,
                status=NodeStatus.SKIPPED,
                error=reason,
            )
        )

    def _notify_start(self, node: DAGNode) -> None:
        if self.options.on_node_start is None:
            return
        try:
            self.options.on_node_start(node)
        except Exception:
            logger.exception(f"on_node_start callback raised for {node.name}")

    def _notify_complete(self, result: NodeResult) -> None:
        if self.options.on_node_complete is None:
            return
        try:
            self.options.on_node_complete(result)
        except Exception:
            logger.exception(f"on_node_complete callback raised for {result.node.name}")


async def execute_dag(
    dag: DependencyDAG,
    processor: Union[NodeProcessor, NodeAction],
    options: Optional[DAGExecutionOptions] = None,
) -> DAGResult:
    """Run ``processor`` over every node of ``dag`` in level order.

    Args:
        dag: Levelled DAG; read-only for the duration of the run.
        processor: A ``NodeProcessor`` or an async callable taking a node.
            It may return a ``NodeOutcome``, a bool, or None (success), or
            raise (``NodePhaseError`` tags the failing phase).
        options: Concurrency bound, fail-fast flag and progress callbacks.

    Returns:
        DAGResult with every recorded node result. Never raises for a
        per-node failure.
    """
    action = _resolve_action(processor)
    run = _LeveledRun(dag, action, options or DAGExecutionOptions())
    return await run.run()
