"""Flow execution: walk the graph in dependency order and dispatch operations.

Run lifecycle: `pending -> running -> succeeded | failed | cancelled`.

- The graph is validated before the run leaves `pending`; a `ValidationError`
  is raised to the caller and no node runs.
- Nodes run one at a time in topological order. A node runs only when at least
  one of its incoming edges is active; otherwise it is recorded as `skipped`.
- Condition nodes activate only the edges of the branch they took. A failed node
  with `continue_on_error` activates only its `failure` edges.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
import inspect
import logging
import time
import uuid
from typing import Any, Awaitable, Callable, Dict, Optional, Set, Union

from ..backend import CommerceBackend
from ..catalog.index import CatalogIndex, CatalogService
from ..errors import FlowError
from ..models import (
    ConnectionType,
    ExecutionEvent,
    ExecutionResult,
    FlowEdge,
    FlowNode,
    OperationType,
    RunStatus,
    StepRecord,
    StepStatus,
    VisualFlow,
)
from .code_executor import CodeExecutor
from .graph import RAW_OPTION_FIELDS, ensure_valid, topological_order
from .operations import (
    MAX_FLOW_DEPTH,
    FlowRunner,
    OperationContext,
    continue_on_error_flag,
    get_operation,
    wait_for_background_flows,
)
from .variables import ExecutionContext, interpolate

logger = logging.getLogger(__name__)


EventHandler = Callable[[ExecutionEvent], Union[None, Awaitable[None]]]
FlowLoader = Callable[[str], Optional[VisualFlow]]


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def edge_branch(edge: FlowEdge) -> str:
    """`default`, `success` or `failure` for an edge (connection type, then handle)."""
    if edge.connection_type != ConnectionType.DEFAULT:
        return edge.connection_type.value
    handle = str(edge.sourceHandle or "").strip().lower()
    if handle in {"success", "true"}:
        return ConnectionType.SUCCESS.value
    if handle in {"failure", "false", "error"}:
        return ConnectionType.FAILURE.value
    return ConnectionType.DEFAULT.value


def _activated_branches(node: FlowNode, output: Any, failed: bool) -> Set[str]:
    if failed:
        return {ConnectionType.FAILURE.value}
    if node.operationType == OperationType.CONDITION.value and isinstance(output, dict):
        if output.get("branch") == ConnectionType.FAILURE.value:
            return {ConnectionType.FAILURE.value}
        # A plain edge out of a condition follows the true branch.
        return {ConnectionType.SUCCESS.value, ConnectionType.DEFAULT.value}
    return {ConnectionType.SUCCESS.value, ConnectionType.DEFAULT.value}


class FlowExecutor:
    """Executes `VisualFlow` graphs against a commerce backend.

    Example:
        >>> executor = FlowExecutor(backend, catalog=CatalogService(source))
        >>> result = asyncio.run(executor.execute(flow, {"order_id": "ord_1"}))
        >>> result.status
        <RunStatus.SUCCEEDED: 'succeeded'>
    """

    def __init__(
        self,
        backend: CommerceBackend,
        *,
        catalog: Union[CatalogService, CatalogIndex, None] = None,
        code_executor: Optional[CodeExecutor] = None,
        flow_runner: Optional[FlowRunner] = None,
        on_event: Optional[EventHandler] = None,
        env: Optional[Dict[str, str]] = None,
        max_flow_depth: int = MAX_FLOW_DEPTH,
        http_transport: Any = None,
    ):
        """Initialize an executor.

        Args:
            backend: Data/workflow backend used by data, notification and workflow nodes.
            catalog: Catalog service (or a fixed index) used to validate data endpoints.
                     `None` disables endpoint validation.
            code_executor: Sandbox for `execute_code` nodes.
            flow_runner: Callback used by `trigger_flow` nodes to run nested flows
                         in-process; without it they are delegated to the backend.
            on_event: Sync or async callback receiving `ExecutionEvent`s.
            env: The `$env` namespace (already filtered by the allow-list).
        """
        self.backend = backend
        self.catalog = catalog
        self.code_executor = code_executor
        self.flow_runner = flow_runner
        self.on_event = on_event
        self.env = dict(env or {})
        self.max_flow_depth = int(max_flow_depth)
        self.http_transport = http_transport

    def runner_for(self, loader: FlowLoader) -> FlowRunner:
        """Build an in-process `trigger_flow` runner that loads flows by id."""

        async def _run(flow_id: str, payload: Any, depth: int) -> ExecutionResult:
            child = loader(flow_id)
            if child is None:
                raise FlowError(f"Flow '{flow_id}' not found")
            return await self.execute(child, payload, depth=depth)

        return _run

    async def _catalog_index(self) -> Optional[CatalogIndex]:
        if self.catalog is None:
            return None
        if isinstance(self.catalog, CatalogIndex):
            return self.catalog
        return await self.catalog.index()

    async def _emit(self, event_type: str, run_id: str, **kwargs: Any) -> None:
        if self.on_event is None:
            return
        event = ExecutionEvent(type=event_type, run_id=run_id, **kwargs)
        try:
            res = self.on_event(event)
            if inspect.isawaitable(res):
                await res
        except Exception as e:
            logger.warning(f"Execution event handler failed on {event_type}: {e}")

    async def execute(
        self,
        flow: VisualFlow,
        trigger_payload: Any = None,
        *,
        input: Any = None,
        run_id: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
        depth: int = 0,
    ) -> ExecutionResult:
        """Run a flow to completion.

        Args:
            flow: The flow to run.
            trigger_payload: Data exposed as `$trigger` (and `$input` unless `input` is given).
            input: Explicit `$input` data.
            run_id: Run id to use (a new one is generated otherwise).
            cancel_event: Checked between nodes; setting it cancels the run.
            depth: Nesting depth for flows started by `trigger_flow`.

        Returns:
            The `ExecutionResult` (failed and cancelled runs are returned, not raised).

        Raises:
            ValidationError: If the flow graph is invalid (no node is executed).
        """
        run_id = run_id or str(uuid.uuid4())
        ensure_valid(flow)

        ctx = ExecutionContext(
            trigger=trigger_payload,
            input=input if input is not None else trigger_payload,
            last=trigger_payload,
            env=dict(self.env),
        )
        result = ExecutionResult(run_id=run_id, flow_id=flow.id, status=RunStatus.RUNNING, started_at=_utc_now_iso())
        index = await self._catalog_index()

        logger.info(f"Flow run {run_id} started (flow={flow.id}, depth={depth})")
        await self._emit("flow_start", run_id)

        incoming: Dict[str, list] = {}
        outgoing: Dict[str, list] = {}
        for e in flow.edges:
            incoming.setdefault(e.target, []).append(e)
            outgoing.setdefault(e.source, []).append(e)
        active: Set[str] = set()

        for node in topological_order(flow):
            if node.is_trigger:
                active.update(e.id for e in outgoing.get(node.id, []))
                continue

            if cancel_event is not None and cancel_event.is_set():
                result.status = RunStatus.CANCELLED
                result.error = "Run cancelled"
                logger.info(f"Flow run {run_id} cancelled before node {node.id}")
                break

            if not any(e.id in active for e in incoming.get(node.id, [])):
                result.steps.append(
                    StepRecord(
                        node_id=node.id,
                        operation_key=node.operationKey,
                        operation_type=node.operationType,
                        status=StepStatus.SKIPPED,
                    )
                )
                await self._emit("node_skipped", run_id, nodeId=node.id)
                continue

            stop = await self._run_node(node, ctx, index, result, outgoing, active, depth)
            if stop:
                break

        result.outputs = dict(ctx.outputs)
        result.last = ctx.last
        result.finished_at = _utc_now_iso()
        if result.status == RunStatus.RUNNING:
            result.status = RunStatus.SUCCEEDED

        if result.status == RunStatus.FAILED:
            logger.warning(f"Flow run {run_id} failed at node {result.error_node}: {result.error}")
            await self._emit("flow_error", run_id, nodeId=result.error_node, error=result.error)
        else:
            logger.info(f"Flow run {run_id} finished with status {result.status.value}")
            await self._emit("flow_complete", run_id, result={"status": result.status.value, "last": result.last})
        return result

    async def _run_node(
        self,
        node: FlowNode,
        ctx: ExecutionContext,
        index: Optional[CatalogIndex],
        result: ExecutionResult,
        outgoing: Dict[str, list],
        active: Set[str],
        depth: int,
    ) -> bool:
        """Execute one node, record it and activate its outgoing edges. Returns True to stop the run."""
        await self._emit("node_start", result.run_id, nodeId=node.id)

        raw_fields = RAW_OPTION_FIELDS.get(node.operationType or "", set())
        resolved = {k: (v if k in raw_fields else interpolate(v, ctx)) for k, v in node.options.items()}

        op = OperationContext(
            node=node,
            ctx=ctx,
            backend=self.backend,
            catalog=index,
            code_executor=self.code_executor,
            flow_runner=self.flow_runner,
            depth=depth,
            max_flow_depth=self.max_flow_depth,
            http_transport=self.http_transport,
        )

        continue_on_error = False
        started = time.perf_counter()
        output: Any = None
        error: Optional[str] = None
        try:
            spec = get_operation(node.operationType)
            continue_on_error = continue_on_error_flag(resolved, spec.continue_on_error_default)
            options = spec.options_model.model_validate(resolved)
            output = await spec.handler(options, op)
        except Exception as e:
            error = str(e) or type(e).__name__
        duration_ms = int((time.perf_counter() - started) * 1000)

        failed = error is not None
        result.steps.append(
            StepRecord(
                node_id=node.id,
                operation_key=node.operationKey,
                operation_type=node.operationType,
                status=StepStatus.FAILURE if failed else StepStatus.SUCCESS,
                input=resolved,
                output=None if failed else output,
                error=error,
                duration_ms=duration_ms,
                notes=list(op.notes),
            )
        )

        if failed:
            await self._emit("node_error", result.run_id, nodeId=node.id, error=error)
            if not continue_on_error:
                result.status = RunStatus.FAILED
                result.error = error
                result.error_node = node.id
                return True
            logger.warning(f"Node {node.id} failed, continuing: {error}")
            ctx.record(node.operationKey, {"error": error}, as_last=False)
        else:
            ctx.record(node.operationKey, output)
            await self._emit("node_complete", result.run_id, nodeId=node.id, result=output)

        branches = _activated_branches(node, output, failed)
        active.update(e.id for e in outgoing.get(node.id, []) if edge_branch(e) in branches)
        return False


async def execute_and_wait(executor: FlowExecutor, flow: VisualFlow, trigger_payload: Any = None, **kwargs: Any) -> ExecutionResult:
    """`FlowExecutor.execute`, then wait for any fire-and-forget child flows it started."""
    result = await executor.execute(flow, trigger_payload, **kwargs)
    await wait_for_background_flows()
    return result


def run_flow_sync(executor: FlowExecutor, flow: VisualFlow, trigger_payload: Any = None, **kwargs: Any) -> ExecutionResult:
    """Blocking wrapper around `FlowExecutor.execute` (CLI and scripts)."""
    return asyncio.run(execute_and_wait(executor, flow, trigger_payload, **kwargs))
