"""Graph analysis for flows: upstream scoping, ordering and validation.

Validation is an authoring-time concern: `ensure_valid()` runs before a run
leaves `pending`, so a bad graph (duplicate operation keys, unreachable nodes,
malformed conditions) never executes partially.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
import heapq
from typing import Dict, Iterable, List, Optional, Set

from ..errors import ValidationError
from ..models import FlowEdge, FlowNode, OperationType, VisualFlow
from .conditions import ConditionError, compile_condition
from .variables import RESERVED_ROOTS, extract_references


KNOWN_OPERATION_TYPES: Set[str] = {t.value for t in OperationType}

# Options read verbatim by their handlers (never interpolated as text before dispatch).
# Code steps still reference upstream outputs: their placeholders are inlined as literals.
RAW_OPTION_FIELDS: Dict[str, Set[str]] = {
    OperationType.CONDITION.value: {"expression"},
    OperationType.EXECUTE_CODE.value: {"code"},
}


@dataclass(frozen=True)
class ValidationIssue:
    code: str
    message: str
    node_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {"code": self.code, "message": self.message, "node_id": self.node_id}


def upstream_node_ids(nodes: Iterable[FlowNode], edges: Iterable[FlowEdge], target_id: str) -> Set[str]:
    """Node ids reachable by walking edges backward from `target_id` (BFS).

    The target itself is excluded. Used to restrict variable suggestions to
    outputs that can exist before the target runs.
    """
    known = {n.id for n in nodes}
    parents: Dict[str, List[str]] = {}
    for e in edges:
        if e.source in known and e.target in known:
            parents.setdefault(e.target, []).append(e.source)

    seen: Set[str] = set()
    queue = deque(parents.get(target_id, []))
    while queue:
        cur = queue.popleft()
        if cur in seen or cur == target_id:
            continue
        seen.add(cur)
        for p in parents.get(cur, []):
            if p not in seen:
                queue.append(p)
    return seen


def available_variables(flow: VisualFlow, node_id: str) -> List[str]:
    """Variable roots a node may reference: reserved roots + upstream operation keys."""
    upstream = upstream_node_ids(flow.nodes, flow.edges, node_id)
    keys = [
        n.operationKey
        for n in sorted(flow.nodes, key=lambda n: (n.sort_order, n.id))
        if n.id in upstream and not n.is_trigger and n.operationKey
    ]
    return list(RESERVED_ROOTS) + keys


def _children(flow: VisualFlow) -> Dict[str, List[str]]:
    known = {n.id for n in flow.nodes}
    out: Dict[str, List[str]] = {}
    for e in flow.edges:
        if e.source in known and e.target in known:
            out.setdefault(e.source, []).append(e.target)
    return out


def reachable_from(flow: VisualFlow, start_id: str) -> Set[str]:
    children = _children(flow)
    seen: Set[str] = set()
    stack = [start_id]
    while stack:
        cur = stack.pop()
        if cur in seen:
            continue
        seen.add(cur)
        stack.extend(c for c in children.get(cur, []) if c not in seen)
    return seen


def topological_order(flow: VisualFlow) -> List[FlowNode]:
    """Kahn order (parents before children) of nodes reachable from the trigger.

    Ties are broken by `sort_order`, then node id. Cyclic remainders are dropped;
    `validate_flow` reports them.
    """
    triggers = flow.trigger_nodes()
    if not triggers:
        return []
    reachable = reachable_from(flow, triggers[0].id)
    by_id = {n.id: n for n in flow.nodes if n.id in reachable}

    indegree: Dict[str, int] = {nid: 0 for nid in by_id}
    children: Dict[str, List[str]] = {}
    for e in flow.edges:
        if e.source in by_id and e.target in by_id:
            children.setdefault(e.source, []).append(e.target)
            indegree[e.target] += 1

    heap = [(by_id[nid].sort_order, nid) for nid, deg in indegree.items() if deg == 0]
    heapq.heapify(heap)
    ordered: List[FlowNode] = []
    while heap:
        _, nid = heapq.heappop(heap)
        ordered.append(by_id[nid])
        for child in children.get(nid, []):
            indegree[child] -= 1
            if indegree[child] == 0:
                heapq.heappush(heap, (by_id[child].sort_order, child))
    return ordered


def _has_cycle(flow: VisualFlow) -> bool:
    children = _children(flow)
    WHITE, GREY, BLACK = 0, 1, 2
    color: Dict[str, int] = {n.id: WHITE for n in flow.nodes}
    for root in list(color):
        if color[root] != WHITE:
            continue
        stack = [(root, iter(children.get(root, [])))]
        color[root] = GREY
        while stack:
            nid, it = stack[-1]
            nxt = next(it, None)
            if nxt is None:
                color[nid] = BLACK
                stack.pop()
                continue
            if color.get(nxt) == GREY:
                return True
            if color.get(nxt) == WHITE:
                color[nxt] = GREY
                stack.append((nxt, iter(children.get(nxt, []))))
    return False


def validate_flow(flow: VisualFlow) -> List[ValidationIssue]:
    """Return all validation issues for a flow (empty list when valid)."""
    issues: List[ValidationIssue] = []
    node_ids = {n.id for n in flow.nodes}

    triggers = flow.trigger_nodes()
    if not triggers:
        issues.append(ValidationIssue("missing_trigger", "Flow has no trigger node"))
    elif len(triggers) > 1:
        ids = ", ".join(t.id for t in triggers)
        issues.append(ValidationIssue("multiple_triggers", f"Flow must have exactly one trigger (found: {ids})"))

    seen_keys: Dict[str, str] = {}
    for n in flow.nodes:
        if n.is_trigger:
            continue
        key = (n.operationKey or "").strip()
        if not key:
            issues.append(ValidationIssue("missing_operation_key", f"Node '{n.id}' has no operation key", n.id))
        elif key in seen_keys:
            issues.append(
                ValidationIssue(
                    "duplicate_operation_key",
                    f"Operation key '{key}' is used by nodes '{seen_keys[key]}' and '{n.id}'",
                    n.id,
                )
            )
        else:
            seen_keys[key] = n.id

        if n.operationType not in KNOWN_OPERATION_TYPES:
            issues.append(
                ValidationIssue("unknown_operation_type", f"Node '{n.id}' has unknown operation type '{n.operationType}'", n.id)
            )

    for e in flow.edges:
        if e.source not in node_ids or e.target not in node_ids:
            issues.append(ValidationIssue("dangling_edge", f"Edge '{e.id}' references a missing node"))

    if _has_cycle(flow):
        issues.append(ValidationIssue("cycle", "Flow graph contains a cycle"))

    if len(triggers) == 1:
        reachable = reachable_from(flow, triggers[0].id)
        for n in flow.nodes:
            if not n.is_trigger and n.id not in reachable:
                issues.append(ValidationIssue("unreachable_node", f"Node '{n.id}' is not reachable from the trigger", n.id))

    all_keys = set(seen_keys)
    for n in flow.nodes:
        if n.is_trigger:
            continue
        allowed = set(available_variables(flow, n.id))
        # Condition expressions are checked through the compiled rule below.
        skipped = {"expression"} if n.operationType == OperationType.CONDITION.value else set()
        refs = extract_references({k: v for k, v in n.options.items() if k not in skipped})

        if n.operationType == OperationType.CONDITION.value:
            compiled = compile_condition(n.options.get("expression"), known_keys=all_keys)
            if isinstance(compiled, ConditionError):
                issues.append(ValidationIssue("invalid_condition", f"Node '{n.id}': {compiled.error}", n.id))
            else:
                refs.append(compiled.left.split(".", 1)[0].split("[", 1)[0])

        for ref in refs:
            bare = ref[1:] if ref.startswith("$") and ref not in RESERVED_ROOTS else ref
            if ref in allowed or bare in allowed:
                continue
            issues.append(
                ValidationIssue(
                    "unknown_reference",
                    f"Node '{n.id}' references '{ref}', which is not produced upstream",
                    n.id,
                )
            )

    return issues


def ensure_valid(flow: VisualFlow) -> None:
    issues = validate_flow(flow)
    if issues:
        raise ValidationError(issues)
