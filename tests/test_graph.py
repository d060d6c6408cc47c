from __future__ import annotations

import pytest

from commerceflow.engine.graph import available_variables, ensure_valid, topological_order, validate_flow
from commerceflow.errors import ValidationError
from commerceflow.models import FlowEdge, FlowNode, NodeKind, VisualFlow


def _trigger() -> FlowNode:
    return FlowNode(id="t", type=NodeKind.TRIGGER, options={"trigger_type": "manual"})


def _op(node_id: str, key: str, op_type: str = "log", **options) -> FlowNode:
    return FlowNode(id=node_id, operationType=op_type, operationKey=key, options=options)


def _codes(flow: VisualFlow) -> list:
    return [i.code for i in validate_flow(flow)]


def test_linear_flow_is_valid_and_ordered() -> None:
    flow = VisualFlow(
        name="linear",
        nodes=[_trigger(), _op("b", "second", message="{{ first.message }}"), _op("a", "first", message="hi")],
        edges=[FlowEdge(source="t", target="a"), FlowEdge(source="a", target="b")],
    )
    assert validate_flow(flow) == []
    assert [n.id for n in topological_order(flow)] == ["t", "a", "b"]


def test_available_variables_are_upstream_only() -> None:
    flow = VisualFlow(
        name="scoping",
        nodes=[_trigger(), _op("a", "A"), _op("b", "B"), _op("c", "C")],
        edges=[FlowEdge(source="t", target="a"), FlowEdge(source="a", target="b"), FlowEdge(source="t", target="c")],
    )
    assert available_variables(flow, "b") == ["$last", "$input", "$trigger", "$env", "A"]
    assert available_variables(flow, "c") == ["$last", "$input", "$trigger", "$env"]


def test_reference_to_sibling_branch_is_rejected() -> None:
    flow = VisualFlow(
        name="sibling",
        nodes=[_trigger(), _op("a", "A"), _op("c", "C", message="{{ A.message }}")],
        edges=[FlowEdge(source="t", target="a"), FlowEdge(source="t", target="c")],
    )
    assert _codes(flow) == ["unknown_reference"]


def test_code_placeholders_are_scoped_like_other_options() -> None:
    flow = VisualFlow(
        name="code scope",
        nodes=[_trigger(), _op("a", "A"), _op("c", "C", "execute_code", code="return {{ B.count }}")],
        edges=[FlowEdge(source="t", target="a"), FlowEdge(source="a", target="c")],
    )
    assert _codes(flow) == ["unknown_reference"]


def test_duplicate_keys_and_missing_trigger() -> None:
    flow = VisualFlow(
        name="dupes",
        nodes=[_op("a", "same"), _op("b", "same")],
        edges=[FlowEdge(source="a", target="b")],
    )
    codes = _codes(flow)
    assert "missing_trigger" in codes
    assert "duplicate_operation_key" in codes


def test_structural_issues_are_reported() -> None:
    flow = VisualFlow(
        name="broken",
        nodes=[
            _trigger(),
            _op("a", "A"),
            _op("b", "B", "no_such_op"),
            _op("island", "I"),
            _op("cond", "check", "condition", expression="$last.count >"),
        ],
        edges=[
            FlowEdge(source="t", target="a"),
            FlowEdge(source="a", target="b"),
            FlowEdge(source="b", target="a"),
            FlowEdge(source="a", target="cond"),
            FlowEdge(source="a", target="ghost"),
        ],
    )
    codes = set(_codes(flow))
    assert {"unknown_operation_type", "cycle", "unreachable_node", "invalid_condition", "dangling_edge"} <= codes


def test_ensure_valid_raises_with_issues() -> None:
    flow = VisualFlow(name="empty", nodes=[_op("a", "A")])
    with pytest.raises(ValidationError) as exc:
        ensure_valid(flow)
    assert any(i.code == "missing_trigger" for i in exc.value.issues)
