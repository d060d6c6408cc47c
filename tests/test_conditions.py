from __future__ import annotations

from commerceflow.engine.conditions import (
    CompiledCondition,
    ConditionError,
    Reference,
    compare,
    compile_condition,
)
from commerceflow.engine.variables import ExecutionContext


def test_compile_emits_filter_rule() -> None:
    compiled = compile_condition("$last.count > 0")
    assert isinstance(compiled, CompiledCondition)
    assert compiled.to_filter() == {"$last.count": {"_gt": 0}}


def test_two_character_operators_win_over_one() -> None:
    assert compile_condition("$last.total >= 10.5").to_filter() == {"$last.total": {"_gte": 10.5}}
    assert compile_condition("$last.total <= 3").to_filter() == {"$last.total": {"_lte": 3}}
    assert compile_condition("$last.status != 'draft'").to_filter() == {"$last.status": {"_neq": "draft"}}


def test_wrapped_expression_is_accepted() -> None:
    assert compile_condition("{{ $trigger.kind == \"order\" }}").to_filter() == {"$trigger.kind": {"_eq": "order"}}


def test_right_operand_references() -> None:
    compiled = compile_condition("$last.count == $trigger.expected")
    assert compiled.right == Reference("$trigger.expected")

    known = compile_condition("read_a.count > read_b.count", known_keys={"read_a", "read_b"})
    assert known.right == Reference("read_b.count")

    unknown = compile_condition("$last.status == shipped", known_keys={"read_a"})
    assert unknown.right == "shipped"


def test_unparseable_expressions_yield_errors() -> None:
    assert isinstance(compile_condition(""), ConditionError)
    assert isinstance(compile_condition("$last.count"), ConditionError)
    assert isinstance(compile_condition("$last.a > 1 && $last.b < 2"), ConditionError)
    assert isinstance(compile_condition("1 + 2 > 0"), ConditionError)


def test_evaluate_against_context() -> None:
    ctx = ExecutionContext(trigger={"expected": 2})
    ctx.record("read_products", {"count": 2})
    assert compile_condition("read_products.count == $trigger.expected").evaluate(ctx) is True
    assert compile_condition("$last.count > 2").evaluate(ctx) is False
    assert compile_condition("$last.missing == null").evaluate(ctx) is True


def test_compare_coerces_numbers_and_rejects_mixed_ordering() -> None:
    assert compare("3", "_eq", 3) is True
    assert compare("10", "_gt", "9") is True
    assert compare("b", "_gt", "a") is True
    assert compare(None, "_gt", 1) is False
    assert compare(True, "_gt", 0) is False
