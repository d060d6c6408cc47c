"""Condition compiler for `condition` nodes.

`compile_condition("$last.count > 0")` yields a structured filter rule
(`{"$last.count": {"_gt": 0}}`) that is evaluated against the run context.
Unparseable expressions yield a `ConditionError` instead of a rule: a condition
node refuses to run rather than defaulting to always-true/always-false.
"""

from __future__ import annotations

from dataclasses import dataclass
import re
from typing import Any, Dict, Optional, Union

from .variables import ExecutionContext, lookup


OPERATOR_TAGS: Dict[str, str] = {
    "==": "_eq",
    "!=": "_neq",
    ">=": "_gte",
    "<=": "_lte",
    ">": "_gt",
    "<": "_lt",
}

# Longest operators first so `>=` is not read as `>`.
_OPERATOR_RE = re.compile(r"(==|!=|>=|<=|>|<)")
_WRAPPED_RE = re.compile(r"^\s*\{\{(.*)\}\}\s*$", re.DOTALL)
_NUMBER_RE = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?$")
_PATH_RE = re.compile(r"^\$?[A-Za-z_][\w]*(\.[\w$]+|\[\d+\])*$")


@dataclass(frozen=True)
class Reference:
    """A right-hand operand that points at another context value."""

    path: str


@dataclass(frozen=True)
class ConditionError:
    expression: str
    error: str


@dataclass(frozen=True)
class CompiledCondition:
    left: str
    operator: str
    right: Any

    def to_filter(self) -> Dict[str, Dict[str, Any]]:
        right = f"{{{{ {self.right.path} }}}}" if isinstance(self.right, Reference) else self.right
        return {self.left: {self.operator: right}}

    def evaluate(self, ctx: ExecutionContext) -> bool:
        left_value = lookup(self.left, ctx)
        right_value = lookup(self.right.path, ctx) if isinstance(self.right, Reference) else self.right
        return compare(left_value, self.operator, right_value)


def _coerce_operand(raw: str) -> Any:
    text = raw.strip()
    lowered = text.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    if lowered in {"null", "none", "undefined"}:
        return None
    if _NUMBER_RE.match(text):
        number = float(text)
        return int(number) if number.is_integer() and not any(c in text for c in ".eE") else number
    if len(text) >= 2 and text[0] == text[-1] and text[0] in {"'", '"'}:
        return text[1:-1]
    if text.startswith("$") and _PATH_RE.match(text):
        return Reference(path=text)
    return text


def compile_condition(expression: Any, *, known_keys: Optional[set] = None) -> Union[CompiledCondition, ConditionError]:
    """Parse a single comparison expression. Never raises."""
    raw = str(expression or "")
    text = raw.strip()
    wrapped = _WRAPPED_RE.match(text)
    if wrapped:
        text = wrapped.group(1).strip()
    if not text:
        return ConditionError(expression=raw, error="Condition expression is empty")

    match = _OPERATOR_RE.search(text)
    if match is None:
        return ConditionError(
            expression=raw,
            error="Unsupported condition: expected one of ==, !=, >, >=, <, <=",
        )

    left = text[: match.start()].strip()
    right_raw = text[match.end():].strip()
    if not left or not _PATH_RE.match(left):
        return ConditionError(expression=raw, error=f"Invalid left operand: {left!r}")
    if not right_raw:
        return ConditionError(expression=raw, error="Missing right operand")
    if _OPERATOR_RE.search(right_raw) and right_raw[0] not in {"'", '"'}:
        return ConditionError(expression=raw, error="Only a single comparison is supported")

    right = _coerce_operand(right_raw)
    if (
        isinstance(right, str)
        and known_keys
        and _PATH_RE.match(right)
        and right.split(".", 1)[0] in known_keys
    ):
        right = Reference(path=right)

    return CompiledCondition(left=left, operator=OPERATOR_TAGS[match.group(1)], right=right)


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str) and _NUMBER_RE.match(value.strip()):
        return float(value.strip())
    return None


def compare(left: Any, operator: str, right: Any) -> bool:
    """Apply a filter-rule operator tag. Ordering across incompatible types is False."""
    if operator in {"_eq", "_neq"}:
        ln, rn = _as_number(left), _as_number(right)
        if ln is not None and rn is not None:
            equal = ln == rn
        else:
            equal = left == right
        return equal if operator == "_eq" else not equal

    ln, rn = _as_number(left), _as_number(right)
    if ln is not None and rn is not None:
        a, b = ln, rn
    elif isinstance(left, str) and isinstance(right, str):
        a, b = left, right
    else:
        return False

    if operator == "_gt":
        return a > b
    if operator == "_gte":
        return a >= b
    if operator == "_lt":
        return a < b
    if operator == "_lte":
        return a <= b
    return False
