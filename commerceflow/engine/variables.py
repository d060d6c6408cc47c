"""Template resolution for `{{ expr }}` placeholders.

Semantics:
- `{{ $last }}`, `{{ $input.x }}`, `{{ $trigger.x }}`, `{{ $env.NAME }}` and
  `{{ <operationKey>.path }}` are dotted-path lookups into the run context.
- A template that is exactly one placeholder returns the raw value (type kept).
- Missing references resolve to `None` (raw) or `""` (embedded in text). Resolution
  never raises: templates are only checked at authoring time, and handlers treat an
  unresolved reference as "no value provided".
"""

from __future__ import annotations

from dataclasses import dataclass, field
import json
import re
from typing import Any, Dict, List, Optional


PLACEHOLDER_RE = re.compile(r"\{\{\s*(.*?)\s*\}\}")
_EXACT_RE = re.compile(r"^\s*\{\{\s*(.*?)\s*\}\}\s*$", re.DOTALL)
_BRACKET_RE = re.compile(r"\[(\d+|'[^']*'|\"[^\"]*\")\]")

RESERVED_ROOTS = ("$last", "$input", "$trigger", "$env")


@dataclass
class ExecutionContext:
    """Per-run state threaded through template resolution.

    Append-only while a run is in progress; each run owns its own instance.
    """

    trigger: Any = None
    input: Any = None
    outputs: Dict[str, Any] = field(default_factory=dict)
    last: Any = None
    env: Dict[str, str] = field(default_factory=dict)

    def record(self, operation_key: Optional[str], value: Any, *, as_last: bool = True) -> None:
        if operation_key:
            self.outputs[operation_key] = value
        if as_last:
            self.last = value

    def namespace(self) -> Dict[str, Any]:
        ns: Dict[str, Any] = dict(self.outputs)
        ns["$last"] = self.last
        ns["$input"] = self.input
        ns["$trigger"] = self.trigger
        ns["$env"] = self.env
        return ns


def split_path(expr: str) -> List[str]:
    """Split `a.b[0].c` / `a.b.0.c` into segments."""
    text = _BRACKET_RE.sub(lambda m: "." + m.group(1).strip("'\""), str(expr or "").strip())
    return [p for p in text.split(".") if p != ""]


def _step(value: Any, key: str) -> Any:
    if isinstance(value, dict):
        return value.get(key)
    if isinstance(value, (list, tuple)):
        try:
            idx = int(key)
        except ValueError:
            if key == "length":
                return len(value)
            return None
        if -len(value) <= idx < len(value):
            return value[idx]
        return None
    if value is None:
        return None
    # Plain attribute access for non-container outputs; never private names.
    if key.startswith("_"):
        return None
    return getattr(value, key, None)


def lookup(expr: str, ctx: ExecutionContext) -> Any:
    """Resolve a dotted path (`$last.items.0.id`, `read_products.count`) or `None`."""
    parts = split_path(expr)
    if not parts:
        return None
    ns = ctx.namespace()
    root = parts[0]
    if root not in ns:
        # `{{ $read_products }}` is accepted as an alias of `{{ read_products }}`.
        bare = root[1:] if root.startswith("$") else None
        if bare is None or bare not in ctx.outputs:
            return None
        root = bare
    value = ns.get(root)
    for key in parts[1:]:
        value = _step(value, key)
        if value is None:
            return None
    return value


def _stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        try:
            return json.dumps(value, ensure_ascii=False, default=str)
        except (TypeError, ValueError):
            return str(value)
    return str(value)


def resolve(template: Any, ctx: ExecutionContext) -> Any:
    """Resolve placeholders in a single string template (non-strings pass through)."""
    if not isinstance(template, str) or "{{" not in template:
        return template
    exact = _EXACT_RE.match(template)
    if exact and "{{" not in exact.group(1):
        return lookup(exact.group(1), ctx)
    return PLACEHOLDER_RE.sub(lambda m: _stringify(lookup(m.group(1), ctx)), template)


def interpolate(value: Any, ctx: ExecutionContext) -> Any:
    """Recursively resolve templates in dicts/lists, returning a new structure."""
    if isinstance(value, str):
        return resolve(value, ctx)
    if isinstance(value, dict):
        return {k: interpolate(v, ctx) for k, v in value.items()}
    if isinstance(value, list):
        return [interpolate(v, ctx) for v in value]
    if isinstance(value, tuple):
        return tuple(interpolate(v, ctx) for v in value)
    return value


def extract_references(value: Any) -> List[str]:
    """Return the root names referenced by templates inside `value` (in order, unique)."""
    found: List[str] = []

    def _walk(v: Any) -> None:
        if isinstance(v, str):
            for m in PLACEHOLDER_RE.finditer(v):
                parts = split_path(m.group(1))
                if parts and parts[0] not in found:
                    found.append(parts[0])
        elif isinstance(v, dict):
            for item in v.values():
                _walk(item)
        elif isinstance(v, (list, tuple)):
            for item in v:
                _walk(item)

    _walk(value)
    return found


def inline_references(code: str, ctx: ExecutionContext) -> str:
    """Replace placeholders in source code with Python literals of their values.

    `return {{ read_products.count }} + 1` becomes `return 3 + 1`. Values are made
    JSON-safe first, so the literal is always a plain dict/list/str/number/bool/None.
    """
    def _literal(m: "re.Match[str]") -> str:
        value = lookup(m.group(1), ctx)
        return repr(json.loads(json.dumps(value, default=str)))

    return PLACEHOLDER_RE.sub(_literal, str(code or ""))
