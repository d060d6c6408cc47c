"""Dependency planner: prerequisite lookups for write requests.

A write body such as `{"product_id": None}` references an entity the caller has
not picked yet. The planner proposes the list call that would find it
(`GET /admin/products`). Suggestions are advisory; they never block the primary
planned request.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import re
from typing import Any, Dict, List, Optional

from ..catalog.index import RESOURCE_ALIASES, WRITE_METHODS, CatalogIndex, normalize_method, normalize_path
from ..models import PlannedRequest


ID_KEY_RE = re.compile(r"(_id|Id)s?$")
HINT_FIELDS = ("q", "sku", "title", "handle", "email", "name", "code", "reference")
LIST_LIMIT = 50


@dataclass
class DependencyPlan:
    next: List[PlannedRequest] = field(default_factory=list)
    notes: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        if self.next:
            out["next"] = [r.to_dict() for r in self.next]
        if self.notes:
            out["notes"] = list(self.notes)
        return out


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or value == [] or value == {}


def kebab_case(name: str) -> str:
    text = re.sub(r"([a-z0-9])([A-Z])", r"\1-\2", str(name or ""))
    return re.sub(r"[_\s]+", "-", text).strip("-").lower()


def pluralize(word: str) -> str:
    if word.endswith("y") and len(word) > 1 and word[-2] not in "aeiou":
        return word[:-1] + "ies"
    if word.endswith(("s", "x", "ch", "sh")):
        return word + "es"
    return word + "s"


def resource_for_key(key: str) -> str:
    """`product_id` -> `products`, `category_ids` -> `product-categories`."""
    base = kebab_case(ID_KEY_RE.sub("", key))
    alias = RESOURCE_ALIASES.get(base)
    if alias:
        return alias
    return pluralize(base)


def _hint(body: Dict[str, Any]) -> Optional[str]:
    for name in HINT_FIELDS:
        value = body.get(name)
        if isinstance(value, str) and value.strip():
            return value.strip()
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
    return None


def plan_dependencies(method: Any, path: Any, body: Any, index: Optional[CatalogIndex]) -> DependencyPlan:
    plan = DependencyPlan()
    if normalize_method(method) not in WRITE_METHODS or not isinstance(body, dict):
        return plan

    hint = _hint(body)
    permissive = index is None or index.is_empty
    seen: List[str] = []
    for key, value in body.items():
        if not ID_KEY_RE.search(str(key)) or not _is_empty(value):
            continue
        resource = resource_for_key(str(key))
        if not resource or resource == "s":
            continue
        list_path = normalize_path(f"/admin/{resource}")
        if list_path in seen:
            continue

        if not permissive:
            resolved = index.resolve_alias("GET", list_path)
            if resolved is None:
                plan.notes.append(f"'{key}' is empty and no GET {list_path} endpoint exists in the catalog")
                continue
            list_path = resolved

        req_body: Dict[str, Any] = {"limit": LIST_LIMIT}
        if hint:
            req_body["q"] = hint
        seen.append(list_path)
        plan.next.append(PlannedRequest.build("GET", list_path, req_body))
        note = f"'{key}' is empty: look it up with GET {list_path} first"
        if permissive:
            note += " (unverified: catalog unavailable)"
        plan.notes.append(note)
    return plan
