"""Endpoint catalog index.

Design notes:
- The index is an immutable snapshot of normalized `"METHOD /path"` keys; it is
  rebuilt wholesale, never patched.
- `CatalogService` owns the snapshot and its TTL. The clock is injected so tests
  can expire the cache deterministically.
- An unreachable catalog degrades to an empty index. Callers treat `size == 0` as
  "cannot validate, pass through" rather than "reject everything".
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
import re
import time
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional

from ..errors import CatalogUnavailable
from ..models import Endpoint
from .source import CatalogSource, extract_endpoints

logger = logging.getLogger(__name__)


HTTP_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE")
WRITE_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})

CANONICAL_ROOT = "/admin"
KNOWN_ROOTS = ("/admin", "/store")

# Explicit alias table for resource names the catalog spells differently.
RESOURCE_ALIASES: Dict[str, str] = {
    "category": "product-categories",
    "categories": "product-categories",
    "product-category": "product-categories",
    "collection": "collections",
    "inventory": "inventory-items",
    "inventory-item": "inventory-items",
    "inventories": "inventory-items",
    "stock": "inventory-items",
    "stock-location": "stock-locations",
    "person": "persons",
    "people": "persons",
    "client": "customers",
    "customer": "customers",
    "product": "products",
    "order": "orders",
    "design": "designs",
    "partner": "partners",
    "task": "tasks",
    "media": "medias",
    "note": "notes",
    "website": "websites",
    "region": "regions",
}

_PARAM_RE = re.compile(r"(\{[^}]*\}|:[A-Za-z_]\w*)")


def _hyphenate(path: str) -> str:
    """Rewrite `_` to `-` outside `{param}` / `:param` placeholders."""
    parts = _PARAM_RE.split(path)
    return "".join(p if _PARAM_RE.fullmatch(p) else p.replace("_", "-") for p in parts)


def normalize_method(method: Any) -> str:
    return str(method or "").strip().upper()


def rooted_path(path: Any) -> str:
    """`normalize_path` without the `_` to `-` rewrite, so concrete ids keep their spelling."""
    p = str(path or "").strip()
    p = p.split("?", 1)[0].split("#", 1)[0].strip()
    p = re.sub(r"/{2,}", "/", "/" + p.lstrip("/"))
    if p == "/api" or p.startswith("/api/"):
        p = p[len("/api"):] or "/"
    if len(p) > 1:
        p = p.rstrip("/")
    if not any(p == root or p.startswith(root + "/") for root in KNOWN_ROOTS):
        p = CANONICAL_ROOT if p == "/" else CANONICAL_ROOT + p
    while p == "/admin/admin" or p.startswith("/admin/admin/"):
        p = p[len("/admin"):]
    return p


def normalize_path(path: Any) -> str:
    """Canonical endpoint path. Idempotent: `normalize_path(normalize_path(p)) == normalize_path(p)`."""
    return _hyphenate(rooted_path(path))


def endpoint_key(method: Any, path: Any) -> str:
    return f"{normalize_method(method)} {normalize_path(path)}"


def _underscored(key: str) -> str:
    method, _, path = key.partition(" ")
    parts = _PARAM_RE.split(path)
    return method + " " + "".join(p if _PARAM_RE.fullmatch(p) else p.replace("-", "_") for p in parts)


def _shape(key: str) -> str:
    """Key with every path parameter collapsed, so `{id}` matches `{product_id}` or `:id`."""
    return _PARAM_RE.sub("{}", key)


def _swap_number(segment: str) -> List[str]:
    out: List[str] = []
    if segment.endswith("ies"):
        out.append(segment[:-3] + "y")
    elif segment.endswith("es") and segment[:-2].endswith(("s", "x", "ch", "sh")):
        out.append(segment[:-2])
    elif segment.endswith("s"):
        out.append(segment[:-1])
    else:
        if segment.endswith("y") and len(segment) > 1 and segment[-2] not in "aeiou":
            out.append(segment[:-1] + "ies")
        elif segment.endswith(("s", "x", "ch", "sh")):
            out.append(segment + "es")
        else:
            out.append(segment + "s")
    return out


@dataclass(frozen=True)
class CatalogIndex:
    """Immutable snapshot of allowed (method, path) pairs."""

    keys: FrozenSet[str] = frozenset()
    shapes: FrozenSet[str] = frozenset()
    endpoints: tuple = ()
    built_at: float = 0.0
    error: Optional[str] = None

    @classmethod
    def from_endpoints(cls, endpoints: Iterable[Any], *, built_at: float = 0.0) -> "CatalogIndex":
        merged: Dict[str, Endpoint] = {}
        keys = set()
        for raw in endpoints:
            ep = raw if isinstance(raw, Endpoint) else Endpoint(**_endpoint_fields(raw))
            method = normalize_method(ep.method)
            if method not in HTTP_METHODS:
                continue
            key = endpoint_key(method, ep.path)
            keys.add(key)
            # Keep the underscored variant too; catalogs drift between spellings.
            keys.add(_underscored(key))
            if key not in merged:
                merged[key] = Endpoint(
                    method=method,
                    path=normalize_path(ep.path),
                    summary=ep.summary,
                    description=ep.description,
                )
        shapes = frozenset(_shape(k) for k in keys)
        return cls(keys=frozenset(keys), shapes=shapes, endpoints=tuple(merged.values()), built_at=built_at)

    @property
    def size(self) -> int:
        return len(self.endpoints)

    @property
    def is_empty(self) -> bool:
        return self.size == 0

    def has(self, method: Any, path: Any) -> bool:
        key = endpoint_key(method, path)
        if key in self.keys or _underscored(key) in self.keys:
            return True
        return _shape(key) in self.shapes or _shape(_underscored(key)) in self.shapes

    def methods_for(self, path: Any) -> List[str]:
        return [m for m in HTTP_METHODS if self.has(m, path)]

    def fill_template(self, method: Any, path: Any) -> Optional[str]:
        """Concrete `path` when it fills the parameter slots of an indexed template.

        Literal segments must match the template (`_` and `-` are interchangeable);
        segments in parameter positions are kept exactly as given, so
        `/admin/products/prod_123` fills `/admin/products/{id}` unchanged. The
        segment count never changes.
        """
        m = normalize_method(method)
        segments = rooted_path(path).split("/")
        best: Optional[List[str]] = None
        best_literals = -1
        for ep in self.endpoints:
            if ep.method != m:
                continue
            template = ep.path.split("/")
            filled = _fill_segments(template, segments)
            if filled is None:
                continue
            literals = sum(1 for t in template if not _PARAM_RE.fullmatch(t))
            if literals > best_literals:
                best, best_literals = filled, literals
        return "/".join(best) if best is not None else None

    def alias_candidates(self, path: Any) -> List[str]:
        """Alternative spellings of `path` (alias table, singular/plural swaps)."""
        segments = rooted_path(path).split("/")
        # ["", "admin", "<resource>", ...]
        if len(segments) < 3:
            return []
        resource = _hyphenate(segments[2])
        names: List[str] = []
        alias = RESOURCE_ALIASES.get(resource)
        if alias:
            names.append(alias)
        names.extend(_swap_number(resource))
        if alias:
            names.extend(_swap_number(alias))
        out: List[str] = []
        for name in names:
            if not name or name == resource:
                continue
            candidate = "/".join(segments[:2] + [name] + segments[3:])
            if candidate not in out:
                out.append(candidate)
        return out

    def resolve_alias(self, method: Any, path: Any) -> Optional[str]:
        """Approved path for `(method, path)` or one of its aliases; `None` when nothing is indexed.

        Template paths come back normalized; concrete paths keep the caller's ids.
        """
        norm = normalize_path(path)
        if self.has(method, norm):
            return norm
        filled = self.fill_template(method, path)
        if filled is not None:
            return filled
        for candidate in self.alias_candidates(path):
            if self.has(method, candidate):
                return normalize_path(candidate)
            filled = self.fill_template(method, candidate)
            if filled is not None:
                return filled
        return None


def _fill_segments(template: List[str], segments: List[str]) -> Optional[List[str]]:
    if len(template) != len(segments) or not any(_PARAM_RE.fullmatch(t) for t in template):
        return None
    filled: List[str] = []
    for want, got in zip(template, segments):
        if _PARAM_RE.fullmatch(want):
            if not got:
                return None
            filled.append(got)
        elif got.replace("_", "-") == want.replace("_", "-"):
            filled.append(want)
        else:
            return None
    return filled


def align_path(template: Any, path: Any) -> Optional[str]:
    """`template` with its parameter slots taken from `path`'s segments.

    `None` when the segment counts differ, so a correction never drops or adds
    an id.
    """
    want = normalize_path(template).split("/")
    got = rooted_path(path).split("/")
    if len(want) != len(got):
        return None
    return "/".join(g if _PARAM_RE.fullmatch(w) else w for w, g in zip(want, got))


def _endpoint_fields(raw: Any) -> Dict[str, Any]:
    if isinstance(raw, dict):
        return {
            "method": str(raw.get("method") or raw.get("verb") or ""),
            "path": str(raw.get("path") or raw.get("url") or ""),
            "summary": raw.get("summary"),
            "description": raw.get("description"),
        }
    method, path = raw
    return {"method": str(method), "path": str(path)}


@dataclass
class CatalogService:
    """TTL cache around a `CatalogSource` (default TTL: 5 minutes)."""

    source: Optional[CatalogSource]
    ttl_seconds: float = 300.0
    clock: Callable[[], float] = time.monotonic
    _snapshot: Optional[CatalogIndex] = field(default=None, init=False, repr=False)

    def invalidate(self) -> None:
        self._snapshot = None

    def is_fresh(self) -> bool:
        snap = self._snapshot
        return snap is not None and (self.clock() - snap.built_at) < self.ttl_seconds

    async def index(self, *, force: bool = False) -> CatalogIndex:
        if not force and self.is_fresh():
            return self._snapshot  # type: ignore[return-value]
        snapshot = await self.rebuild()
        return snapshot

    async def rebuild(self) -> CatalogIndex:
        now = self.clock()
        try:
            if self.source is None:
                raise CatalogUnavailable("No catalog source configured")
            raw = await self.source.fetch()
            endpoints = extract_endpoints(raw)
            snapshot = CatalogIndex.from_endpoints(endpoints, built_at=now)
            logger.info(f"Catalog index rebuilt with {snapshot.size} endpoints")
        except CatalogUnavailable as e:
            logger.warning(f"Catalog unavailable, validation disabled: {e}")
            snapshot = CatalogIndex(built_at=now, error=str(e))
        except Exception as e:
            logger.warning(f"Catalog fetch failed, validation disabled: {e}")
            snapshot = CatalogIndex(built_at=now, error=str(e))
        # Last writer wins; rebuilds are pure fetch-and-replace.
        self._snapshot = snapshot
        return snapshot
