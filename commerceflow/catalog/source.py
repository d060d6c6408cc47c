"""Catalog sources: where the endpoint list comes from.

Two shapes are accepted from a remote catalog:
- a flat array (`endpoints` / `routes` / `items`, optionally nested under `data`)
  of `{method, path, summary?, description?}` objects
- an OpenAPI document (`paths`, also under `spec` / `openapi` / `data`)
"""

from __future__ import annotations

import base64
import logging
from typing import Any, Dict, Iterable, List, Optional, Protocol

import httpx

from ..errors import CatalogUnavailable

logger = logging.getLogger(__name__)


_OPENAPI_METHODS = ("get", "post", "put", "patch", "delete")
_FLAT_KEYS = ("endpoints", "routes", "items")


class CatalogSource(Protocol):
    async def fetch(self) -> Any: ...


class StaticCatalogSource:
    """Explicit allow-list (or a pre-loaded catalog document)."""

    def __init__(self, endpoints: Any):
        self._payload = endpoints

    async def fetch(self) -> Any:
        if isinstance(self._payload, list):
            return {"endpoints": list(self._payload)}
        return self._payload


def basic_auth_header(token: Optional[str]) -> Optional[str]:
    """`Basic base64(token:)` unless the token already carries a scheme."""
    raw = str(token or "").strip()
    if not raw:
        return None
    if raw.lower().startswith("basic "):
        return raw
    encoded = base64.b64encode(f"{raw}:".encode("utf-8")).decode("ascii")
    return f"Basic {encoded}"


class HttpCatalogSource:
    """Fetch the catalog document over HTTP (httpx)."""

    def __init__(
        self,
        url: str,
        *,
        token: Optional[str] = None,
        auth_header: Optional[str] = None,
        timeout_s: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self.token = token
        self.auth_header = auth_header
        self.timeout_s = timeout_s
        self._transport = transport

    def headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        auth = (self.auth_header or "").strip() or basic_auth_header(self.token)
        if auth:
            headers["Authorization"] = auth
        return headers

    async def fetch(self) -> Any:
        try:
            async with httpx.AsyncClient(timeout=self.timeout_s, transport=self._transport) as client:
                resp = await client.get(self.url, headers=self.headers())
        except httpx.HTTPError as e:
            raise CatalogUnavailable(f"Catalog request to {self.url} failed: {e}") from e
        if resp.status_code >= 400:
            raise CatalogUnavailable(f"Catalog request to {self.url} returned HTTP {resp.status_code}")
        try:
            return resp.json()
        except ValueError as e:
            raise CatalogUnavailable(f"Catalog response from {self.url} is not JSON") from e


def _flat_items(payload: Dict[str, Any]) -> Optional[List[Any]]:
    for key in _FLAT_KEYS:
        value = payload.get(key)
        if isinstance(value, list):
            return value
    return None


def _openapi_paths(payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    if isinstance(payload.get("paths"), dict):
        return payload["paths"]
    for key in ("spec", "openapi", "data"):
        nested = payload.get(key)
        if isinstance(nested, dict) and isinstance(nested.get("paths"), dict):
            return nested["paths"]
    return None


def _from_openapi(paths: Dict[str, Any]) -> List[Dict[str, Any]]:
    out: List[Dict[str, Any]] = []
    for path, ops in paths.items():
        if not isinstance(ops, dict):
            continue
        for method in _OPENAPI_METHODS:
            op = ops.get(method)
            if op is None:
                continue
            op = op if isinstance(op, dict) else {}
            out.append(
                {
                    "method": method.upper(),
                    "path": str(path),
                    "summary": op.get("summary") or op.get("operationId"),
                    "description": op.get("description"),
                }
            )
    return out


def _from_flat(items: Iterable[Any]) -> List[Dict[str, Any]]:
    out: List[Dict[str, Any]] = []
    for item in items:
        if isinstance(item, str):
            parts = item.split(None, 1)
            if len(parts) == 2:
                out.append({"method": parts[0].upper(), "path": parts[1]})
            continue
        if not isinstance(item, dict):
            continue
        method = item.get("method") or item.get("verb")
        path = item.get("path") or item.get("url")
        if not method or not path:
            continue
        out.append(
            {
                "method": str(method).upper(),
                "path": str(path),
                "summary": item.get("summary") or item.get("name"),
                "description": item.get("description"),
            }
        )
    return out


def extract_endpoints(payload: Any) -> List[Dict[str, Any]]:
    """Normalize a raw catalog payload into `{method, path, summary, description}` dicts."""
    if isinstance(payload, list):
        return _from_flat(payload)
    if not isinstance(payload, dict):
        return []

    items = _flat_items(payload)
    if items is None and isinstance(payload.get("data"), dict):
        items = _flat_items(payload["data"])
    if items is None and isinstance(payload.get("data"), list):
        items = payload["data"]
    if items is not None:
        return _from_flat(items)

    paths = _openapi_paths(payload)
    if paths is not None:
        return _from_openapi(paths)

    logger.warning("Catalog payload has no recognizable endpoint list")
    return []
