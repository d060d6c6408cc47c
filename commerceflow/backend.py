"""Client for the commerce data/workflow backend.

The backend owns entities, workflows and notifications; operation handlers only
ever talk to it through the `CommerceBackend` protocol, so tests (and the CLI's
dry-run mode) can swap in an in-memory implementation.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Protocol

import httpx

from .errors import UpstreamCallFailure

logger = logging.getLogger(__name__)


class CommerceBackend(Protocol):
    async def request(
        self,
        method: str,
        path: str,
        body: Optional[Dict[str, Any]] = None,
        query: Optional[Dict[str, Any]] = None,
    ) -> Any: ...

    async def run_workflow(self, name: str, input: Any, *, wait: bool = True) -> Any: ...

    async def run_flow(self, flow_id: str, input: Any, *, wait: bool = True) -> Any: ...

    async def send_notification(
        self,
        channel: str,
        to: Any,
        message: Any,
        data: Optional[Dict[str, Any]] = None,
    ) -> Any: ...


def _query_params(query: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for k, v in (query or {}).items():
        if v is None or v == "" or v == [] or v == {}:
            continue
        if isinstance(v, dict):
            # Filters go out as `filters[field]=value`.
            for sub_k, sub_v in v.items():
                if sub_v is not None:
                    out[f"{k}[{sub_k}]"] = sub_v
        elif isinstance(v, (list, tuple)):
            out[k] = ",".join(str(x) for x in v)
        else:
            out[k] = v
    return out


class HttpCommerceBackend:
    """httpx-based backend client (`COMMERCEFLOW_BACKEND_URL` / `_TOKEN`)."""

    def __init__(
        self,
        base_url: str,
        *,
        token: Optional[str] = None,
        timeout_s: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = str(base_url or "").rstrip("/")
        self.token = token
        self.timeout_s = timeout_s
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def request(
        self,
        method: str,
        path: str,
        body: Optional[Dict[str, Any]] = None,
        query: Optional[Dict[str, Any]] = None,
    ) -> Any:
        m = str(method or "GET").upper()
        url = f"{self.base_url}/{str(path or '').lstrip('/')}"
        kwargs: Dict[str, Any] = {"headers": self._headers(), "params": _query_params(query)}
        if body is not None and m != "GET":
            kwargs["json"] = body
        try:
            async with httpx.AsyncClient(timeout=self.timeout_s, transport=self._transport) as client:
                resp = await client.request(m, url, **kwargs)
        except httpx.HTTPError as e:
            raise UpstreamCallFailure(f"{m} {path} failed: {e}") from e

        if resp.status_code >= 400:
            detail = resp.text[:500]
            raise UpstreamCallFailure(f"{m} {path} returned HTTP {resp.status_code}: {detail}", status_code=resp.status_code)
        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError:
            return resp.text

    async def run_workflow(self, name: str, input: Any, *, wait: bool = True) -> Any:
        logger.info(f"Triggering workflow '{name}' (wait={wait})")
        return await self.request("POST", f"/admin/workflows/{name}/run", {"input": input, "wait_for_completion": wait})

    async def run_flow(self, flow_id: str, input: Any, *, wait: bool = True) -> Any:
        logger.info(f"Triggering flow '{flow_id}' via backend (wait={wait})")
        return await self.request("POST", f"/admin/visual-flows/{flow_id}/execute", {"trigger_data": input, "wait_for_completion": wait})

    async def send_notification(
        self,
        channel: str,
        to: Any,
        message: Any,
        data: Optional[Dict[str, Any]] = None,
    ) -> Any:
        payload = {"channel": channel, "to": to, "message": message, "data": data or {}}
        return await self.request("POST", "/admin/notifications", payload)
