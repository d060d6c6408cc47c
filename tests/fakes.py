"""In-memory stand-ins shared by the engine and web tests."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

from commerceflow.errors import UpstreamCallFailure


class FakeBackend:
    """Records every call; GET list endpoints answer from `collections`."""

    def __init__(self, collections: Optional[Dict[str, List[Dict[str, Any]]]] = None, failing_ids: Tuple[str, ...] = ()):
        self.collections = collections or {}
        self.failing_ids = set(failing_ids)
        self.calls: List[Tuple[str, str, Any]] = []

    async def request(self, method: str, path: str, body: Optional[Dict[str, Any]] = None, query: Optional[Dict[str, Any]] = None) -> Any:
        self.calls.append((method, path, body if body is not None else query))
        parts = [p for p in path.split("/") if p]
        resource = parts[1] if len(parts) > 1 else ""
        item_id = parts[2] if len(parts) > 2 else None
        if item_id in self.failing_ids:
            raise UpstreamCallFailure(f"{method} {path} returned HTTP 404", status_code=404)
        if method == "GET" and item_id is None:
            items = self.collections.get(resource, [])
            return {resource.replace("-", "_"): items, "count": len(items)}
        if method == "GET":
            for item in self.collections.get(resource, []):
                if item.get("id") == item_id:
                    return {"item": item}
            raise UpstreamCallFailure(f"{method} {path} returned HTTP 404", status_code=404)
        if method == "DELETE":
            return None
        return {"id": item_id or "new_1", **(body or {})}

    async def run_workflow(self, name: str, input: Any, *, wait: bool = True) -> Any:
        self.calls.append(("WORKFLOW", name, input))
        return {"workflow": name, "status": "done" if wait else "started"}

    async def run_flow(self, flow_id: str, input: Any, *, wait: bool = True) -> Any:
        self.calls.append(("FLOW", flow_id, input))
        return {"flow_id": flow_id, "status": "started"}

    async def send_notification(self, channel: str, to: Any, message: Any, data: Optional[Dict[str, Any]] = None) -> Any:
        self.calls.append(("NOTIFY", channel, {"to": to, "message": message, "data": data}))
        return {"channel": channel, "sent": True}
