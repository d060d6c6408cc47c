from __future__ import annotations

import asyncio

import httpx
import pytest

from commerceflow.backend import HttpCommerceBackend
from commerceflow.errors import UpstreamCallFailure


def test_requests_carry_token_and_flattened_query() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = request.url
        seen["auth"] = request.headers.get("authorization")
        return httpx.Response(200, json={"products": [], "count": 0})

    backend = HttpCommerceBackend("http://shop.test/", token="tok", transport=httpx.MockTransport(handler))
    result = asyncio.run(
        backend.request("get", "/admin/products", query={"limit": 10, "fields": ["id", "title"], "filters": {"status": "draft"}, "q": ""})
    )

    assert result == {"products": [], "count": 0}
    assert seen["auth"] == "Bearer tok"
    assert seen["url"].path == "/admin/products"
    assert dict(seen["url"].params) == {"limit": "10", "fields": "id,title", "filters[status]": "draft"}


def test_error_status_raises_upstream_failure() -> None:
    backend = HttpCommerceBackend(
        "http://shop.test",
        transport=httpx.MockTransport(lambda request: httpx.Response(404, text="not found")),
    )
    with pytest.raises(UpstreamCallFailure) as exc:
        asyncio.run(backend.request("DELETE", "/admin/products/p1"))
    assert exc.value.status_code == 404


def test_empty_body_is_none_and_workflow_payload() -> None:
    bodies = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append((request.url.path, request.content))
        return httpx.Response(204)

    backend = HttpCommerceBackend("http://shop.test", transport=httpx.MockTransport(handler))
    assert asyncio.run(backend.run_workflow("sync-order", {"id": "o1"}, wait=False)) is None
    assert bodies[0][0] == "/admin/workflows/sync-order/run"
    assert b'"wait_for_completion":false' in bodies[0][1].replace(b" ", b"")
