from __future__ import annotations

import asyncio
import base64

import httpx

from commerceflow.catalog import CatalogIndex, CatalogService, HttpCatalogSource, StaticCatalogSource
from commerceflow.catalog.index import align_path, normalize_path
from commerceflow.catalog.source import basic_auth_header, extract_endpoints


class _Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class _CountingSource:
    def __init__(self, endpoints) -> None:
        self.endpoints = endpoints
        self.calls = 0

    async def fetch(self):
        self.calls += 1
        return self.endpoints


def test_normalize_path_is_idempotent() -> None:
    samples = [
        "products",
        "/api/admin/products/",
        "//admin//inventory_items?limit=5",
        "/admin/admin/orders#top",
        "/store/carts/{cart_id}/line_items",
        "/admin/products/:product_id",
        "/",
        "/administrators",
        "admin_users",
        "/admin-settings",
        "/admin/admin",
    ]
    for raw in samples:
        once = normalize_path(raw)
        assert normalize_path(once) == once

    assert normalize_path("products") == "/admin/products"
    assert normalize_path("/api/admin/products/") == "/admin/products"
    assert normalize_path("//admin//inventory_items?limit=5") == "/admin/inventory-items"
    assert normalize_path("/store/carts/{cart_id}/line_items") == "/store/carts/{cart_id}/line-items"
    assert normalize_path("/administrators") == "/admin/administrators"
    assert normalize_path("admin_users") == "/admin/admin-users"
    assert normalize_path("/admin-settings") == "/admin/admin-settings"
    assert normalize_path("/admin/admin/orders") == "/admin/orders"
    assert normalize_path("/admin/admin") == "/admin"


def test_underscore_and_alias_lookups(catalog_endpoints) -> None:
    index = CatalogIndex.from_endpoints(catalog_endpoints)
    assert index.has("GET", "/admin/inventory-items")
    assert index.has("get", "/admin/inventory_items")
    assert index.resolve_alias("GET", "/admin/inventory") == "/admin/inventory-items"
    assert index.resolve_alias("GET", "/admin/categories") == "/admin/product-categories"
    assert index.resolve_alias("GET", "/admin/product") == "/admin/products"
    assert index.resolve_alias("GET", "/admin/warehouses") is None


def test_path_parameters_match_by_shape(catalog_endpoints) -> None:
    index = CatalogIndex.from_endpoints(catalog_endpoints)
    assert index.has("GET", "/admin/products/{product_id}")
    assert index.has("DELETE", "/admin/products/:id")
    assert not index.has("PUT", "/admin/products/{id}")
    assert index.methods_for("/admin/products/{id}") == ["GET", "POST", "DELETE"]


def test_catalog_service_caches_until_ttl_expires(catalog_endpoints) -> None:
    clock = _Clock()
    source = _CountingSource(catalog_endpoints)
    service = CatalogService(source, ttl_seconds=300, clock=clock)

    first = asyncio.run(service.index())
    assert first.size == len(catalog_endpoints)
    asyncio.run(service.index())
    assert source.calls == 1

    clock.now += 299
    asyncio.run(service.index())
    assert source.calls == 1

    clock.now += 2
    asyncio.run(service.index())
    assert source.calls == 2

    asyncio.run(service.index(force=True))
    assert source.calls == 3


def test_unreachable_catalog_degrades_to_empty_index() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, json={"message": "down"})

    source = HttpCatalogSource("http://catalog.test/endpoints", transport=httpx.MockTransport(handler))
    index = asyncio.run(CatalogService(source).index())
    assert index.is_empty
    assert "503" in (index.error or "")


def test_missing_source_is_an_empty_index() -> None:
    index = asyncio.run(CatalogService(None).index())
    assert index.is_empty
    assert index.error


def test_http_source_sends_basic_auth_and_parses_openapi() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers.get("authorization")
        return httpx.Response(
            200,
            json={
                "openapi": {
                    "paths": {
                        "/admin/products": {"get": {"summary": "List products"}, "post": {"operationId": "createProduct"}},
                        "/admin/orders/{id}": {"get": {}, "parameters": []},
                    }
                }
            },
        )

    source = HttpCatalogSource("http://catalog.test/openapi.json", token="sk_123", transport=httpx.MockTransport(handler))
    index = asyncio.run(CatalogService(source).index())

    expected = "Basic " + base64.b64encode(b"sk_123:").decode("ascii")
    assert seen["auth"] == expected
    assert sorted(e.key for e in index.endpoints) == [
        "GET /admin/orders/{id}",
        "GET /admin/products",
        "POST /admin/products",
    ]


def test_auth_header_override_is_sent_verbatim() -> None:
    source = HttpCatalogSource("http://catalog.test", token="ignored", auth_header="Bearer abc")
    assert source.headers()["Authorization"] == "Bearer abc"
    assert basic_auth_header("Basic xyz") == "Basic xyz"
    assert basic_auth_header("") is None


def test_extract_endpoints_flat_shapes() -> None:
    assert extract_endpoints({"endpoints": [{"method": "get", "path": "/admin/orders"}]}) == [
        {"method": "GET", "path": "/admin/orders", "summary": None, "description": None}
    ]
    assert extract_endpoints({"data": {"routes": ["POST /admin/customers"]}}) == [
        {"method": "POST", "path": "/admin/customers"}
    ]
    assert extract_endpoints("nonsense") == []


def test_static_source_feeds_the_service(catalog_endpoints) -> None:
    index = asyncio.run(CatalogService(StaticCatalogSource(catalog_endpoints)).index())
    assert index.has("POST", "/admin/customers")


def test_concrete_ids_fill_template_slots_unchanged(catalog_endpoints) -> None:
    index = CatalogIndex.from_endpoints(catalog_endpoints)
    assert index.fill_template("DELETE", "/admin/products/prod_123") == "/admin/products/prod_123"
    assert index.fill_template("POST", "api/admin/products/p1/") == "/admin/products/p1"
    assert index.fill_template("PUT", "/admin/products/p1") is None
    assert index.fill_template("GET", "/admin/products/p1/variants") is None
    assert index.resolve_alias("GET", "/admin/product/prod_123") == "/admin/products/prod_123"


def test_align_path_keeps_segment_count() -> None:
    assert align_path("/admin/products/{id}", "/admin/produkts/prod_1") == "/admin/products/prod_1"
    assert align_path("/admin/products", "/admin/products/prod_1") is None
