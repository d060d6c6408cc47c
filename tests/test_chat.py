from __future__ import annotations

import asyncio

from commerceflow.catalog import CatalogIndex, CatalogService, StaticCatalogSource
from commerceflow.models import ChatRequest
from commerceflow.planning.chat import (
    DEFAULT_RESOURCE_ID,
    TOOL_NAME,
    ChatPlanner,
    extract_tool_calls,
    is_small_talk,
    parse_explicit_request,
)


class _FakeNarrator:
    def __init__(self, text: str) -> None:
        self.text = text
        self.calls = 0

    async def narrate(self, message, *, system, context=None) -> str:
        self.calls += 1
        return self.text


def _plan(planner: ChatPlanner, message: str, **kwargs):
    return asyncio.run(planner.plan(ChatRequest(message=message, **kwargs)))


def test_small_talk_has_no_tool_calls(catalog_endpoints) -> None:
    planner = ChatPlanner(CatalogIndex.from_endpoints(catalog_endpoints))
    response = _plan(planner, "hi")
    assert response.toolCalls == []
    assert response.activations == []
    assert response.resourceId == DEFAULT_RESOURCE_ID
    assert response.threadId


def test_small_talk_detection() -> None:
    assert is_small_talk("Hello!")
    assert is_small_talk("thanks")
    assert not is_small_talk("hi, list all products please")
    assert not is_small_talk("GET /admin/products")


def test_explicit_request_is_planned_not_executed(catalog_endpoints) -> None:
    planner = ChatPlanner(CatalogIndex.from_endpoints(catalog_endpoints))
    response = _plan(planner, "GET /admin/products", threadId="t-1", resourceId="ai:tests")

    assert len(response.toolCalls) == 1
    call = response.toolCalls[0]
    assert call.name == TOOL_NAME
    assert call.arguments == {
        "method": "GET",
        "path": "/admin/products",
        "openapi": {"method": "GET", "path": "/admin/products"},
    }
    assert response.activations[0].result["status"] == "planned"
    assert response.threadId == "t-1"
    assert response.resourceId == "ai:tests"
    assert "Nothing has been executed yet." in response.reply


def test_write_request_carries_dependency_suggestions(catalog_endpoints) -> None:
    planner = ChatPlanner(CatalogIndex.from_endpoints(catalog_endpoints))
    response = _plan(planner, 'POST /admin/inventory-items {"product_id": null}')

    assert response.toolCalls[0].arguments["body"] == {"product_id": None}
    result = response.activations[0].result
    assert result["next"] == [
        {
            "method": "GET",
            "path": "/admin/products",
            "body": {"limit": 50},
            "openapi": {"method": "GET", "path": "/admin/products"},
        }
    ]
    assert "Suggested first:" in response.reply


def test_unknown_endpoint_yields_invalid_activation(catalog_endpoints) -> None:
    planner = ChatPlanner(CatalogIndex.from_endpoints(catalog_endpoints))
    response = _plan(planner, "POST /admin/warehouses")

    assert response.toolCalls == []
    activation = response.activations[0]
    assert activation.result["status"] == "invalid_endpoint"
    assert activation.result["suggestions"] == []


def test_near_miss_is_corrected_to_catalog_path(catalog_endpoints) -> None:
    planner = ChatPlanner(CatalogIndex.from_endpoints(catalog_endpoints))
    response = _plan(planner, "GET /admin/product-list")

    assert response.toolCalls[0].arguments["path"] == "/admin/products"
    assert response.activations[0].result["notes"]


def test_alias_is_resolved(catalog_endpoints) -> None:
    planner = ChatPlanner(CatalogIndex.from_endpoints(catalog_endpoints))
    response = _plan(planner, "GET /admin/inventory")
    assert response.toolCalls[0].arguments["path"] == "/admin/inventory-items"


def test_natural_language_uses_retrieval(catalog_endpoints) -> None:
    service = CatalogService(StaticCatalogSource(catalog_endpoints))
    planner = ChatPlanner(service)
    response = _plan(planner, "list all products")
    assert response.toolCalls[0].arguments["method"] == "GET"
    assert response.toolCalls[0].arguments["path"] == "/admin/products"


def test_empty_catalog_passes_explicit_requests_with_a_note() -> None:
    planner = ChatPlanner(CatalogIndex())
    response = _plan(planner, "DELETE /admin/products/p1")
    assert response.toolCalls[0].arguments["path"] == "/admin/products/p1"
    assert any("not verified" in n for n in response.activations[0].result["notes"])


def test_explicit_delete_keeps_the_concrete_id(catalog_endpoints) -> None:
    planner = ChatPlanner(CatalogIndex.from_endpoints(catalog_endpoints))
    response = _plan(planner, "DELETE /admin/products/prod_123")

    assert response.toolCalls[0].arguments == {
        "method": "DELETE",
        "path": "/admin/products/prod_123",
        "openapi": {"method": "DELETE", "path": "/admin/products/prod_123"},
    }
    assert "notes" not in response.activations[0].result


def test_explicit_update_is_not_turned_into_a_create(catalog_endpoints) -> None:
    planner = ChatPlanner(CatalogIndex.from_endpoints(catalog_endpoints))
    response = _plan(planner, 'POST /admin/products/p1 {"title": "x"}')

    arguments = response.toolCalls[0].arguments
    assert arguments["method"] == "POST"
    assert arguments["path"] == "/admin/products/p1"
    assert arguments["body"] == {"title": "x"}

    response = _plan(planner, "GET /admin/products/prod_123")
    assert response.toolCalls[0].arguments["path"] == "/admin/products/prod_123"


def test_correction_never_changes_the_segment_count(catalog_endpoints) -> None:
    planner = ChatPlanner(CatalogIndex.from_endpoints(catalog_endpoints))
    response = _plan(planner, "GET /admin/products/p1/variants")

    assert response.toolCalls == []
    result = response.activations[0].result
    assert result["status"] == "invalid_endpoint"
    assert result["request"]["path"] == "/admin/products/p1/variants"
    assert {"method": "GET", "path": "/admin/products/{id}"} in result["suggestions"]


def test_narrator_tool_call_is_validated(catalog_endpoints) -> None:
    narrator = _FakeNarrator(
        "Sure, here is the request.\n"
        "```json\n"
        '{"toolCalls": [{"name": "admin_api_request", "arguments": {"method": "get", "path": "/admin/categories"}}]}\n'
        "```"
    )
    planner = ChatPlanner(CatalogIndex.from_endpoints(catalog_endpoints), narrator=narrator)
    response = _plan(planner, "which categories do we have?")

    assert narrator.calls == 1
    assert response.toolCalls[0].arguments["path"] == "/admin/product-categories"
    assert response.reply.startswith("Planned request: GET /admin/product-categories")


def test_executed_response_is_summarized(catalog_endpoints) -> None:
    planner = ChatPlanner(CatalogIndex.from_endpoints(catalog_endpoints))
    response = _plan(
        planner,
        "done",
        context={
            "executed_request": {"method": "get", "path": "/admin/products"},
            "executed_response": {"products": [{"id": "p1"}, {"id": "p2"}], "limit": 50},
        },
    )
    assert response.toolCalls == []
    assert response.reply == "Executed GET /admin/products. Returned 2 products."


def test_parsing_helpers() -> None:
    assert parse_explicit_request('please POST /admin/customers {"email": "a@b.c"} now') == (
        "POST",
        "/admin/customers",
        {"email": "a@b.c"},
    )
    assert parse_explicit_request("list everything") is None
    assert extract_tool_calls('{"toolCalls": []}') == []
    assert extract_tool_calls("no json here") == []
