from __future__ import annotations

from commerceflow.catalog import CatalogIndex
from commerceflow.planning.dependencies import kebab_case, plan_dependencies, resource_for_key


def test_resource_for_key() -> None:
    assert resource_for_key("product_id") == "products"
    assert resource_for_key("category_ids") == "product-categories"
    assert resource_for_key("customerId") == "customers"
    assert kebab_case("inventory_item") == "inventory-item"


def test_empty_product_id_suggests_one_list_call(catalog_endpoints) -> None:
    index = CatalogIndex.from_endpoints(catalog_endpoints)
    plan = plan_dependencies("POST", "/admin/inventory-items", {"product_id": None}, index)

    assert [r.to_dict() for r in plan.next] == [
        {
            "method": "GET",
            "path": "/admin/products",
            "body": {"limit": 50},
            "openapi": {"method": "GET", "path": "/admin/products"},
        }
    ]


def test_hint_fields_become_a_search_query(catalog_endpoints) -> None:
    index = CatalogIndex.from_endpoints(catalog_endpoints)
    plan = plan_dependencies("POST", "/admin/inventory-items", {"product_id": "", "sku": "TSHIRT-M"}, index)
    assert plan.next[0].body == {"limit": 50, "q": "TSHIRT-M"}


def test_filled_ids_and_reads_need_nothing(catalog_endpoints) -> None:
    index = CatalogIndex.from_endpoints(catalog_endpoints)
    assert plan_dependencies("POST", "/admin/inventory-items", {"product_id": "prod_1"}, index).next == []
    assert plan_dependencies("GET", "/admin/products", {"product_id": None}, index).next == []


def test_unknown_list_endpoint_is_a_note(catalog_endpoints) -> None:
    index = CatalogIndex.from_endpoints(catalog_endpoints)
    plan = plan_dependencies("POST", "/admin/orders", {"warehouse_id": None}, index)
    assert plan.next == []
    assert plan.notes and "warehouse_id" in plan.notes[0]


def test_empty_catalog_is_permissive_but_flagged() -> None:
    plan = plan_dependencies("POST", "/admin/inventory-items", {"product_id": None}, CatalogIndex())
    assert [r.path for r in plan.next] == ["/admin/products"]
    assert "unverified" in plan.notes[0]
