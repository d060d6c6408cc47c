from __future__ import annotations

from pydantic import ValidationError as OptionsError
import pytest

from commerceflow.catalog import StaticCatalogSource
from commerceflow.config import Settings, allowed_env_vars, parse_allowlist
from commerceflow.engine.operations import ReadDataOptions, TriggerWorkflowOptions, entity_path
from commerceflow.services import build_catalog_service


def test_settings_from_env(monkeypatch) -> None:
    monkeypatch.setenv("COMMERCEFLOW_BACKEND_URL", "https://shop.example.com/")
    monkeypatch.setenv("COMMERCEFLOW_CATALOG_URL", "/admin/endpoints")
    monkeypatch.setenv("COMMERCEFLOW_CATALOG_TTL_S", "not a number")
    monkeypatch.setenv("COMMERCEFLOW_CODE_PACKAGES", "httpx, pydantic")
    monkeypatch.setenv("COMMERCEFLOW_ENV_ALLOWLIST", "STORE_NAME")
    monkeypatch.setenv("STORE_NAME", "Acme")
    monkeypatch.setenv("SECRET_KEY", "nope")

    settings = Settings.from_env()
    assert settings.backend_url == "https://shop.example.com"
    assert settings.catalog_url == "https://shop.example.com/admin/endpoints"
    assert settings.catalog_ttl_s == 300.0
    assert settings.code_packages == ("httpx", "pydantic")
    assert allowed_env_vars(settings) == {"STORE_NAME": "Acme"}


def test_allowlist_takes_precedence_over_remote_catalog() -> None:
    assert parse_allowlist("GET /admin/products, post /admin/orders, junk") == [
        {"method": "GET", "path": "/admin/products"},
        {"method": "POST", "path": "/admin/orders"},
    ]
    settings = Settings(catalog_url="http://catalog.test", catalog_allowlist=parse_allowlist("GET /admin/products"))
    assert isinstance(build_catalog_service(settings).source, StaticCatalogSource)


def test_options_coerce_editor_values() -> None:
    opts = ReadDataOptions.model_validate({"entity": "products", "id": 42, "fields": "id, title", "filters": '{"status": "published"}', "ui_x": 1})
    assert opts.id == "42"
    assert opts.fields == ["id", "title"]
    assert opts.filters == {"status": "published"}
    assert ReadDataOptions.model_validate({"entity": "products", "id": ""}).id is None

    with pytest.raises(OptionsError):
        TriggerWorkflowOptions.model_validate({})


def test_entity_path() -> None:
    assert entity_path("InventoryItems") == "/admin/inventory-items"
    assert entity_path("products", "p1") == "/admin/products/{id}"
