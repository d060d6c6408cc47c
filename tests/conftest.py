"""CommerceFlow test bootstrap.

Tests import both `commerceflow` and `web.backend` from the repository root,
so the root goes on `sys.path` ahead of any installed copy.
"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest


def _prepend_sys_path(path: Path) -> None:
    p = str(path)
    if p and p not in sys.path:
        sys.path.insert(0, p)


HERE = Path(__file__).resolve()
REPO_ROOT = HERE.parents[1]

_prepend_sys_path(REPO_ROOT)


CATALOG = [
    {"method": "GET", "path": "/admin/products", "summary": "List products"},
    {"method": "POST", "path": "/admin/products", "summary": "Create a product"},
    {"method": "GET", "path": "/admin/products/{id}", "summary": "Retrieve a product"},
    {"method": "POST", "path": "/admin/products/{id}", "summary": "Update a product"},
    {"method": "DELETE", "path": "/admin/products/{id}", "summary": "Delete a product"},
    {"method": "GET", "path": "/admin/product-categories", "summary": "List product categories"},
    {"method": "GET", "path": "/admin/inventory_items", "summary": "List inventory items"},
    {"method": "POST", "path": "/admin/inventory-items", "summary": "Create an inventory item"},
    {"method": "GET", "path": "/admin/orders", "summary": "List orders"},
    {"method": "GET", "path": "/admin/customers", "summary": "List customers"},
    {"method": "POST", "path": "/admin/customers", "summary": "Create a customer"},
    {"method": "GET", "path": "/admin/api-keys", "summary": "List API keys for products access"},
]


@pytest.fixture
def catalog_endpoints():
    return [dict(e) for e in CATALOG]
