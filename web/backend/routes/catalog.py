"""Endpoint catalog routes (inspect, refresh and search the cached index)."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Query

from commerceflow.catalog import CatalogIndex
from commerceflow.catalog.search import search_endpoints

from ..models import CatalogSummary
from ..services.state import get_state

router = APIRouter(prefix="/catalog", tags=["catalog"])


def _summary(index: CatalogIndex) -> CatalogSummary:
    return CatalogSummary(
        size=index.size,
        error=index.error,
        built_at=index.built_at,
        endpoints=[ep.model_dump(exclude_none=True) for ep in index.endpoints],
    )


@router.get("", response_model=CatalogSummary)
async def get_catalog():
    """Current catalog snapshot (rebuilt when the TTL has expired)."""
    return _summary(await get_state().catalog.index())


@router.post("/refresh", response_model=CatalogSummary)
async def refresh_catalog():
    """Force a catalog rebuild."""
    return _summary(await get_state().catalog.index(force=True))


@router.get("/search")
async def search_catalog(
    q: str = Query(..., min_length=1),
    method: Optional[str] = None,
    top_k: int = Query(5, ge=1, le=50),
) -> List[Dict[str, Any]]:
    """Rank catalog endpoints against a natural-language query."""
    index = await get_state().catalog.index()
    return [hit.to_dict() for hit in search_endpoints(index, q, method=method, top_k=top_k)]
