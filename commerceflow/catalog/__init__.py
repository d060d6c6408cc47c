"""Endpoint catalog: sources, the cached index and retrieval."""

from .index import (
    RESOURCE_ALIASES,
    CatalogIndex,
    CatalogService,
    endpoint_key,
    normalize_method,
    normalize_path,
    rooted_path,
)
from .search import EndpointRetriever, LexicalRetriever, infer_method, search_endpoints, suggest_endpoints
from .source import CatalogSource, HttpCatalogSource, StaticCatalogSource, basic_auth_header, extract_endpoints

__all__ = [
    "CatalogIndex",
    "CatalogService",
    "CatalogSource",
    "EndpointRetriever",
    "HttpCatalogSource",
    "LexicalRetriever",
    "RESOURCE_ALIASES",
    "StaticCatalogSource",
    "basic_auth_header",
    "endpoint_key",
    "extract_endpoints",
    "infer_method",
    "normalize_method",
    "normalize_path",
    "rooted_path",
    "search_endpoints",
    "suggest_endpoints",
]
