"""Lexical endpoint retrieval over a catalog snapshot.

Used by the chat planner to pick an endpoint for a natural-language request and
to correct/suggest paths that are not in the catalog. Retrieval is pluggable via
`EndpointRetriever`; the default is a lexical scorer with light stemming.
"""

from __future__ import annotations

from dataclasses import dataclass
import re
from typing import Any, Dict, List, Optional, Protocol, Set

from ..models import Endpoint
from .index import CatalogIndex, normalize_method, normalize_path


_TOKEN_RE = re.compile(r"[a-z0-9]+")
_LIST_WORDS = {"list", "all", "get", "show", "fetch", "find", "search"}
_STOPWORDS = {"the", "a", "an", "of", "for", "to", "in", "on", "with", "and", "me", "my", "please", "admin", "store"}

_METHOD_WORDS = (
    ("POST", {"create", "add", "make", "new", "register"}),
    ("PATCH", {"update", "edit", "modify", "patch", "change", "rename"}),
    ("PUT", {"put", "replace"}),
    ("DELETE", {"delete", "remove", "archive", "destroy"}),
)


def stem(token: str) -> str:
    return token[:-1] if len(token) > 4 and token.endswith("s") else token


def tokenize(text: Any) -> List[str]:
    tokens = _TOKEN_RE.findall(str(text or "").lower().replace("-", " ").replace("_", " "))
    return [stem(t) for t in tokens if t not in _STOPWORDS]


def infer_method(text: Any) -> str:
    """Guess an HTTP method from the verbs in a request."""
    words = set(_TOKEN_RE.findall(str(text or "").lower()))
    for method, verbs in _METHOD_WORDS:
        if words & verbs:
            return method
    return "GET"


@dataclass(frozen=True)
class ScoredEndpoint:
    endpoint: Endpoint
    score: float

    def to_dict(self) -> Dict[str, Any]:
        return {"method": self.endpoint.method, "path": self.endpoint.path, "score": self.score}


def _path_tokens(path: str) -> Set[str]:
    return {stem(t) for t in _TOKEN_RE.findall(path.lower().replace("-", " ")) if t not in _STOPWORDS}


def _haystack(endpoint: Endpoint) -> Set[str]:
    return set(tokenize(" ".join(filter(None, [endpoint.path, endpoint.summary, endpoint.description]))))


def score_endpoint(endpoint: Endpoint, tokens: List[str], method: Optional[str], raw_words: Set[str]) -> float:
    score = 0.0
    if method:
        score += 1.0 if endpoint.method == method else -2.0
    haystack = _haystack(endpoint)
    path_tokens = _path_tokens(endpoint.path)
    for tok in tokens:
        if tok in haystack:
            score += 1.0
        if len(tok) >= 3 and tok in path_tokens:
            score += 2.0
    if endpoint.method == "GET" and raw_words & _LIST_WORDS:
        score += 1.0
    # Product requests should land on the product resource, not on key management.
    if "product" in tokens:
        if endpoint.path.startswith("/admin/products"):
            score += 3.0
        if "api-keys" in endpoint.path:
            score -= 4.0
    return score


def search_endpoints(index: CatalogIndex, query: str, method: Optional[str] = None, top_k: int = 5) -> List[ScoredEndpoint]:
    tokens = tokenize(query)
    if not tokens:
        return []
    raw_words = set(_TOKEN_RE.findall(str(query or "").lower()))
    wanted = normalize_method(method) if method else None
    wanted_tokens = set(tokens)
    scored = [
        ScoredEndpoint(endpoint=ep, score=score_endpoint(ep, tokens, wanted, raw_words))
        for ep in index.endpoints
        if wanted_tokens & _haystack(ep)
    ]
    scored = [s for s in scored if s.score > 0]
    # Shorter paths win ties: collection endpoints before nested sub-resources.
    scored.sort(key=lambda s: (-s.score, len(s.endpoint.path), s.endpoint.path))
    return scored[: max(0, int(top_k))]


def suggest_endpoints(index: CatalogIndex, method: Any, path: Any, limit: int = 5) -> List[Dict[str, Any]]:
    """Same-method endpoints ranked by path-token overlap with `path`."""
    m = normalize_method(method)
    wanted = _path_tokens(normalize_path(path)) - {"admin"}
    ranked = []
    for ep in index.endpoints:
        if ep.method != m:
            continue
        overlap = len(wanted & (_path_tokens(ep.path) - {"admin"}))
        if overlap:
            ranked.append((overlap, ep))
    ranked.sort(key=lambda r: (-r[0], len(r[1].path), r[1].path))
    return [{"method": ep.method, "path": ep.path} for _, ep in ranked[:limit]]


class EndpointRetriever(Protocol):
    def search(self, index: CatalogIndex, query: str, method: Optional[str] = None, top_k: int = 5) -> List[ScoredEndpoint]: ...


class LexicalRetriever:
    def search(self, index: CatalogIndex, query: str, method: Optional[str] = None, top_k: int = 5) -> List[ScoredEndpoint]:
        return search_endpoints(index, query, method=method, top_k=top_k)
