"""Web backend models.

The web backend re-exports the portable flow models from `commerceflow.models`
so other hosts (CLI, tests) reuse the same JSON schema without importing the
backend package. Only HTTP-specific envelopes live here.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from commerceflow.models import (  # noqa: F401
    ChatRequest,
    ChatResponse,
    ExecutionResult,
    FlowCreateRequest,
    FlowRunRequest,
    FlowUpdateRequest,
    VisualFlow,
)


class ValidationReport(BaseModel):
    valid: bool
    issues: List[Dict[str, Optional[str]]] = Field(default_factory=list)


class NodeVariables(BaseModel):
    node_id: str
    variables: List[str] = Field(default_factory=list)


class WebhookAccepted(BaseModel):
    flow_id: str
    run_id: str
    status: str
    webhook_url: Optional[str] = None
    result: Optional[Any] = None


class CatalogSummary(BaseModel):
    size: int
    error: Optional[str] = None
    built_at: float = 0.0
    endpoints: List[Dict[str, Any]] = Field(default_factory=list)


__all__ = [
    "CatalogSummary",
    "ChatRequest",
    "ChatResponse",
    "ExecutionResult",
    "FlowCreateRequest",
    "FlowRunRequest",
    "FlowUpdateRequest",
    "NodeVariables",
    "ValidationReport",
    "VisualFlow",
    "WebhookAccepted",
]
