"""Error taxonomy for flow validation, execution and API planning.

- `ValidationError` is raised at authoring/validation time, before any node runs.
- `CatalogUnavailable` never reaches callers of the catalog service: it is logged
  and the service degrades to an empty (permissive) index.
- Step-level errors (`StepTimeout`, `ScriptError`, `UpstreamCallFailure`,
  `InvalidEndpoint`) are raised by operation handlers and recorded by the executor.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class FlowError(Exception):
    """Base class for all CommerceFlow errors."""


class ValidationError(FlowError):
    """A flow graph failed validation."""

    def __init__(self, issues: List[Any]):
        self.issues = list(issues)
        summary = "; ".join(str(getattr(i, "message", i)) for i in self.issues[:5])
        more = f" (+{len(self.issues) - 5} more)" if len(self.issues) > 5 else ""
        super().__init__(f"Flow validation failed: {summary}{more}")


class CatalogUnavailable(FlowError):
    """The endpoint catalog could not be fetched."""


class InvalidEndpoint(FlowError):
    """A request does not match any catalog endpoint, even after correction."""

    def __init__(self, method: str, path: str, suggestions: Optional[List[Dict[str, Any]]] = None):
        self.method = method
        self.path = path
        self.suggestions = list(suggestions or [])
        super().__init__(f"Endpoint not found in catalog: {method} {path}")


class StepTimeout(FlowError):
    """A sandboxed code step exceeded its time budget."""

    def __init__(self, timeout_ms: int):
        self.timeout_ms = int(timeout_ms)
        super().__init__(f"Code step timed out after {self.timeout_ms}ms")


class ScriptError(FlowError):
    """A sandboxed code step raised or could not be compiled."""

    def __init__(self, message: str, logs: Optional[List[str]] = None):
        self.logs = list(logs or [])
        super().__init__(message)


class UpstreamCallFailure(FlowError):
    """An external API, HTTP or workflow call failed."""

    def __init__(self, message: str, *, status_code: Optional[int] = None, node_id: Optional[str] = None):
        self.status_code = status_code
        self.node_id = node_id
        super().__init__(message)


__all__ = [
    "CatalogUnavailable",
    "FlowError",
    "InvalidEndpoint",
    "ScriptError",
    "StepTimeout",
    "UpstreamCallFailure",
    "ValidationError",
]
