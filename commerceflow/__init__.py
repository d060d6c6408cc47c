"""CommerceFlow - visual flow automation and API action planning for a commerce admin."""

__version__ = "0.1.0"

from .errors import (
    CatalogUnavailable,
    FlowError,
    InvalidEndpoint,
    ScriptError,
    StepTimeout,
    UpstreamCallFailure,
    ValidationError,
)
from .models import ExecutionResult, FlowEdge, FlowNode, PlannedRequest, VisualFlow

__all__ = [
    "CatalogUnavailable",
    "ExecutionResult",
    "FlowEdge",
    "FlowError",
    "FlowNode",
    "InvalidEndpoint",
    "PlannedRequest",
    "ScriptError",
    "StepTimeout",
    "UpstreamCallFailure",
    "ValidationError",
    "VisualFlow",
    "__version__",
]
