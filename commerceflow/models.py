"""Pydantic models for the CommerceFlow flow JSON format, run results and plans.

These models are kept in the `commerceflow` package (not the web backend) so
flows authored in the visual editor can be validated and executed from any
host (CLI, web backend, tests).
"""

from __future__ import annotations

from enum import Enum
import uuid
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


def _short_id() -> str:
    return str(uuid.uuid4())[:8]


class NodeKind(str, Enum):
    """Types of nodes in the flow editor."""

    TRIGGER = "trigger"
    OPERATION = "operation"


class TriggerType(str, Enum):
    EVENT = "event"
    SCHEDULE = "schedule"
    WEBHOOK = "webhook"
    MANUAL = "manual"
    ANOTHER_FLOW = "another_flow"


class OperationType(str, Enum):
    """Operation types (the executor's dispatch surface)."""

    # Data
    READ_DATA = "read_data"
    CREATE_DATA = "create_data"
    UPDATE_DATA = "update_data"
    DELETE_DATA = "delete_data"
    BULK_UPDATE_DATA = "bulk_update_data"
    # Control / utility
    LOG = "log"
    CONDITION = "condition"
    TRANSFORM = "transform"
    SLEEP = "sleep"
    EXECUTE_CODE = "execute_code"
    # Effects
    HTTP_REQUEST = "http_request"
    SEND_EMAIL = "send_email"
    NOTIFICATION = "notification"
    TRIGGER_WORKFLOW = "trigger_workflow"
    TRIGGER_FLOW = "trigger_flow"


class ConnectionType(str, Enum):
    DEFAULT = "default"
    SUCCESS = "success"
    FAILURE = "failure"


class FlowStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    DRAFT = "draft"


class FlowNode(BaseModel):
    """A node in the flow editor (one trigger, many operations)."""

    model_config = ConfigDict(populate_by_name=True, use_enum_values=False)

    id: str = Field(default_factory=_short_id)
    type: NodeKind = NodeKind.OPERATION
    operationType: Optional[str] = None
    operationKey: Optional[str] = None
    label: Optional[str] = None
    options: Dict[str, Any] = Field(default_factory=dict)
    sort_order: int = 0

    @property
    def is_trigger(self) -> bool:
        return self.type == NodeKind.TRIGGER


class FlowEdge(BaseModel):
    """An edge connecting two nodes."""

    id: str = Field(default_factory=_short_id)
    source: str
    target: str
    sourceHandle: Optional[str] = None
    connection_type: ConnectionType = ConnectionType.DEFAULT


class VisualFlow(BaseModel):
    """A complete flow definition."""

    id: str = Field(default_factory=_short_id)
    name: str
    description: str = ""
    status: FlowStatus = FlowStatus.DRAFT
    nodes: List[FlowNode] = Field(default_factory=list)
    edges: List[FlowEdge] = Field(default_factory=list)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def node(self, node_id: str) -> Optional[FlowNode]:
        for n in self.nodes:
            if n.id == node_id:
                return n
        return None

    def trigger_nodes(self) -> List[FlowNode]:
        return [n for n in self.nodes if n.is_trigger]


class FlowCreateRequest(BaseModel):
    """Request to create a new flow."""

    name: str
    description: str = ""
    status: FlowStatus = FlowStatus.DRAFT
    nodes: List[FlowNode] = Field(default_factory=list)
    edges: List[FlowEdge] = Field(default_factory=list)


class FlowUpdateRequest(BaseModel):
    """Request to update an existing flow."""

    name: Optional[str] = None
    description: Optional[str] = None
    status: Optional[FlowStatus] = None
    nodes: Optional[List[FlowNode]] = None
    edges: Optional[List[FlowEdge]] = None


class FlowRunRequest(BaseModel):
    """Request to execute a flow."""

    trigger_data: Dict[str, Any] = Field(default_factory=dict)
    input_data: Optional[Dict[str, Any]] = None


class RunStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


class StepStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    SKIPPED = "skipped"


class StepRecord(BaseModel):
    """One execution log entry per visited node."""

    node_id: str
    operation_key: Optional[str] = None
    operation_type: Optional[str] = None
    status: StepStatus
    input: Optional[Any] = None
    output: Optional[Any] = None
    error: Optional[str] = None
    duration_ms: int = 0
    notes: List[str] = Field(default_factory=list)


class ExecutionResult(BaseModel):
    """Result of a flow execution."""

    run_id: str
    flow_id: str
    status: RunStatus
    outputs: Dict[str, Any] = Field(default_factory=dict)
    last: Optional[Any] = None
    steps: List[StepRecord] = Field(default_factory=list)
    error: Optional[str] = None
    error_node: Optional[str] = None
    started_at: Optional[str] = None
    finished_at: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == RunStatus.SUCCEEDED

    def step(self, node_id: str) -> Optional[StepRecord]:
        for s in self.steps:
            if s.node_id == node_id:
                return s
        return None


class ExecutionEvent(BaseModel):
    """Real-time execution event (node_start, node_complete, flow_complete, ...)."""

    type: str
    run_id: str
    nodeId: Optional[str] = None
    result: Optional[Any] = None
    error: Optional[str] = None


# ---------------------------------------------------------------------------
# Catalog / planning
# ---------------------------------------------------------------------------


class Endpoint(BaseModel):
    method: str
    path: str
    summary: Optional[str] = None
    description: Optional[str] = None

    @property
    def key(self) -> str:
        return f"{self.method} {self.path}"


class OpenApiRef(BaseModel):
    method: str
    path: str


class PlannedRequest(BaseModel):
    """A validated, not-yet-executed API call."""

    method: str
    path: str
    body: Optional[Dict[str, Any]] = None
    openapi: OpenApiRef

    @classmethod
    def build(cls, method: str, path: str, body: Optional[Dict[str, Any]] = None) -> "PlannedRequest":
        m = str(method or "").upper()
        return cls(method=m, path=path, body=body, openapi=OpenApiRef(method=m, path=path))

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"method": self.method, "path": self.path}
        # Body values are kept as-is; `None` marks a field still to be looked up.
        if self.body is not None:
            out["body"] = dict(self.body)
        out["openapi"] = self.openapi.model_dump()
        return out


class ToolCall(BaseModel):
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)


class Activation(BaseModel):
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)
    result: Any = None


class ChatRequest(BaseModel):
    message: str
    threadId: Optional[str] = None
    resourceId: Optional[str] = None
    context: Optional[Dict[str, Any]] = None


class ChatResponse(BaseModel):
    reply: str
    toolCalls: List[ToolCall] = Field(default_factory=list)
    activations: List[Activation] = Field(default_factory=list)
    threadId: Optional[str] = None
    resourceId: Optional[str] = None
