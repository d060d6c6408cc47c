"""Flow CRUD, validation and execution routes."""

from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import List

from fastapi import APIRouter, HTTPException

from commerceflow.engine.graph import available_variables, validate_flow
from commerceflow.errors import ValidationError

from ..models import (
    ExecutionResult,
    FlowCreateRequest,
    FlowRunRequest,
    FlowUpdateRequest,
    NodeVariables,
    ValidationReport,
    VisualFlow,
)
from ..services.state import get_state

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/flows", tags=["flows"])


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _get_flow_or_404(flow_id: str) -> VisualFlow:
    flow = get_state().store.get(flow_id)
    if flow is None:
        raise HTTPException(status_code=404, detail=f"Flow '{flow_id}' not found")
    return flow


def _validation_detail(e: ValidationError) -> dict:
    return {"message": str(e), "issues": [i.to_dict() for i in e.issues]}


@router.get("", response_model=List[VisualFlow])
async def list_flows():
    """List all saved flows."""
    return get_state().store.list()


@router.post("", response_model=VisualFlow)
async def create_flow(request: FlowCreateRequest):
    """Create a new flow with nodes and edges."""
    now = _now()
    flow = VisualFlow(
        name=request.name,
        description=request.description,
        status=request.status,
        nodes=request.nodes,
        edges=request.edges,
        created_at=now,
        updated_at=now,
    )
    return get_state().store.save(flow)


@router.get("/{flow_id}", response_model=VisualFlow)
async def get_flow(flow_id: str):
    """Get a specific flow by ID."""
    return _get_flow_or_404(flow_id)


@router.put("/{flow_id}", response_model=VisualFlow)
async def update_flow(flow_id: str, request: FlowUpdateRequest):
    """Update an existing flow (only the provided fields change)."""
    flow = _get_flow_or_404(flow_id).model_copy(deep=True)

    if request.name is not None:
        flow.name = request.name
    if request.description is not None:
        flow.description = request.description
    if request.status is not None:
        flow.status = request.status
    if request.nodes is not None:
        flow.nodes = request.nodes
    if request.edges is not None:
        flow.edges = request.edges

    flow.updated_at = _now()
    return get_state().store.save(flow)


@router.delete("/{flow_id}")
async def delete_flow(flow_id: str):
    """Delete a flow."""
    _get_flow_or_404(flow_id)
    get_state().store.delete(flow_id)
    return {"status": "deleted", "id": flow_id}


@router.post("/{flow_id}/validate", response_model=ValidationReport)
async def validate(flow_id: str):
    """Check a saved flow without running it."""
    issues = validate_flow(_get_flow_or_404(flow_id))
    return ValidationReport(valid=not issues, issues=[i.to_dict() for i in issues])


@router.post("/{flow_id}/run", response_model=ExecutionResult)
async def run_flow(flow_id: str, request: FlowRunRequest):
    """Execute a flow and return the result."""
    flow = _get_flow_or_404(flow_id)
    state = get_state()
    try:
        result = await state.executor.execute(flow, request.trigger_data, input=request.input_data)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=_validation_detail(e))
    state.record_run(result)
    logger.info(f"Flow '{flow.name}' ({flow.id}) run {result.run_id} finished: {result.status.value}")
    return result


@router.get("/{flow_id}/executions", response_model=List[ExecutionResult])
async def list_executions(flow_id: str):
    """Recent runs of a flow, most recent first."""
    _get_flow_or_404(flow_id)
    return get_state().runs_for(flow_id)


@router.get("/{flow_id}/nodes/{node_id}/variables", response_model=NodeVariables)
async def node_variables(flow_id: str, node_id: str):
    """Variable roots the properties panel offers for a node."""
    flow = _get_flow_or_404(flow_id)
    if flow.node(node_id) is None:
        raise HTTPException(status_code=404, detail=f"Node '{node_id}' not found in flow '{flow_id}'")
    return NodeVariables(node_id=node_id, variables=available_variables(flow, node_id))
