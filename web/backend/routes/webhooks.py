"""Webhook trigger: `POST /webhooks/flows/{flow_id}` runs an active flow."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, HTTPException, Request

from commerceflow.errors import ValidationError
from commerceflow.models import FlowStatus

from ..models import WebhookAccepted
from ..services.state import get_state, webhook_url

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/flows/{flow_id}", response_model=WebhookAccepted)
async def trigger_flow_webhook(flow_id: str, request: Request, payload: Optional[Dict[str, Any]] = Body(default=None)):
    """Run a flow with the request body as its trigger payload."""
    state = get_state()
    flow = state.store.get(flow_id)
    if flow is None:
        raise HTTPException(status_code=404, detail=f"Flow '{flow_id}' not found")
    if flow.status != FlowStatus.ACTIVE:
        raise HTTPException(status_code=409, detail=f"Flow '{flow_id}' is not active")

    try:
        result = await state.executor.execute(flow, payload or {})
    except ValidationError as e:
        raise HTTPException(status_code=422, detail={"message": str(e), "issues": [i.to_dict() for i in e.issues]})
    state.record_run(result)
    logger.info(f"Webhook run {result.run_id} for flow '{flow.name}' ({flow.id}): {result.status.value}")

    return WebhookAccepted(
        flow_id=flow.id,
        run_id=result.run_id,
        status=result.status.value,
        webhook_url=webhook_url(str(request.base_url), flow.id),
        result=result.last,
    )
