"""Chat planning route (`POST /api/ai/chat`)."""

from __future__ import annotations

from fastapi import APIRouter

from ..models import ChatRequest, ChatResponse
from ..services.state import get_state

router = APIRouter(prefix="/ai", tags=["chat"])


@router.post("/chat", response_model=ChatResponse, response_model_exclude_none=True)
async def chat(request: ChatRequest):
    """Plan an admin API request from a message; nothing is executed."""
    return await get_state().planner.plan(request)
