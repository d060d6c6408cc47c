"""Backend API routes."""

from .catalog import router as catalog_router
from .chat import router as chat_router
from .flows import router as flows_router
from .webhooks import router as webhooks_router

__all__ = ["catalog_router", "chat_router", "flows_router", "webhooks_router"]
