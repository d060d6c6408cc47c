"""Backend services."""

from .state import AppState, FlowStore, get_state, set_state, webhook_url

__all__ = ["AppState", "FlowStore", "get_state", "set_state", "webhook_url"]
