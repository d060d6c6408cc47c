"""Planning: dependency suggestions and chat-driven API request planning."""

from .chat import AbstractCoreNarrator, ChatPlanner, Narrator
from .dependencies import DependencyPlan, plan_dependencies

__all__ = ["AbstractCoreNarrator", "ChatPlanner", "DependencyPlan", "Narrator", "plan_dependencies"]
