"""Build engine components from `Settings` (shared by the CLI and the web host)."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

from .backend import HttpCommerceBackend
from .catalog import CatalogService, HttpCatalogSource, StaticCatalogSource
from .config import Settings, allowed_env_vars
from .engine.code_executor import CodeExecutor
from .engine.executor import EventHandler, FlowExecutor, FlowLoader
from .models import VisualFlow
from .planning.chat import AbstractCoreNarrator, ChatPlanner

logger = logging.getLogger(__name__)


def build_catalog_service(settings: Settings) -> CatalogService:
    if settings.catalog_allowlist:
        source = StaticCatalogSource(settings.catalog_allowlist)
    elif settings.catalog_url:
        source = HttpCatalogSource(
            settings.catalog_url,
            token=settings.catalog_token or settings.backend_token,
            auth_header=settings.catalog_header,
        )
    else:
        logger.warning("No catalog configured; endpoint validation is disabled")
        source = None
    return CatalogService(source, ttl_seconds=settings.catalog_ttl_s)


def build_backend(settings: Settings) -> HttpCommerceBackend:
    return HttpCommerceBackend(settings.backend_url, token=settings.backend_token)


def build_code_executor(settings: Settings) -> CodeExecutor:
    return CodeExecutor(allowed_packages=settings.code_packages, default_timeout_ms=settings.code_timeout_ms)


def build_executor(
    settings: Settings,
    *,
    catalog: Optional[CatalogService] = None,
    loader: Optional[FlowLoader] = None,
    on_event: Optional[EventHandler] = None,
) -> FlowExecutor:
    executor = FlowExecutor(
        build_backend(settings),
        catalog=catalog if catalog is not None else build_catalog_service(settings),
        code_executor=build_code_executor(settings),
        on_event=on_event,
        env=allowed_env_vars(settings),
    )
    if loader is not None:
        executor.flow_runner = executor.runner_for(loader)
    return executor


def build_chat_planner(settings: Settings, *, catalog: Optional[CatalogService] = None) -> ChatPlanner:
    narrator = None
    if settings.llm_provider:
        narrator = AbstractCoreNarrator(settings.llm_provider, settings.llm_model)
    return ChatPlanner(catalog if catalog is not None else build_catalog_service(settings), narrator=narrator)


def directory_loader(flows_dir: Path) -> FlowLoader:
    """Load `<flows_dir>/<flow_id>.json` files (the web host's storage layout)."""

    def _load(flow_id: str) -> Optional[VisualFlow]:
        path = flows_dir / f"{flow_id}.json"
        if not path.exists():
            return None
        return VisualFlow.model_validate(json.loads(path.read_text(encoding="utf-8")))

    return _load
