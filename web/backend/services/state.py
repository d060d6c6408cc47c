"""Process-wide backend state: flow store, run history and engine wiring.

Flows are persisted as `<runtime>/flows/<flow_id>.json` (one file per flow) and
cached in memory. Run results are kept in memory (most recent first, bounded
per flow).
"""

from __future__ import annotations

from collections import deque
import json
import logging
from pathlib import Path
from typing import Deque, Dict, List, Optional

from commerceflow.backend import CommerceBackend
from commerceflow.catalog import CatalogService
from commerceflow.config import Settings, allowed_env_vars, resolve_runtime_dir
from commerceflow.engine.code_executor import CodeExecutor
from commerceflow.engine.executor import FlowExecutor
from commerceflow.models import ExecutionResult, VisualFlow
from commerceflow.planning.chat import ChatPlanner
from commerceflow.services import (
    build_backend,
    build_catalog_service,
    build_chat_planner,
    build_code_executor,
)

logger = logging.getLogger(__name__)


MAX_RUNS_PER_FLOW = 50


def webhook_url(origin: str, flow_id: str) -> str:
    """`{origin}/webhooks/flows/{flow_id}`."""
    return f"{str(origin or '').rstrip('/')}/webhooks/flows/{flow_id}"


class FlowStore:
    """File-backed flow storage."""

    def __init__(self, flows_dir: Path):
        self.flows_dir = flows_dir
        self.flows_dir.mkdir(parents=True, exist_ok=True)
        self._flows: Dict[str, VisualFlow] = self._load_from_disk()

    def _path(self, flow_id: str) -> Path:
        return self.flows_dir / f"{flow_id}.json"

    def _load_from_disk(self) -> Dict[str, VisualFlow]:
        flows: Dict[str, VisualFlow] = {}
        for path in sorted(self.flows_dir.glob("*.json")):
            try:
                flow = VisualFlow.model_validate(json.loads(path.read_text(encoding="utf-8")))
            except (OSError, ValueError) as e:
                logger.warning(f"Failed to load flow from {path}: {e}")
                continue
            flows[flow.id] = flow
            logger.info(f"Loaded flow '{flow.name}' ({flow.id}) from {path}")
        return flows

    def list(self) -> List[VisualFlow]:
        return list(self._flows.values())

    def get(self, flow_id: str) -> Optional[VisualFlow]:
        return self._flows.get(flow_id)

    def save(self, flow: VisualFlow) -> VisualFlow:
        self._flows[flow.id] = flow
        path = self._path(flow.id)
        path.write_text(flow.model_dump_json(indent=2), encoding="utf-8")
        logger.info(f"Saved flow '{flow.name}' ({flow.id}) to {path}")
        return flow

    def delete(self, flow_id: str) -> bool:
        if self._flows.pop(flow_id, None) is None:
            return False
        path = self._path(flow_id)
        if path.exists():
            path.unlink()
            logger.info(f"Deleted flow file {path}")
        return True


class AppState:
    """Wires the store, catalog, executor and planner for the web host."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        runtime_dir: Optional[Path] = None,
        backend: Optional[CommerceBackend] = None,
        catalog: Optional[CatalogService] = None,
        code_executor: Optional[CodeExecutor] = None,
        planner: Optional[ChatPlanner] = None,
    ):
        self.settings = settings or Settings.from_env()
        self.runtime_dir = runtime_dir or resolve_runtime_dir()
        self.store = FlowStore(self.runtime_dir / "flows")
        self.catalog = catalog or build_catalog_service(self.settings)
        self.backend = backend or build_backend(self.settings)
        self.code_executor = code_executor or build_code_executor(self.settings)
        self.planner = planner or build_chat_planner(self.settings, catalog=self.catalog)
        self._runs: Dict[str, Deque[ExecutionResult]] = {}

        self.executor = FlowExecutor(
            self.backend,
            catalog=self.catalog,
            code_executor=self.code_executor,
            on_event=None,
            env=allowed_env_vars(self.settings),
        )
        self.executor.flow_runner = self.executor.runner_for(self.store.get)

    def record_run(self, result: ExecutionResult) -> None:
        runs = self._runs.setdefault(result.flow_id, deque(maxlen=MAX_RUNS_PER_FLOW))
        runs.appendleft(result)

    def runs_for(self, flow_id: str) -> List[ExecutionResult]:
        return list(self._runs.get(flow_id, ()))


_state: Optional[AppState] = None


def get_state() -> AppState:
    global _state
    if _state is None:
        _state = AppState()
    return _state


def set_state(state: Optional[AppState]) -> None:
    """Replace (or reset with `None`) the process-wide state; used by tests."""
    global _state
    _state = state
