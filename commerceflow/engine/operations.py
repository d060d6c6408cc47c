"""Operation handlers and their typed options.

Each operation type maps to an `OperationSpec`: a pydantic options model, an
async handler and the default for `continue_on_error`. Options are validated
after template interpolation, so the models see concrete values.

Data operations validate their endpoint against the catalog before dispatch:
an empty (unavailable) catalog passes through, otherwise the path must match
exactly or through an alias, else the step fails with `InvalidEndpoint`.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError as OptionsError, field_validator, model_validator

from ..backend import CommerceBackend
from ..catalog.index import CatalogIndex, normalize_path
from ..catalog.search import suggest_endpoints
from ..errors import FlowError, InvalidEndpoint, UpstreamCallFailure
from ..models import ExecutionResult, FlowNode, OperationType
from ..planning.dependencies import kebab_case, plan_dependencies
from .code_executor import CodeExecutor
from .conditions import ConditionError, compile_condition
from .variables import ExecutionContext, inline_references

logger = logging.getLogger(__name__)


MAX_FLOW_DEPTH = 5

# (flow_id, trigger_payload, depth) -> ExecutionResult
FlowRunner = Callable[[str, Any, int], Awaitable[ExecutionResult]]

_background_tasks: set = set()


async def wait_for_background_flows() -> None:
    """Wait for fire-and-forget `trigger_flow` runs started on the running loop.

    Blocking hosts (`run_flow_sync`, the CLI) call this before their loop closes;
    otherwise `asyncio.run` would cancel the child flows.
    """
    loop = asyncio.get_running_loop()
    while True:
        pending = [t for t in _background_tasks if not t.done() and t.get_loop() is loop]
        if not pending:
            return
        for outcome in await asyncio.gather(*pending, return_exceptions=True):
            if isinstance(outcome, Exception):
                logger.warning(f"Background flow run failed: {outcome}")


@dataclass
class OperationContext:
    """Everything a handler may touch for one node invocation."""

    node: FlowNode
    ctx: ExecutionContext
    backend: CommerceBackend
    catalog: Optional[CatalogIndex] = None
    code_executor: Optional[CodeExecutor] = None
    flow_runner: Optional[FlowRunner] = None
    depth: int = 0
    max_flow_depth: int = MAX_FLOW_DEPTH
    http_transport: Optional[httpx.AsyncBaseTransport] = None
    notes: List[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Options models
# ---------------------------------------------------------------------------


class _Options(BaseModel):
    # The editor stores UI-only keys next to the real options.
    model_config = ConfigDict(extra="ignore")

    continue_on_error: Optional[bool] = None


def continue_on_error_flag(options: Dict[str, Any], default: bool) -> bool:
    """`continue_on_error` as the options models read it (`"false"` is False); `default` when unset or invalid."""
    try:
        value = _Options.model_validate(options).continue_on_error
    except OptionsError:
        return default
    return default if value is None else value


def _as_list(v: Any) -> Any:
    if v is None or v == "":
        return []
    if isinstance(v, str):
        return [p.strip() for p in v.split(",") if p.strip()]
    if isinstance(v, (list, tuple)):
        return [str(x) if isinstance(x, (int, float)) and not isinstance(x, bool) else x for x in v]
    return v


def _as_id(v: Any) -> Any:
    if v == "":
        return None
    if isinstance(v, (int, float)) and not isinstance(v, bool):
        return str(v)
    return v


def _as_dict(v: Any) -> Any:
    if v is None or v == "":
        return {}
    if isinstance(v, str):
        try:
            parsed = json.loads(v)
        except ValueError:
            return v
        return parsed
    return v


class ReadDataOptions(_Options):
    entity: str
    id: Optional[str] = None
    fields: List[str] = Field(default_factory=list)
    filters: Dict[str, Any] = Field(default_factory=dict)
    limit: int = 100

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> Any:
        return _as_id(v)

    @field_validator("fields", mode="before")
    @classmethod
    def coerce_fields(cls, v: Any) -> Any:
        return _as_list(v)

    @field_validator("filters", mode="before")
    @classmethod
    def coerce_filters(cls, v: Any) -> Any:
        return _as_dict(v)


class CreateDataOptions(_Options):
    entity: str
    data: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("data", mode="before")
    @classmethod
    def coerce_data(cls, v: Any) -> Any:
        return _as_dict(v)


class UpdateDataOptions(_Options):
    entity: str
    id: str
    data: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> Any:
        return _as_id(v)

    @field_validator("data", mode="before")
    @classmethod
    def coerce_data(cls, v: Any) -> Any:
        return _as_dict(v)


class DeleteDataOptions(_Options):
    entity: str
    id: str

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> Any:
        return _as_id(v)


class BulkUpdateDataOptions(_Options):
    entity: str
    ids: List[str] = Field(default_factory=list)
    data: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("ids", mode="before")
    @classmethod
    def coerce_ids(cls, v: Any) -> Any:
        return _as_list(v)

    @field_validator("data", mode="before")
    @classmethod
    def coerce_data(cls, v: Any) -> Any:
        return _as_dict(v)


class LogOptions(_Options):
    message: Any = ""
    level: str = "info"


class ConditionOptions(_Options):
    expression: str = ""


class HttpRequestOptions(_Options):
    method: str = "GET"
    url: str
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Any = None
    timeout_ms: int = 30000

    @field_validator("headers", mode="before")
    @classmethod
    def coerce_headers(cls, v: Any) -> Any:
        return _as_dict(v)


class TransformOptions(_Options):
    expression: Any = None


class SendEmailOptions(_Options):
    to: Any
    subject: str = ""
    template: Optional[str] = None
    body: Optional[str] = None


class SleepOptions(_Options):
    duration: int = 1000


class NotificationOptions(_Options):
    channel: str = "email"
    to: Any = None
    message: Any = ""
    data: Optional[Dict[str, Any]] = None


class ExecuteCodeOptions(_Options):
    code: str = ""
    packages: List[str] = Field(default_factory=list)
    timeout: int = 5000

    @field_validator("packages", mode="before")
    @classmethod
    def coerce_packages(cls, v: Any) -> Any:
        return _as_list(v)


class TriggerWorkflowOptions(_Options):
    workflow_name: Optional[str] = None
    workflow_id: Optional[str] = None
    input: Any = None
    wait_for_completion: bool = True

    @model_validator(mode="after")
    def require_workflow(self) -> "TriggerWorkflowOptions":
        if not (self.workflow_name or self.workflow_id):
            raise ValueError("workflow_name is required")
        return self


class TriggerFlowOptions(_Options):
    flow_id: str
    input: Any = None
    wait_for_completion: bool = True


# ---------------------------------------------------------------------------
# Catalog helpers
# ---------------------------------------------------------------------------


def entity_path(entity: str, item_id: Optional[str] = None) -> str:
    base = normalize_path(f"/admin/{kebab_case(entity)}")
    return f"{base}/{{id}}" if item_id is not None else base


def _fill_id(path: str, item_id: Optional[str]) -> str:
    if item_id is None:
        return path
    return path.replace("{id}", str(item_id))


def validate_endpoint(op: OperationContext, method: str, path: str) -> str:
    """Return the catalog-approved path for `(method, path)` or raise `InvalidEndpoint`."""
    norm = normalize_path(path)
    index = op.catalog
    if index is None or index.is_empty:
        return norm
    resolved = index.resolve_alias(method, norm)
    if resolved is None:
        raise InvalidEndpoint(method, norm, suggest_endpoints(index, method, norm))
    if resolved != norm:
        op.notes.append(f"Endpoint corrected: {method} {norm} -> {method} {resolved}")
    return resolved


def _update_method(op: OperationContext, template: str) -> str:
    index = op.catalog
    if index is None or index.is_empty:
        return "POST"
    for method in ("POST", "PATCH", "PUT"):
        if index.resolve_alias(method, template) is not None:
            return method
    return "POST"


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


async def read_data(opts: ReadDataOptions, op: OperationContext) -> Any:
    template = validate_endpoint(op, "GET", entity_path(opts.entity, opts.id))
    query: Dict[str, Any] = {}
    if opts.id is None:
        query = {"limit": opts.limit, "fields": opts.fields, "filters": opts.filters}
    elif opts.fields:
        query = {"fields": opts.fields}
    return await op.backend.request("GET", _fill_id(template, opts.id), query=query)


async def create_data(opts: CreateDataOptions, op: OperationContext) -> Any:
    path = validate_endpoint(op, "POST", entity_path(opts.entity))
    plan = plan_dependencies("POST", path, opts.data, op.catalog)
    op.notes.extend(plan.notes)
    return await op.backend.request("POST", path, body=opts.data)


async def _update_one(op: OperationContext, entity: str, item_id: str, data: Dict[str, Any]) -> Any:
    template = entity_path(entity, item_id)
    method = _update_method(op, template)
    template = validate_endpoint(op, method, template)
    return await op.backend.request(method, _fill_id(template, item_id), body=data)


async def update_data(opts: UpdateDataOptions, op: OperationContext) -> Any:
    return await _update_one(op, opts.entity, opts.id, opts.data)


async def delete_data(opts: DeleteDataOptions, op: OperationContext) -> Any:
    template = validate_endpoint(op, "DELETE", entity_path(opts.entity, opts.id))
    result = await op.backend.request("DELETE", _fill_id(template, opts.id))
    return result if result is not None else {"id": opts.id, "deleted": True}


async def bulk_update_data(opts: BulkUpdateDataOptions, op: OperationContext) -> Any:
    updated: List[Dict[str, Any]] = []
    failed: List[Dict[str, Any]] = []
    for item_id in opts.ids:
        try:
            result = await _update_one(op, opts.entity, item_id, opts.data)
        except FlowError as e:
            failed.append({"id": item_id, "error": str(e)})
            continue
        updated.append({"id": item_id, "result": result})
    if opts.ids and not updated:
        raise UpstreamCallFailure(f"All {len(opts.ids)} updates failed: {failed[0]['error']}", node_id=op.node.id)
    return {"updated": updated, "failed": failed}


async def log(opts: LogOptions, op: OperationContext) -> Any:
    level = str(opts.level or "info").lower()
    message = opts.message if isinstance(opts.message, str) else json.dumps(opts.message, default=str)
    log_fn = {"debug": logger.debug, "warn": logger.warning, "warning": logger.warning, "error": logger.error}.get(
        level, logger.info
    )
    log_fn(f"[flow:{op.node.operationKey}] {message}")
    return {"message": message, "level": level}


async def condition(opts: ConditionOptions, op: OperationContext) -> Any:
    compiled = compile_condition(opts.expression, known_keys=set(op.ctx.outputs))
    if isinstance(compiled, ConditionError):
        raise FlowError(f"Invalid condition '{compiled.expression}': {compiled.error}")
    result = compiled.evaluate(op.ctx)
    return {"result": result, "branch": "success" if result else "failure", "rule": compiled.to_filter()}


async def http_request(opts: HttpRequestOptions, op: OperationContext) -> Any:
    method = str(opts.method or "GET").upper()
    kwargs: Dict[str, Any] = {"headers": dict(opts.headers)}
    if opts.body is not None and method != "GET":
        if isinstance(opts.body, (dict, list)):
            kwargs["json"] = opts.body
        else:
            kwargs["content"] = str(opts.body)
    try:
        async with httpx.AsyncClient(timeout=opts.timeout_ms / 1000.0, transport=op.http_transport) as client:
            resp = await client.request(method, opts.url, **kwargs)
    except httpx.HTTPError as e:
        raise UpstreamCallFailure(f"{method} {opts.url} failed: {e}", node_id=op.node.id) from e
    try:
        data: Any = resp.json()
    except ValueError:
        data = resp.text
    if not 200 <= resp.status_code < 300:
        raise UpstreamCallFailure(
            f"{method} {opts.url} returned HTTP {resp.status_code}",
            status_code=resp.status_code,
            node_id=op.node.id,
        )
    return {"status": resp.status_code, "headers": dict(resp.headers), "data": data}


async def transform(opts: TransformOptions, op: OperationContext) -> Any:
    value = opts.expression
    if isinstance(value, str):
        text = value.strip()
        if text[:1] in {"{", "["}:
            try:
                return json.loads(text)
            except ValueError:
                return value
    return value


async def send_email(opts: SendEmailOptions, op: OperationContext) -> Any:
    data = {"subject": opts.subject, "template": opts.template}
    return await op.backend.send_notification("email", opts.to, opts.body or "", data)


async def sleep(opts: SleepOptions, op: OperationContext) -> Any:
    duration = max(0, int(opts.duration))
    await asyncio.sleep(duration / 1000.0)
    return {"slept_ms": duration}


async def notification(opts: NotificationOptions, op: OperationContext) -> Any:
    return await op.backend.send_notification(opts.channel, opts.to, opts.message, opts.data)


async def execute_code(opts: ExecuteCodeOptions, op: OperationContext) -> Any:
    if op.code_executor is None:
        raise FlowError("No code executor configured")
    code = inline_references(opts.code, op.ctx)
    result = await op.code_executor.run(
        code,
        last=op.ctx.last,
        input=op.ctx.input,
        trigger=op.ctx.trigger,
        packages=opts.packages,
        timeout_ms=opts.timeout,
    )
    op.notes.extend(result.logs)
    return result.value


async def trigger_workflow(opts: TriggerWorkflowOptions, op: OperationContext) -> Any:
    name = opts.workflow_name or opts.workflow_id or ""
    return await op.backend.run_workflow(name, opts.input, wait=opts.wait_for_completion)


def _summarize_run(result: ExecutionResult) -> Dict[str, Any]:
    return {
        "run_id": result.run_id,
        "flow_id": result.flow_id,
        "status": result.status.value,
        "last": result.last,
        "outputs": result.outputs,
    }


async def trigger_flow(opts: TriggerFlowOptions, op: OperationContext) -> Any:
    payload = opts.input if opts.input is not None else {}
    if op.flow_runner is None:
        return await op.backend.run_flow(opts.flow_id, payload, wait=opts.wait_for_completion)

    depth = op.depth + 1
    if depth > op.max_flow_depth:
        raise FlowError(f"Flow nesting is limited to {op.max_flow_depth} levels")

    if not opts.wait_for_completion:
        task = asyncio.create_task(op.flow_runner(opts.flow_id, payload, depth))
        _background_tasks.add(task)
        task.add_done_callback(_background_tasks.discard)
        return {"flow_id": opts.flow_id, "status": "started"}

    result = await op.flow_runner(opts.flow_id, payload, depth)
    if not result.succeeded:
        raise UpstreamCallFailure(f"Flow '{opts.flow_id}' {result.status.value}: {result.error}", node_id=op.node.id)
    return _summarize_run(result)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


Handler = Callable[[Any, OperationContext], Awaitable[Any]]


@dataclass(frozen=True)
class OperationSpec:
    options_model: Type[_Options]
    handler: Handler
    continue_on_error_default: bool = False


OPERATIONS: Dict[OperationType, OperationSpec] = {
    OperationType.READ_DATA: OperationSpec(ReadDataOptions, read_data),
    OperationType.CREATE_DATA: OperationSpec(CreateDataOptions, create_data),
    OperationType.UPDATE_DATA: OperationSpec(UpdateDataOptions, update_data),
    OperationType.DELETE_DATA: OperationSpec(DeleteDataOptions, delete_data),
    OperationType.BULK_UPDATE_DATA: OperationSpec(BulkUpdateDataOptions, bulk_update_data, continue_on_error_default=True),
    OperationType.LOG: OperationSpec(LogOptions, log),
    OperationType.CONDITION: OperationSpec(ConditionOptions, condition),
    OperationType.HTTP_REQUEST: OperationSpec(HttpRequestOptions, http_request),
    OperationType.TRANSFORM: OperationSpec(TransformOptions, transform),
    OperationType.SEND_EMAIL: OperationSpec(SendEmailOptions, send_email),
    OperationType.SLEEP: OperationSpec(SleepOptions, sleep),
    OperationType.NOTIFICATION: OperationSpec(NotificationOptions, notification),
    OperationType.EXECUTE_CODE: OperationSpec(ExecuteCodeOptions, execute_code),
    OperationType.TRIGGER_WORKFLOW: OperationSpec(TriggerWorkflowOptions, trigger_workflow),
    OperationType.TRIGGER_FLOW: OperationSpec(TriggerFlowOptions, trigger_flow),
}


def get_operation(operation_type: Any) -> OperationSpec:
    try:
        return OPERATIONS[OperationType(operation_type)]
    except ValueError as e:
        raise FlowError(f"Unknown operation type: {operation_type}") from e
