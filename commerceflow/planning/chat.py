"""Chat-driven API action planner.

Maps a natural-language message to a *planned* admin API request. The planner
never executes anything: it returns an `admin_api_request` tool call that the
caller (UI/CLI) may run, plus a human-readable summary.

Pipeline:
1. Greetings and small talk short-circuit (no tool calls).
2. An explicit `METHOD /path` in the message (optionally followed by a JSON body)
   is used as-is.
3. Otherwise an optional narrator (LLM) may propose an `admin_api_request`, and
   action-like messages are ranked against the catalog.
4. The candidate is validated (exact, alias, then same-method correction);
   an unknown endpoint yields `invalid_endpoint` with suggestions.
5. Prerequisite lookups from the dependency planner are attached.
6. When a plan exists, the canonical summary replaces any narrator text.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import uuid
from typing import Any, Dict, List, Optional, Protocol, Tuple, Union

from ..catalog.index import CatalogIndex, CatalogService, align_path, normalize_method, normalize_path, rooted_path
from ..catalog.search import EndpointRetriever, LexicalRetriever, infer_method, suggest_endpoints
from ..models import Activation, ChatRequest, ChatResponse, PlannedRequest, ToolCall
from .dependencies import DependencyPlan, plan_dependencies

logger = logging.getLogger(__name__)


TOOL_NAME = "admin_api_request"
DEFAULT_RESOURCE_ID = "ai:general-chat"

GREETING_REPLY = "Hi! Tell me what you'd like to do in the admin (for example: \"list all products\")."
FALLBACK_REPLY = "I couldn't map that to an admin API action. Try naming the resource and what to do with it."

NARRATOR_SYSTEM_PROMPT = "\n".join(
    [
        "You are an assistant for a commerce admin console.",
        "Maintain short, precise answers.",
        "If the user asks to take an action, propose a tool call instead of claiming the action was done.",
        "Respond with normal text, and if a tool is proposed, also include a ```json block with",
        "an array under key toolCalls: [{ name, arguments }].",
        "Tool: admin_api_request: { method: 'GET'|'POST'|'PUT'|'PATCH'|'DELETE', path: string, body?: object }",
        "If no tool is needed, return an empty toolCalls array.",
    ]
)

_SMALL_TALK_RE = re.compile(
    r"^(hi|hello|hey|hiya|yo|howdy|thanks|thank you|thx|ok|okay|cool|"
    r"good (morning|afternoon|evening)|how are you|what's up|whats up|sup)\b"
)
_ACTION_RE = re.compile(
    r"\b(list|show|get|fetch|find|search|count|create|add|make|new|register|update|edit|modify|"
    r"change|rename|set|delete|remove|archive|replace)\b"
)
_EXPLICIT_RE = re.compile(r"\b(get|post|put|patch|delete)\s+(/[\w\-/{}:?&=.]*)", re.IGNORECASE)
_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)
_WORD_RE = re.compile(r"[\w']+")


class Narrator(Protocol):
    async def narrate(self, message: str, *, system: str, context: Optional[Dict[str, Any]] = None) -> str: ...


class AbstractCoreNarrator:
    """LLM narrator backed by AbstractCore (`pip install abstractcore`)."""

    def __init__(self, provider: str, model: Optional[str] = None):
        self.provider = provider
        self.model = model
        self._llm: Any = None

    def _get_llm(self) -> Any:
        if self._llm is None:
            try:
                from abstractcore import create_llm
            except ImportError as e:
                raise RuntimeError("AbstractCore not installed. Run: pip install abstractcore") from e
            kwargs = {"model": self.model} if self.model else {}
            self._llm = create_llm(self.provider, **kwargs)
        return self._llm

    async def narrate(self, message: str, *, system: str, context: Optional[Dict[str, Any]] = None) -> str:
        llm = self._get_llm()
        prompt = f"{system}\n\nUser: {message}"
        if context:
            prompt += f"\n\nContext: {json.dumps(context, default=str)}"
        response = await asyncio.to_thread(llm.generate, prompt)
        return str(getattr(response, "content", None) or "")


def is_small_talk(message: str) -> bool:
    text = str(message or "").strip().lower()
    if not text:
        return True
    words = _WORD_RE.findall(text)
    return bool(_SMALL_TALK_RE.match(text)) and len(words) <= 4 and not _ACTION_RE.search(text)


def has_action_intent(message: str) -> bool:
    text = str(message or "").lower()
    return bool(_ACTION_RE.search(text)) and len(_WORD_RE.findall(text)) > 2 and not is_small_talk(text)


def _first_json_object(text: str) -> Optional[Any]:
    idx = text.find("{")
    if idx < 0:
        return None
    try:
        value, _ = json.JSONDecoder().raw_decode(text[idx:])
    except ValueError:
        return None
    return value


def parse_explicit_request(message: str) -> Optional[Tuple[str, str, Optional[Dict[str, Any]]]]:
    """Find `METHOD /path [json-body]` in a message."""
    match = _EXPLICIT_RE.search(str(message or ""))
    if match is None or match.group(2) in {"", "/"}:
        return None
    method = match.group(1).upper()
    path = match.group(2).rstrip(".?")
    body = _first_json_object(message[match.end():])
    return method, path, body if isinstance(body, dict) else None


def extract_tool_calls(text: str) -> List[Dict[str, Any]]:
    """Tool calls from narrator output: fenced JSON block, whole-text JSON, then a loose object."""
    candidates: List[Any] = []
    for block in _FENCE_RE.findall(text or ""):
        try:
            candidates.append(json.loads(block.strip()))
        except ValueError:
            continue
    try:
        candidates.append(json.loads(text))
    except ValueError:
        pass
    candidates.append(_first_json_object(text or ""))
    for parsed in candidates:
        if isinstance(parsed, dict) and isinstance(parsed.get("toolCalls"), list):
            return [c for c in parsed["toolCalls"] if isinstance(c, dict) and c.get("name")]
    return []


def strip_tool_block(text: str) -> str:
    return _FENCE_RE.sub("", text or "").strip()


def summarize_plan(request: PlannedRequest, deps: DependencyPlan, notes: List[str]) -> str:
    lines = [f"Planned request: {request.method} {request.path}"]
    if request.body:
        lines.append(f"Body: {json.dumps(request.body, ensure_ascii=False, sort_keys=True)}")
    if deps.next:
        lines.append("Suggested first:")
        lines.extend(f"- {r.method} {r.path}" for r in deps.next)
    for note in notes:
        lines.append(f"Note: {note}")
    lines.append("Nothing has been executed yet.")
    return "\n".join(lines)


def summarize_execution(request: Any, response: Any) -> str:
    prefix = ""
    if isinstance(request, dict) and request.get("method") and request.get("path"):
        prefix = f"Executed {str(request['method']).upper()} {request['path']}. "
    if isinstance(response, dict):
        if isinstance(response.get("count"), int):
            return f"{prefix}{response['count']} result(s)."
        for key, value in response.items():
            if isinstance(value, list):
                return f"{prefix}Returned {len(value)} {key}."
        for key, value in response.items():
            if isinstance(value, dict) and value.get("id"):
                return f"{prefix}{key.replace('_', ' ').capitalize()} {value['id']} returned."
    if isinstance(response, list):
        return f"{prefix}Returned {len(response)} item(s)."
    text = json.dumps(response, ensure_ascii=False, default=str)
    if len(text) > 500:
        text = text[:500] + "..."
    return f"{prefix}Response: {text}"


class ChatPlanner:
    """Plans `admin_api_request` tool calls from chat messages."""

    def __init__(
        self,
        catalog: Union[CatalogService, CatalogIndex, None],
        narrator: Optional[Narrator] = None,
        retriever: Optional[EndpointRetriever] = None,
    ):
        self.catalog = catalog
        self.narrator = narrator
        self.retriever = retriever or LexicalRetriever()

    async def _index(self) -> CatalogIndex:
        if self.catalog is None:
            return CatalogIndex()
        if isinstance(self.catalog, CatalogIndex):
            return self.catalog
        return await self.catalog.index()

    async def _narrate(self, message: str, context: Optional[Dict[str, Any]]) -> str:
        if self.narrator is None:
            return ""
        try:
            return await self.narrator.narrate(message, system=NARRATOR_SYSTEM_PROMPT, context=context)
        except Exception as e:
            logger.warning(f"Chat narrator failed, planning without it: {e}")
            return ""

    def _validate(self, index: CatalogIndex, method: str, path: str) -> Tuple[Optional[str], List[str]]:
        """Return (approved path or None, notes). Concrete ids in `path` are kept as given."""
        rooted = rooted_path(path)
        if index.is_empty:
            return rooted, ["Catalog unavailable: endpoint not verified"]
        norm = normalize_path(path)
        resolved = index.resolve_alias(method, rooted)
        if resolved is not None:
            notes = [] if normalize_path(resolved) == norm else [f"Corrected {rooted} to {resolved}"]
            return resolved, notes
        for suggestion in suggest_endpoints(index, method, norm, limit=5):
            corrected = align_path(suggestion["path"], rooted)
            if corrected is not None:
                return corrected, [f"{method} {rooted} is not in the catalog; using closest match {corrected}"]
        return None, []

    async def plan(self, request: ChatRequest) -> ChatResponse:
        resource_id = request.resourceId or DEFAULT_RESOURCE_ID
        thread_id = request.threadId or str(uuid.uuid4())
        message = str(request.message or "").strip()
        context = request.context or {}

        def respond(reply: str, calls: Optional[List[ToolCall]] = None, activations: Optional[List[Activation]] = None) -> ChatResponse:
            return ChatResponse(
                reply=reply,
                toolCalls=calls or [],
                activations=activations or [],
                threadId=thread_id,
                resourceId=resource_id,
            )

        if context.get("executed_response") is not None:
            return respond(summarize_execution(context.get("executed_request"), context["executed_response"]))

        if is_small_talk(message):
            return respond(GREETING_REPLY)

        index = await self._index()
        narrative = ""
        candidate = parse_explicit_request(message)

        if candidate is None and self.narrator is not None:
            narrative = await self._narrate(message, context or None)
            for call in extract_tool_calls(narrative):
                if call.get("name") != TOOL_NAME:
                    continue
                args = call.get("arguments") or {}
                openapi = args.get("openapi") if isinstance(args.get("openapi"), dict) else {}
                method = normalize_method(openapi.get("method") or args.get("method") or "")
                path = openapi.get("path") or args.get("path")
                if method and path:
                    body = args.get("body") if isinstance(args.get("body"), dict) else None
                    candidate = (method, str(path), body)
                    break

        if candidate is None and has_action_intent(message) and not index.is_empty:
            method = infer_method(message)
            hits = self.retriever.search(index, message, method=method, top_k=5)
            if hits:
                candidate = (hits[0].endpoint.method, hits[0].endpoint.path, None)

        if candidate is None:
            return respond(strip_tool_block(narrative) or FALLBACK_REPLY)

        method, path, body = candidate
        approved, notes = self._validate(index, method, path)
        if approved is None:
            norm = rooted_path(path)
            suggestions = suggest_endpoints(index, method, norm, limit=5)
            args: Dict[str, Any] = {"method": method, "path": norm}
            if body:
                args["body"] = body
            invalid = {"status": "invalid_endpoint", "tool": TOOL_NAME, "request": args, "suggestions": suggestions}
            reply = f"{method} {norm} is not an endpoint in the admin API catalog."
            if suggestions:
                reply += " Did you mean: " + ", ".join(f"{s['method']} {s['path']}" for s in suggestions) + "?"
            return respond(reply, activations=[Activation(name=TOOL_NAME, arguments=args, result=invalid)])

        planned = PlannedRequest.build(method, approved, body)
        deps = plan_dependencies(planned.method, planned.path, body, index)
        arguments = planned.to_dict()
        result: Dict[str, Any] = {"status": "planned", "tool": TOOL_NAME, "request": arguments}
        result.update(deps.to_dict())
        if notes:
            result["notes"] = notes + list(result.get("notes", []))

        logger.info(f"Planned {planned.method} {planned.path} for chat thread {thread_id}")
        return respond(
            summarize_plan(planned, deps, notes),
            calls=[ToolCall(name=TOOL_NAME, arguments=arguments)],
            activations=[Activation(name=TOOL_NAME, arguments=arguments, result=result)],
        )
