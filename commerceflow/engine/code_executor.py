"""Sandboxed execution for `execute_code` nodes.

Design notes:
- Each step runs in a freshly spawned worker process, so a runaway script is
  killed without touching the host (and cancellation of the awaiting task kills
  it too).
- The script body is compiled with RestrictedPython inside the worker: no
  private attribute access, guarded item/iteration/write access, and a guarded
  `__import__` limited to the built-in utilities plus declared, allow-listed
  packages (imported with `importlib` on first use).
- The timeout clock starts when the worker reports it is ready (interpreter
  start-up and sandbox globals built), so neither is billed to the script.

Scripts see `last`, `input`, `trigger`, `console` and `fetch`, and `return`
the node output:

    total = sum(item["price"] for item in last["items"])
    console.log("total", total)
    return {"total": total}
"""

from __future__ import annotations

import asyncio
import base64
import collections
import datetime
from dataclasses import dataclass, field
import functools
import hashlib
import hmac
import importlib
import itertools
import json
import logging
import math
import multiprocessing
import operator
import re
import secrets
import textwrap
import types
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple
import uuid

from ..errors import ScriptError, StepTimeout

logger = logging.getLogger(__name__)


DEFAULT_TIMEOUT_MS = 5000
STARTUP_TIMEOUT_S = 30.0
POLL_INTERVAL_S = 0.02
FUNCTION_NAME = "run_step"

# Always importable from scripts (and pre-bound as globals).
BUILTIN_MODULES = (
    "base64",
    "collections",
    "datetime",
    "functools",
    "hashlib",
    "hmac",
    "itertools",
    "json",
    "math",
    "pydantic",
    "re",
    "secrets",
    "uuid",
)


@dataclass
class CodeResult:
    value: Any = None
    logs: List[str] = field(default_factory=list)


def to_jsonable(value: Any) -> Any:
    return json.loads(json.dumps(value, default=str))


class Console:
    """`console.log/info/warn/error` for scripts; lines are captured, not printed."""

    def __init__(self, sink: List[str]):
        self._sink = sink

    def _emit(self, level: str, args: Sequence[Any]) -> None:
        text = " ".join(a if isinstance(a, str) else json.dumps(a, default=str) for a in args)
        self._sink.append(text if level == "log" else f"[{level}] {text}")

    def log(self, *args: Any) -> None:
        self._emit("log", args)

    def info(self, *args: Any) -> None:
        self._emit("info", args)

    def warn(self, *args: Any) -> None:
        self._emit("warn", args)

    def error(self, *args: Any) -> None:
        self._emit("error", args)


def fetch(
    url: str,
    method: str = "GET",
    headers: Optional[Dict[str, str]] = None,
    body: Any = None,
    timeout_s: float = 10.0,
) -> Dict[str, Any]:
    """Blocking HTTP helper for scripts (httpx)."""
    import httpx

    kwargs: Dict[str, Any] = {"headers": dict(headers or {})}
    if isinstance(body, (dict, list)):
        kwargs["json"] = body
    elif body is not None:
        kwargs["content"] = str(body)
    with httpx.Client(timeout=timeout_s) as client:
        resp = client.request(str(method or "GET").upper(), url, **kwargs)
    try:
        data: Any = resp.json()
    except ValueError:
        data = resp.text
    return {"status": resp.status_code, "headers": dict(resp.headers), "data": data}


_INPLACE_OPS = {
    "+=": operator.iadd,
    "-=": operator.isub,
    "*=": operator.imul,
    "/=": operator.itruediv,
    "//=": operator.ifloordiv,
    "%=": operator.imod,
    "**=": operator.ipow,
    "<<=": operator.ilshift,
    ">>=": operator.irshift,
    "|=": operator.ior,
    "&=": operator.iand,
    "^=": operator.ixor,
}


def _inplacevar(op: str, x: Any, y: Any) -> Any:
    fn = _INPLACE_OPS.get(op)
    if fn is None:
        raise SyntaxError(f"Unsupported in-place operator: {op}")
    return fn(x, y)


def _apply(f: Any, *args: Any, **kwargs: Any) -> Any:
    return f(*args, **kwargs)


def wrap_script(code: str) -> str:
    body = textwrap.indent(textwrap.dedent(str(code or "")).strip("\n") or "pass", "    ")
    return f"def {FUNCTION_NAME}(last, input, trigger):\n{body}\n"


def _restricted_globals(allowed_imports: Iterable[str], print_sink: List[str], console: Console) -> Dict[str, Any]:
    from RestrictedPython.Eval import default_guarded_getitem, default_guarded_getiter
    from RestrictedPython.Guards import (
        full_write_guard,
        guarded_iter_unpack_sequence,
        guarded_unpack_sequence,
        safe_builtins,
        safer_getattr,
    )
    from RestrictedPython.PrintCollector import PrintCollector

    allowed = set(allowed_imports)

    def guarded_getattr(obj: Any, name: str, *default: Any) -> Any:
        value = safer_getattr(obj, name, *default)
        # Modules reachable through attributes (`uuid.os`) must be importable too.
        if isinstance(value, types.ModuleType) and value.__name__.split(".", 1)[0] not in allowed:
            raise AttributeError(f"Access to module '{value.__name__}' is not allowed in code steps")
        return value

    def guarded_import(name: str, globals: Any = None, locals: Any = None, fromlist: Any = (), level: int = 0) -> Any:
        root = str(name or "").split(".", 1)[0]
        if level != 0 or root not in allowed:
            raise ImportError(f"Import of '{name}' is not allowed in code steps")
        module = importlib.import_module(name)
        return module if fromlist else importlib.import_module(root)

    class StepPrint(PrintCollector):
        def write(self, text: str) -> None:
            super().write(text)
            print_sink.append(text)

    builtins = dict(safe_builtins)
    builtins.update(
        {
            "__import__": guarded_import,
            "all": all,
            "any": any,
            "dict": dict,
            "enumerate": enumerate,
            "filter": filter,
            "frozenset": frozenset,
            "list": list,
            "map": map,
            "max": max,
            "min": min,
            "reversed": reversed,
            "set": set,
            "sum": sum,
        }
    )

    g: Dict[str, Any] = {
        "__builtins__": builtins,
        "__name__": "commerceflow_step",
        "_getattr_": guarded_getattr,
        "_getitem_": default_guarded_getitem,
        "_getiter_": default_guarded_getiter,
        "_iter_unpack_sequence_": guarded_iter_unpack_sequence,
        "_unpack_sequence_": guarded_unpack_sequence,
        "_write_": full_write_guard,
        "_print_": StepPrint,
        "_inplacevar_": _inplacevar,
        "_apply_": _apply,
        "console": console,
        "fetch": fetch,
        "base64": base64,
        "collections": collections,
        "datetime": datetime,
        "functools": functools,
        "hashlib": hashlib,
        "hmac": hmac,
        "itertools": itertools,
        "json": json,
        "math": math,
        "re": re,
        "secrets": secrets,
        "uuid": uuid,
    }
    g["pydantic"] = importlib.import_module("pydantic")
    return g


def _worker_main(conn: Any, code: str, bindings: Dict[str, Any], packages: List[str]) -> None:
    """Worker process entry point. Sends ("ready",) then ("ok", value, logs) or ("error", message, logs)."""
    from RestrictedPython import compile_restricted

    logs: List[str] = []
    printed: List[str] = []
    g = _restricted_globals(tuple(BUILTIN_MODULES) + tuple(packages), printed, Console(logs))
    conn.send(("ready",))

    def collected() -> List[str]:
        lines = [ln for ln in "".join(printed).splitlines() if ln.strip()]
        return lines + logs

    try:
        byte_code = compile_restricted(wrap_script(code), filename="<execute_code>", mode="exec")
        exec(byte_code, g)
        value = g[FUNCTION_NAME](bindings.get("last"), bindings.get("input"), bindings.get("trigger"))
        conn.send(("ok", to_jsonable(value), collected()))
    except SyntaxError as e:
        conn.send(("error", f"SyntaxError: {e}", collected()))
    except Exception as e:
        conn.send(("error", f"{type(e).__name__}: {e}", collected()))
    finally:
        conn.close()


class CodeExecutor:
    """Runs code steps in killable worker processes."""

    def __init__(
        self,
        *,
        allowed_packages: Iterable[str] = (),
        default_timeout_ms: int = DEFAULT_TIMEOUT_MS,
        startup_timeout_s: float = STARTUP_TIMEOUT_S,
    ):
        self.allowed_packages = tuple(p.strip() for p in allowed_packages if str(p).strip())
        self.default_timeout_ms = int(default_timeout_ms)
        self.startup_timeout_s = float(startup_timeout_s)

    def check_packages(self, packages: Iterable[str]) -> List[str]:
        declared = [str(p).strip() for p in packages or () if str(p).strip()]
        denied = [p for p in declared if p not in self.allowed_packages and p not in BUILTIN_MODULES]
        if denied:
            raise ScriptError(f"Packages not in the allow-list: {', '.join(denied)}")
        return declared

    async def run(
        self,
        code: str,
        *,
        last: Any = None,
        input: Any = None,
        trigger: Any = None,
        packages: Iterable[str] = (),
        timeout_ms: Optional[int] = None,
    ) -> CodeResult:
        declared = self.check_packages(packages)
        timeout = int(timeout_ms) if timeout_ms and int(timeout_ms) > 0 else self.default_timeout_ms
        bindings = to_jsonable({"last": last, "input": input, "trigger": trigger})

        ctx = multiprocessing.get_context("spawn")
        parent_conn, child_conn = ctx.Pipe(duplex=False)
        proc = ctx.Process(target=_worker_main, args=(child_conn, str(code or ""), bindings, declared), daemon=True)
        proc.start()
        child_conn.close()
        try:
            ready = await self._receive(parent_conn, proc, self.startup_timeout_s)
            if ready is None:
                raise ScriptError("Code worker did not start in time")
            msg = await self._receive(parent_conn, proc, timeout / 1000.0)
            if msg is None:
                logger.warning(f"Code step exceeded {timeout}ms; killing worker pid={proc.pid}")
                raise StepTimeout(timeout)
        finally:
            if proc.is_alive():
                proc.kill()
            proc.join(timeout=1.0)
            parent_conn.close()

        kind, payload, logs = msg
        if kind == "ok":
            return CodeResult(value=payload, logs=list(logs))
        raise ScriptError(str(payload), logs=list(logs))

    async def _receive(self, conn: Any, proc: Any, timeout_s: float) -> Optional[Tuple[Any, ...]]:
        """Wait for one message; `None` on timeout. A worker that dies silently is a ScriptError."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout_s
        while True:
            if conn.poll(0):
                try:
                    return conn.recv()
                except EOFError:
                    raise ScriptError("Code worker exited without a result")
            if not proc.is_alive() and not conn.poll(0):
                raise ScriptError(f"Code worker exited unexpectedly (exit code {proc.exitcode})")
            if loop.time() >= deadline:
                return None
            await asyncio.sleep(POLL_INTERVAL_S)
