"""Command-line interface for CommerceFlow.

Commands:
- validate: check a flow JSON file (exit 1 when issues are found)
- run: execute a flow JSON file against the configured backend
- plan: plan an admin API request from a chat message
- serve: run the web backend (FastAPI)
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
from pathlib import Path
import sys
from typing import Any, List, Optional

from .config import Settings
from .engine.executor import run_flow_sync
from .engine.graph import validate_flow
from .errors import ValidationError
from .models import ChatRequest, VisualFlow
from .services import build_chat_planner, build_executor, directory_loader


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="commerceflow", add_help=True)
    p.add_argument("--log-level", default=os.getenv("LOG_LEVEL", "warning"))
    sub = p.add_subparsers(dest="command")

    val = sub.add_parser("validate", help="Validate a flow JSON file")
    val.add_argument("flow", help="Path to a flow JSON file")

    run = sub.add_parser("run", help="Execute a flow JSON file")
    run.add_argument("flow", help="Path to a flow JSON file")
    run.add_argument("--trigger", default="{}", help="Trigger payload (JSON)")
    run.add_argument("--input", default=None, help="Explicit $input data (JSON; default: the trigger payload)")
    run.add_argument("--flows-dir", default=None, help="Directory for flows started by trigger_flow (default: the flow's directory)")

    plan = sub.add_parser("plan", help="Plan an admin API request from a message")
    plan.add_argument("message", help="Natural-language request, e.g. \"list all products\"")
    plan.add_argument("--thread-id", default=None)

    serve = sub.add_parser("serve", help="Run the web backend (FastAPI)")
    serve.add_argument("--host", default=os.getenv("HOST", "0.0.0.0"))
    serve.add_argument("--port", type=int, default=int(os.getenv("PORT", "8080")))
    serve.add_argument("--reload", action="store_true", help="Enable auto-reload (dev)")

    return p


def _load_json_arg(raw: Optional[str], *, name: str) -> Any:
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except ValueError as e:
        raise SystemExit(f"--{name} is not valid JSON: {e}")


def _load_flow(path: str) -> VisualFlow:
    return VisualFlow.model_validate(json.loads(Path(path).read_text(encoding="utf-8")))


def _print(payload: Any) -> None:
    sys.stdout.write(json.dumps(payload, indent=2, ensure_ascii=False, default=str) + "\n")


def main(args: Optional[List[str]] = None) -> int:
    if args is None:
        args = sys.argv[1:]

    parser = _build_parser()
    ns = parser.parse_args(args)
    logging.basicConfig(level=str(ns.log_level).upper(), format="%(levelname)s %(name)s: %(message)s")

    if ns.command == "validate":
        issues = validate_flow(_load_flow(ns.flow))
        _print({"valid": not issues, "issues": [i.to_dict() for i in issues]})
        return 1 if issues else 0

    if ns.command == "run":
        flow_path = Path(ns.flow)
        flow = _load_flow(ns.flow)
        flows_dir = Path(ns.flows_dir) if ns.flows_dir else flow_path.resolve().parent
        executor = build_executor(Settings.from_env(), loader=directory_loader(flows_dir))
        trigger = _load_json_arg(ns.trigger, name="trigger")
        try:
            result = run_flow_sync(executor, flow, trigger, input=_load_json_arg(ns.input, name="input"))
        except ValidationError as e:
            _print({"error": str(e), "issues": [i.to_dict() for i in e.issues]})
            return 2
        _print(result.model_dump(mode="json"))
        return 0 if result.succeeded else 1

    if ns.command == "plan":
        planner = build_chat_planner(Settings.from_env())
        response = asyncio.run(planner.plan(ChatRequest(message=ns.message, threadId=ns.thread_id)))
        _print(response.model_dump(mode="json", exclude_none=True))
        return 0

    if ns.command == "serve":
        try:
            import uvicorn  # type: ignore
        except ImportError:
            sys.stderr.write("Server dependencies are not installed.\nInstall with: pip install uvicorn fastapi\n")
            return 2

        uvicorn.run(
            "web.backend.main:app",
            host=str(ns.host),
            port=int(ns.port),
            reload=bool(ns.reload),
            log_level=str(ns.log_level).lower(),
        )
        return 0

    parser.print_help()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
