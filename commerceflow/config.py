"""Environment-driven configuration.

Everything is read from `COMMERCEFLOW_*` environment variables so the same
settings apply to the CLI, the web host and tests (which use `monkeypatch`).
"""

from __future__ import annotations

from dataclasses import dataclass, field
import os
from pathlib import Path
from typing import Dict, List, Optional, Tuple


DEFAULT_CATALOG_TTL_S = 300.0
DEFAULT_CODE_TIMEOUT_MS = 5000

# Packages execute_code nodes may declare; empty unless COMMERCEFLOW_CODE_PACKAGES is set.
DEFAULT_CODE_PACKAGES: Tuple[str, ...] = ()


def _env(name: str) -> str:
    return str(os.getenv(name) or "").strip()


def _split_list(raw: str) -> List[str]:
    return [p.strip() for p in raw.replace("\n", ",").split(",") if p.strip()]


def _float_env(name: str, default: float) -> float:
    raw = _env(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _int_env(name: str, default: int) -> int:
    raw = _env(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def parse_allowlist(raw: str) -> List[Dict[str, str]]:
    """Parse `"GET /admin/products, POST /admin/products"` into endpoint dicts."""
    out: List[Dict[str, str]] = []
    for item in _split_list(raw):
        parts = item.split(None, 1)
        if len(parts) != 2:
            continue
        out.append({"method": parts[0].upper(), "path": parts[1].strip()})
    return out


def resolve_runtime_dir() -> Path:
    """Resolve the runtime directory (env override + mkdir)."""
    raw = _env("COMMERCEFLOW_RUNTIME_DIR")
    p = Path(raw).expanduser() if raw else Path("./runtime")
    p = p.resolve()
    p.mkdir(parents=True, exist_ok=True)
    return p


@dataclass(frozen=True)
class Settings:
    backend_url: str = "http://localhost:9000"
    backend_token: Optional[str] = None
    catalog_url: Optional[str] = None
    catalog_token: Optional[str] = None
    catalog_header: Optional[str] = None
    catalog_allowlist: List[Dict[str, str]] = field(default_factory=list)
    catalog_ttl_s: float = DEFAULT_CATALOG_TTL_S
    code_packages: Tuple[str, ...] = DEFAULT_CODE_PACKAGES
    code_timeout_ms: int = DEFAULT_CODE_TIMEOUT_MS
    env_allowlist: Tuple[str, ...] = ()
    llm_provider: Optional[str] = None
    llm_model: Optional[str] = None

    @classmethod
    def from_env(cls) -> "Settings":
        backend_url = (_env("COMMERCEFLOW_BACKEND_URL") or cls.backend_url).rstrip("/")
        catalog_url = _env("COMMERCEFLOW_CATALOG_URL") or None
        if catalog_url and not catalog_url.lower().startswith(("http://", "https://")):
            # Relative catalog URLs are resolved against the backend.
            catalog_url = f"{backend_url}/{catalog_url.lstrip('/')}"

        raw_packages = _env("COMMERCEFLOW_CODE_PACKAGES")
        packages = tuple(_split_list(raw_packages)) if raw_packages else DEFAULT_CODE_PACKAGES

        return cls(
            backend_url=backend_url,
            backend_token=_env("COMMERCEFLOW_BACKEND_TOKEN") or None,
            catalog_url=catalog_url,
            catalog_token=_env("COMMERCEFLOW_CATALOG_TOKEN") or None,
            catalog_header=_env("COMMERCEFLOW_CATALOG_HEADER") or None,
            catalog_allowlist=parse_allowlist(_env("COMMERCEFLOW_CATALOG_ALLOWLIST")),
            catalog_ttl_s=_float_env("COMMERCEFLOW_CATALOG_TTL_S", DEFAULT_CATALOG_TTL_S),
            code_packages=packages,
            code_timeout_ms=_int_env("COMMERCEFLOW_CODE_TIMEOUT_MS", DEFAULT_CODE_TIMEOUT_MS),
            env_allowlist=tuple(_split_list(_env("COMMERCEFLOW_ENV_ALLOWLIST"))),
            llm_provider=_env("COMMERCEFLOW_LLM_PROVIDER") or None,
            llm_model=_env("COMMERCEFLOW_LLM_MODEL") or None,
        )


def allowed_env_vars(settings: Settings) -> Dict[str, str]:
    """Return the `$env` namespace exposed to flow templates."""
    out: Dict[str, str] = {}
    for name in settings.env_allowlist:
        value = os.getenv(name)
        if value is not None:
            out[name] = value
    return out
