"""Shared nodeflow configuration utilities.

Centralises reading of ~/.nodeflow/configuration.json so the executor,
the sandbox and the storage layer share one implementation.
"""

import json
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

# ---------------------------------------------------------------------------
# Low-level config file access
# ---------------------------------------------------------------------------

DEFAULT_ALLOWED_MODULES = (
    "re",
    "json",
    "sys",
    "csv",
    "itertools",
    "math",
    "statistics",
    "pandas",
    "numpy",
    "bs4",
    "lxml",
    "markdown",
)


def get_nodeflow_home() -> Path:
    """Return the nodeflow home directory (``NODEFLOW_HOME`` or ~/.nodeflow)."""
    override = os.environ.get("NODEFLOW_HOME")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".nodeflow"


def get_nodeflow_config() -> dict[str, Any]:
    """Load nodeflow configuration from <home>/configuration.json."""
    config_file = get_nodeflow_home() / "configuration.json"
    if not config_file.exists():
        return {}
    try:
        with open(config_file, encoding="utf-8-sig") as f:
            return json.load(f)
    except (json.JSONDecodeError, OSError):
        return {}


# ---------------------------------------------------------------------------
# Derived helpers
# ---------------------------------------------------------------------------


def _engine_setting(key: str, default: Any) -> Any:
    return get_nodeflow_config().get("engine", {}).get(key, default)


def get_max_attempts() -> int:
    return int(_engine_setting("max_attempts", 3))


def get_backoff_ms() -> tuple[int, ...]:
    return tuple(int(v) for v in _engine_setting("backoff_ms", (0, 1000, 2000)))


def get_storage_root() -> Path:
    """Return the directory holding project graphs, assets and run logs."""
    configured = _engine_setting("storage_root", None)
    if configured:
        return Path(configured).expanduser()
    return get_nodeflow_home() / "projects"


def get_sandbox_allowed_modules() -> tuple[str, ...]:
    return tuple(_engine_setting("sandbox_allowed_modules", DEFAULT_ALLOWED_MODULES))


def get_default_provider() -> str:
    return _engine_setting("default_provider", "litellm")


def get_default_model() -> str:
    """Return the model string used when a generative node names none."""
    llm = get_nodeflow_config().get("llm", {})
    if llm.get("provider") and llm.get("model"):
        return f"{llm['provider']}/{llm['model']}"
    return _engine_setting("default_model", "gpt-4o-mini")


# ---------------------------------------------------------------------------
# EngineConfig
# ---------------------------------------------------------------------------


@dataclass
class EngineConfig:
    """Engine configuration loaded from ~/.nodeflow/configuration.json."""

    max_attempts: int = field(default_factory=get_max_attempts)
    backoff_ms: tuple[int, ...] = field(default_factory=get_backoff_ms)
    # Schema and sandbox policy failures are deterministic; retrying them is opt-in.
    retry_structural_errors: bool = False

    max_context_depth: int = 10
    default_left_depth: int = 1
    default_right_depth: int = 0
    folder_context_limit: int = 6
    folder_context_limit_max: int = 24

    sandbox_timeout_seconds: float = 30.0
    sandbox_allowed_modules: tuple[str, ...] = field(default_factory=get_sandbox_allowed_modules)
    sandbox_python: str = field(default_factory=lambda: sys.executable)

    storage_root: Path = field(default_factory=get_storage_root)
    public_base_url: str = "/uploads"

    default_provider: str = field(default_factory=get_default_provider)
    default_model: str = field(default_factory=get_default_model)
