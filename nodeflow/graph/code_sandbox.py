"""
Script sandbox - runs user Python in a child interpreter.

Before anything runs, the code is parsed and checked:

- every imported top-level module must be on the allow-list;
- relative imports and ``__import__`` calls are rejected;
- ``open()`` is only allowed in code that writes under ``NODEFLOW_OUTPUT_DIR``.

The child runs with the project's output directory as its working
directory, receives its input as JSON on stdin, and is killed once the
wall-clock limit passes. Its stdout is parsed as JSON when possible.
"""

import ast
import asyncio
import functools
import json
import logging
import os
import sys
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from nodeflow.config import DEFAULT_ALLOWED_MODULES
from nodeflow.errors import SandboxPolicyViolation, ScriptExecutionError
from nodeflow.storage.file_store import validate_key

logger = logging.getLogger(__name__)

OUTPUT_DIR_ENV = "NODEFLOW_OUTPUT_DIR"
DEFAULT_MEMORY_LIMIT_MB = 1024
STDERR_TAIL = 2000


@dataclass
class ScriptResult:
    stdout: str
    stderr: str
    exit_code: int
    output: Any = None
    duration_ms: int = 0
    logs: list[str] = field(default_factory=list)


def find_policy_violations(code: str, allowed_modules: tuple[str, ...]) -> list[str]:
    """Return every policy violation found in ``code`` (empty when clean)."""
    try:
        tree = ast.parse(code)
    except SyntaxError as e:
        return [f"Script does not parse: {e.msg} (line {e.lineno})"]

    allowed = set(allowed_modules)
    violations: list[str] = []
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            for alias in node.names:
                module = alias.name.split(".")[0]
                if module not in allowed:
                    violations.append(f"Module '{module}' is not allowed in sandbox")
        elif isinstance(node, ast.ImportFrom):
            if node.level:
                violations.append("Relative imports are not allowed in sandbox")
                continue
            module = (node.module or "").split(".")[0]
            if module not in allowed:
                violations.append(f"Module '{module}' is not allowed in sandbox")
        elif isinstance(node, ast.Call) and isinstance(node.func, ast.Name):
            if node.func.id == "__import__":
                violations.append("Dynamic imports are not allowed in sandbox")
            elif node.func.id == "open" and OUTPUT_DIR_ENV not in code:
                violations.append(
                    f"Direct file access is restricted. Use the {OUTPUT_DIR_ENV} directory"
                )
    return list(dict.fromkeys(violations))


def _limit_memory(limit_mb: int) -> None:
    import resource

    limit = limit_mb * 1024 * 1024
    resource.setrlimit(resource.RLIMIT_AS, (limit, limit))


class CodeSandbox:
    """Static policy check plus subprocess execution for script nodes."""

    def __init__(
        self,
        output_root: Path,
        allowed_modules: tuple[str, ...] = DEFAULT_ALLOWED_MODULES,
        timeout_seconds: float = 30.0,
        python: str = sys.executable,
        memory_limit_mb: int | None = DEFAULT_MEMORY_LIMIT_MB,
    ):
        self.output_root = Path(output_root)
        self.allowed_modules = tuple(allowed_modules)
        self.timeout_seconds = timeout_seconds
        self.python = python
        self.memory_limit_mb = memory_limit_mb

    def check_policy(self, code: str) -> None:
        """
        Raises:
            SandboxPolicyViolation: listing every violation found
        """
        violations = find_policy_violations(code, self.allowed_modules)
        if violations:
            raise SandboxPolicyViolation("; ".join(violations), violations=violations)

    def output_dir(self, project_id: str) -> Path:
        validate_key(project_id)
        return self.output_root / project_id / "project_output"

    async def execute(
        self,
        code: str,
        input_data: Any,
        *,
        project_id: str,
        allow_network: bool = False,
        timeout_seconds: float | None = None,
    ) -> ScriptResult:
        """
        Check and run ``code``, feeding ``input_data`` as JSON on stdin.

        Raises:
            SandboxPolicyViolation: the static check failed; nothing ran
            ScriptExecutionError: non-zero exit or killed on timeout
        """
        self.check_policy(code)
        timeout = timeout_seconds or self.timeout_seconds
        output_dir = self.output_dir(project_id)
        output_dir.mkdir(parents=True, exist_ok=True)
        script_path = output_dir / f"sandbox_{uuid.uuid4().hex}.py"
        script_path.write_text(code, encoding="utf-8")

        env = {
            **os.environ,
            "NODEFLOW_SANDBOX": "1",
            OUTPUT_DIR_ENV: str(output_dir),
            "NODEFLOW_NETWORK": "proxied" if allow_network else "disabled",
        }
        preexec = None
        if self.memory_limit_mb and sys.platform != "win32":
            env["NODEFLOW_RAM_LIMIT"] = str(self.memory_limit_mb * 1024 * 1024)
            preexec = functools.partial(_limit_memory, self.memory_limit_mb)

        started = time.monotonic()
        try:
            proc = await asyncio.create_subprocess_exec(
                self.python,
                str(script_path),
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(output_dir),
                env=env,
                preexec_fn=preexec,
            )
            stdin = json.dumps(input_data, default=str).encode("utf-8")
            try:
                stdout_b, stderr_b = await asyncio.wait_for(proc.communicate(stdin), timeout)
            except TimeoutError:
                proc.kill()
                await proc.wait()
                raise ScriptExecutionError(
                    f"Script killed after {timeout:g}s wall-clock limit", exit_code=proc.returncode
                ) from None
        finally:
            script_path.unlink(missing_ok=True)

        duration_ms = int((time.monotonic() - started) * 1000)
        stdout = stdout_b.decode("utf-8", errors="replace")
        stderr = stderr_b.decode("utf-8", errors="replace")
        if proc.returncode != 0:
            raise ScriptExecutionError(
                f"Script exited with code {proc.returncode}: {stderr[-STDERR_TAIL:]}",
                exit_code=proc.returncode,
                stderr=stderr,
            )

        trimmed = stdout.strip()
        output: Any = None
        if trimmed:
            try:
                output = json.loads(trimmed)
            except json.JSONDecodeError:
                output = trimmed

        logger.info(f"Script finished in {duration_ms}ms ({len(stdout)} bytes of stdout)")
        return ScriptResult(
            stdout=stdout,
            stderr=stderr,
            exit_code=proc.returncode,
            output=output,
            duration_ms=duration_ms,
            logs=[f"Script finished in {duration_ms}ms"],
        )
