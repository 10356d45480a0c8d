"""Script handler - runs a node's Python code in the sandbox."""

import json

from nodeflow.graph.code_sandbox import CodeSandbox
from nodeflow.graph.dispatcher import StepContext, StepResult


class ScriptHandler:
    def __init__(self, sandbox: CodeSandbox):
        self.sandbox = sandbox

    async def handle(self, step: StepContext) -> StepResult:
        settings = step.node.script_settings()
        input_data = {
            "node_id": step.node.id,
            "previous": [
                {"node_id": n.id, "type": n.type, "title": n.title, "content": n.content}
                for n in step.previous_nodes
            ],
        }
        result = await self.sandbox.execute(
            settings.code,
            input_data,
            project_id=step.project_id,
            allow_network=bool(step.project_settings.get("allow_network", False)),
            timeout_seconds=settings.timeout_seconds,
        )

        if isinstance(result.output, dict | list):
            content = json.dumps(result.output, ensure_ascii=False)
            content_type = "application/json"
        else:
            content, content_type = result.stdout.strip(), "text/plain"

        logs = list(result.logs)
        if result.stderr.strip():
            logs.append(f"stderr: {result.stderr.strip()[:500]}")
        return StepResult(
            content=content,
            content_type=content_type,
            logs=logs,
            metadata={"exit_code": result.exit_code, "duration_ms": result.duration_ms},
        )
