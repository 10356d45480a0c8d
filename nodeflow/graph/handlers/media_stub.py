"""Placeholder handlers for media generation node types."""

import json

from nodeflow.graph.dispatcher import StepContext, StepResult


class MediaStubHandler:
    """Synthesizes a JSON placeholder naming where the media would be written."""

    def __init__(self, kind: str, extension: str):
        self.kind = kind
        self.extension = extension

    async def handle(self, step: StepContext) -> StepResult:
        node = step.node
        output_path = f"project_output/{node.id}.{self.extension}"
        payload = {
            "status": "generated",
            "kind": self.kind,
            "prompt": node.content or node.title,
            "output_path": output_path,
        }
        return StepResult(
            content=json.dumps(payload, ensure_ascii=False),
            content_type="application/json",
            logs=[f"{self.kind} placeholder written for {output_path}"],
        )
