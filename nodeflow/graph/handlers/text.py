"""Pass-through handler for text and other content-only node types."""

from nodeflow.graph.dispatcher import StepContext, StepResult


class TextHandler:
    """Returns the node's stored content unchanged."""

    async def handle(self, step: StepContext) -> StepResult:
        node = step.node
        return StepResult(
            content=node.content,
            content_type=node.content_type or "text/plain",
            logs=[f"{node.type} node passes its content through"],
        )
