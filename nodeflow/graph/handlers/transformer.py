"""Sub-graph expansion node: its own JSON content becomes a node tree."""

from nodeflow.graph.dispatcher import StepContext, StepResult
from nodeflow.graph.tree import TreeExpander, parse_tree_json


class TransformerHandler:
    def __init__(self, expander: TreeExpander):
        self.expander = expander

    async def handle(self, step: StepContext) -> StepResult:
        document = parse_tree_json(step.node.content or "")
        expansion = await self.expander.expand(step.project_id, step.node, document)
        return StepResult(
            content=step.node.content,
            content_type=step.node.content_type or "application/json",
            logs=expansion.logs,
            created_nodes=expansion.created_nodes,
            persist_content=False,
        )
