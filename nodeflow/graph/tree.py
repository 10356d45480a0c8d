"""
Sub-graph expansion - turn a JSON node tree into real nodes and edges.

Accepted shapes::

    {"nodes": [{"title": "...", "content": "...", "children": [...]}, ...]}
    [{"title": "..."}, ...]

Model replies wrapped in Markdown fences or surrounded by prose are
unwrapped first. Each level is placed 500px to the right of its parent,
siblings alternate above and below the parent row.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any

from nodeflow.errors import SchemaValidationError
from nodeflow.graph.node import Node, NodeType
from nodeflow.graph.schemas import SchemaRegistry
from nodeflow.schemas.run import CreatedNodeSummary
from nodeflow.storage.backend import GraphStore

logger = logging.getLogger(__name__)

LEVEL_SPACING = 500
NODE_SPACING = 200
VERTICAL_PADDING = 50
MAX_TREE_DEPTH = 100


@dataclass
class ExpansionResult:
    created_nodes: list[CreatedNodeSummary] = field(default_factory=list)
    logs: list[str] = field(default_factory=list)


def parse_tree_json(text: str) -> Any:
    """
    Parse a tree document, tolerating Markdown fences and surrounding prose.

    Raises:
        SchemaValidationError: no JSON document could be recovered
    """
    cleaned = re.sub(r"^```(?:json)?\s*", "", text.strip(), flags=re.MULTILINE)
    cleaned = re.sub(r"\s*```$", "", cleaned, flags=re.MULTILINE).strip()
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass
    match = re.search(r"(\{.*\}|\[.*\])", cleaned, re.DOTALL)
    if match:
        try:
            return json.loads(match.group(1))
        except json.JSONDecodeError:
            pass
    raise SchemaValidationError("Response is not valid JSON", schema="TREE_SCHEMA")


def _sibling_offset(index: int, total: int) -> float:
    if total <= 1:
        return 0
    step = (index // 2) * NODE_SPACING
    if index % 2 == 0:
        return -step - VERTICAL_PADDING
    return step + NODE_SPACING + VERTICAL_PADDING


class TreeExpander:
    """Creates a node tree below a parent node inside one transaction."""

    def __init__(self, store: GraphStore, schemas: SchemaRegistry | None = None):
        self.store = store
        self.schemas = schemas or SchemaRegistry()

    def normalize(self, document: Any, schema: str = "TREE_SCHEMA") -> list[dict[str, Any]]:
        if isinstance(document, list):
            document = {"nodes": document}
        if not isinstance(document, dict) or not isinstance(document.get("nodes"), list):
            raise SchemaValidationError(
                "JSON must contain a nodes array or be an array of nodes", schema=schema
            )
        self.schemas.validate(schema, document)
        return document["nodes"]

    async def expand(
        self, project_id: str, parent: Node, document: Any, schema: str = "TREE_SCHEMA"
    ) -> ExpansionResult:
        specs = self.normalize(document, schema)
        result = ExpansionResult(logs=[f"Found {len(specs)} root node(s) to create"])
        start_x = parent.ui.bbox.x2
        start_y = parent.ui.bbox.y1

        async with self.store.transaction(project_id):
            for index, spec in enumerate(specs):
                y = start_y + _sibling_offset(index, len(specs))
                await self._create(
                    project_id, spec, parent.id, 1, start_x + LEVEL_SPACING, y, result
                )

        logger.info(f"Expanded {len(result.created_nodes)} node(s) below {parent.id}")
        return result

    async def _create(
        self,
        project_id: str,
        spec: dict[str, Any],
        parent_id: str,
        depth: int,
        x: float,
        y: float,
        result: ExpansionResult,
    ) -> None:
        if depth > MAX_TREE_DEPTH:
            return
        node_type = spec.get("type") or NodeType.TEXT
        node = await self.store.create_node(
            project_id,
            type=node_type,
            title=spec.get("title") or "Node",
            content=spec.get("content") or "",
            metadata=spec.get("meta") or {},
            position=(x, y),
            config={"ai": spec["ai"]} if isinstance(spec.get("ai"), dict) else None,
        )
        await self.store.add_edge(project_id, parent_id, node.id)
        result.created_nodes.append(
            CreatedNodeSummary(node_id=node.id, type=node.type, title=node.title)
        )
        result.logs.append(f"Created node: {node.title} ({node.type}) at level {depth} ({x}, {y})")

        children = spec.get("children") or []
        for index, child in enumerate(children):
            child_y = y + _sibling_offset(index, len(children))
            await self._create(
                project_id, child, node.id, depth + 1, x + LEVEL_SPACING, child_y, result
            )
