"""
Node dispatcher - routes a node step to the handler for its type.

Handlers are registered per type tag; adding a node type means
registering one more handler, never editing the dispatcher. Types with
no handler fall back to the default (pass-through) handler.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from nodeflow.graph.context import NextNodeMetadata
from nodeflow.graph.edge import Edge
from nodeflow.graph.node import Node
from nodeflow.schemas.run import CreatedNodeSummary

logger = logging.getLogger(__name__)


@dataclass
class StepContext:
    """What a handler sees for one step of a node run."""

    project_id: str
    node: Node
    previous_nodes: list[Node] = field(default_factory=list)
    next_nodes: list[NextNodeMetadata] = field(default_factory=list)
    edges: list[Edge] = field(default_factory=list)
    nodes: dict[str, Node] = field(default_factory=dict)
    project_settings: dict[str, Any] = field(default_factory=dict)


@dataclass
class StepResult:
    """
    Outcome of one handler step.

    ``persist_content`` is False when the node's stored content must stay
    as it is (generative prompts, sub-graph definitions).
    """

    content: str | None
    content_type: str | None = "text/plain"
    logs: list[str] = field(default_factory=list)
    created_nodes: list[CreatedNodeSummary] = field(default_factory=list)
    provider: str | None = None
    job_id: str | None = None
    job_payload: Any = None
    metadata: dict[str, Any] = field(default_factory=dict)
    persist_content: bool = True


class NodeHandler(Protocol):
    async def handle(self, step: StepContext) -> StepResult: ...


class HandlerRegistry:
    """Type tag -> handler mapping."""

    def __init__(self) -> None:
        self._handlers: dict[str, NodeHandler] = {}

    def register(self, node_type: str, handler: NodeHandler) -> None:
        self._handlers[str(node_type)] = handler

    def get(self, node_type: str) -> NodeHandler | None:
        return self._handlers.get(str(node_type))

    def __contains__(self, node_type: object) -> bool:
        return str(node_type) in self._handlers

    def types(self) -> list[str]:
        return sorted(self._handlers)


class NodeDispatcher:
    """Runs a step through the handler registered for the node's type."""

    def __init__(self, registry: HandlerRegistry, default_handler: NodeHandler):
        self.registry = registry
        self.default_handler = default_handler

    def handler_for(self, node_type: str) -> NodeHandler:
        return self.registry.get(node_type) or self.default_handler

    async def dispatch(self, step: StepContext) -> StepResult:
        handler = self.handler_for(step.node.type)
        logger.info(
            f"Dispatching node {step.node.id} ({step.node.type}) to {type(handler).__name__}"
        )
        return await handler.handle(step)
