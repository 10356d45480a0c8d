"""Graph model, context gathering and node dispatch."""

from nodeflow.graph.edge import ARTIFACT_EDGE_LABEL, MEDIA_PORTS, Edge
from nodeflow.graph.node import (
    ContainerSettings,
    GenerativeSettings,
    Node,
    NodeType,
    ParserSettings,
    ResponseShape,
    ScriptSettings,
)

__all__ = [
    "Edge",
    "ARTIFACT_EDGE_LABEL",
    "MEDIA_PORTS",
    "Node",
    "NodeType",
    "ResponseShape",
    "GenerativeSettings",
    "ParserSettings",
    "ScriptSettings",
    "ContainerSettings",
]
