"""
Node - one vertex of a project graph.

A node's behaviour is selected by its ``type`` tag. The open-ended
``metadata`` and ``config`` dicts hold per-type settings; the typed views
below parse the section that matters for each type and keep unknown
provider pass-through keys in ``model_extra``.

Example:
    node = Node(id="n1", project_id="p1", type=NodeType.GENERATIVE,
                config={"ai": {"provider": "replicate", "output_type": "node"}})
    settings = node.generative_settings()
    settings.provider        # "replicate"
"""

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field, ValidationError


class NodeType(StrEnum):
    """Known node type tags. Unknown tags fall back to the text handler."""

    TEXT = "text"
    GENERATIVE = "ai"
    PARSER = "parser"
    SCRIPT = "python"
    IMAGE_GEN = "image_gen"
    AUDIO_GEN = "audio_gen"
    VIDEO_GEN = "video_gen"
    TRANSFORMER = "transformer"
    FOLDER = "folder"
    IMAGE = "image"
    VIDEO = "video"
    FILE = "file"
    HTML = "html"


class ResponseShape(StrEnum):
    """How a generative node turns a provider reply into graph content."""

    TREE = "tree"
    NODE = "node"
    MINDMAP = "mindmap"
    CONTAINER = "folder"
    PASSTHROUGH = "text"


class BoundingBox(BaseModel):
    x1: float = 0
    y1: float = 0
    x2: float = 240
    y2: float = 160


class NodeUi(BaseModel):
    bbox: BoundingBox = Field(default_factory=BoundingBox)
    color: str | None = None

    model_config = {"extra": "allow"}


class ConnectionSummary(BaseModel):
    """Denormalised list of neighbour ids, informational only."""

    incoming: list[str] = Field(default_factory=list)
    outgoing: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Typed per-type settings
# ---------------------------------------------------------------------------


class GenerativeSettings(BaseModel):
    """``config["ai"]`` of a generative node."""

    provider: str | None = None
    model: str | None = None
    system_prompt: str | None = None
    response_type: str | None = None
    output_type: str | None = None
    context_mode: str = "simple"
    context_left_depth: Any = None
    context_right_depth: Any = None
    temperature: float | None = None
    max_tokens: int | None = None
    input_fields: dict[str, Any] = Field(default_factory=dict)

    model_config = {"extra": "allow"}

    @property
    def shape(self) -> ResponseShape:
        """Resolve response_type/output_type into one response shape."""
        if self.response_type in ("tree", "mindmap"):
            return ResponseShape.TREE
        try:
            if not self.output_type:
                return ResponseShape.PASSTHROUGH
            return ResponseShape(self.output_type)
        except ValueError:
            return ResponseShape.PASSTHROUGH


class ParserSettings(BaseModel):
    """``config["parser"]`` of a parser node."""

    schema_ref: str = "PARSE_SCHEMA"

    model_config = {"extra": "allow"}


class ScriptSettings(BaseModel):
    """``config["script"]`` of a script node."""

    code: str = 'import json\nprint(json.dumps({"status": "ok"}))'
    timeout_seconds: float | None = None

    model_config = {"extra": "allow"}


class ContainerSettings(BaseModel):
    """Container fields read from a folder node's ``metadata``."""

    folder_children: list[Any] = Field(default_factory=list)
    folder_context_limit: Any = None
    display_mode: str | None = None

    model_config = {"extra": "allow"}

    def member_ids(self) -> list[str]:
        return [child for child in self.folder_children if isinstance(child, str)]


# ---------------------------------------------------------------------------
# Node
# ---------------------------------------------------------------------------


class Node(BaseModel):
    """A vertex of a project graph."""

    id: str
    project_id: str
    type: str = NodeType.TEXT
    title: str = ""
    content: str | None = None
    content_type: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    config: dict[str, Any] = Field(default_factory=dict)
    ui: NodeUi = Field(default_factory=NodeUi)
    visible: bool = True
    connections: ConnectionSummary = Field(default_factory=ConnectionSummary)
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    model_config = {"extra": "allow"}

    @property
    def is_generative(self) -> bool:
        return self.type == NodeType.GENERATIVE

    @property
    def is_container(self) -> bool:
        return self.type == NodeType.FOLDER

    def meta_str(self, key: str) -> str | None:
        """Return a metadata value when it is a non-empty string."""
        value = self.metadata.get(key)
        if isinstance(value, str) and value.strip():
            return value
        return None

    def generative_settings(self) -> GenerativeSettings:
        return _parse_section(GenerativeSettings, self.config.get("ai"))

    def parser_settings(self) -> ParserSettings:
        return _parse_section(ParserSettings, self.config.get("parser"))

    def script_settings(self) -> ScriptSettings:
        return _parse_section(ScriptSettings, self.config.get("script"))

    def container_settings(self) -> ContainerSettings:
        return _parse_section(ContainerSettings, self.metadata)


def _parse_section(model_cls: type[BaseModel], raw: Any) -> Any:
    if not isinstance(raw, dict):
        return model_cls()
    try:
        return model_cls.model_validate(raw)
    except ValidationError:
        # Malformed known keys keep only the pass-through fields
        known = set(model_cls.model_fields)
        return model_cls.model_validate({k: v for k, v in raw.items() if k not in known})
