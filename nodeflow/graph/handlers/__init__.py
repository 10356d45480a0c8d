"""Built-in node handlers and the default registry wiring."""

from nodeflow.artifacts.materializer import ArtifactMaterializer
from nodeflow.graph.code_sandbox import CodeSandbox
from nodeflow.graph.dispatcher import HandlerRegistry, NodeDispatcher
from nodeflow.graph.handlers.generative import GenerativeHandler
from nodeflow.graph.handlers.media_stub import MediaStubHandler
from nodeflow.graph.handlers.parser import ParserHandler
from nodeflow.graph.handlers.script import ScriptHandler
from nodeflow.graph.handlers.text import TextHandler
from nodeflow.graph.handlers.transformer import TransformerHandler
from nodeflow.graph.node import NodeType
from nodeflow.graph.schemas import SchemaRegistry
from nodeflow.graph.tree import TreeExpander
from nodeflow.llm.provider import GenerativeProvider
from nodeflow.storage.backend import GraphStore


def build_default_dispatcher(
    store: GraphStore,
    providers: dict[str, GenerativeProvider],
    materializer: ArtifactMaterializer,
    sandbox: CodeSandbox,
    schemas: SchemaRegistry | None = None,
    default_provider: str = "litellm",
) -> NodeDispatcher:
    """Wire every built-in handler into a dispatcher."""
    schemas = schemas or SchemaRegistry()
    expander = TreeExpander(store, schemas)

    registry = HandlerRegistry()
    registry.register(
        NodeType.GENERATIVE,
        GenerativeHandler(store, providers, materializer, expander, default_provider),
    )
    registry.register(NodeType.PARSER, ParserHandler(schemas))
    registry.register(NodeType.SCRIPT, ScriptHandler(sandbox))
    registry.register(NodeType.IMAGE_GEN, MediaStubHandler("image", "png"))
    registry.register(NodeType.AUDIO_GEN, MediaStubHandler("audio", "mp3"))
    registry.register(NodeType.VIDEO_GEN, MediaStubHandler("video", "mp4"))
    registry.register(NodeType.TRANSFORMER, TransformerHandler(expander))
    registry.register(NodeType.TEXT, TextHandler())
    return NodeDispatcher(registry, default_handler=TextHandler())


__all__ = [
    "build_default_dispatcher",
    "GenerativeHandler",
    "MediaStubHandler",
    "ParserHandler",
    "ScriptHandler",
    "TextHandler",
    "TransformerHandler",
]
