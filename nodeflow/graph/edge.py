"""
Edge - a directed connection between two nodes of a project graph.

Edges carry an optional label and optional port names on either end.
A port on the target end (``target_handle``) decides whether the upstream
node contributes a file to a generative call; see ``MEDIA_PORTS``.
"""

from pydantic import BaseModel, Field

ARTIFACT_EDGE_LABEL = "asset"

# Target ports that carry files (images, clips, documents) into generative calls
MEDIA_PORTS = frozenset(
    {
        "reference_image",
        "image_prompt",
        "style_reference",
        "character_reference",
        "style_prompt",
        "clip_prompt",
        "image_input",
        "video_input",
        "audio_input",
        "file_input",
        "text_input",
    }
)


class Edge(BaseModel):
    """A directed edge ``from_node -> to_node`` within one project."""

    id: str | None = None
    from_node: str = Field(description="Source node ID")
    to_node: str = Field(description="Target node ID")
    label: str | None = None
    source_handle: str | None = None
    target_handle: str | None = None

    model_config = {"extra": "allow"}

    @property
    def is_media_link(self) -> bool:
        return bool(self.target_handle) and self.target_handle in MEDIA_PORTS
