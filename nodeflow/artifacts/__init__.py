"""Turn structured generative output into graph nodes."""

from nodeflow.artifacts.extractor import (
    Artifact,
    ArtifactExtractor,
    ArtifactKind,
    ExtractionResult,
    detect_asset_kind,
    is_data_uri,
    is_likely_url,
)
from nodeflow.artifacts.materializer import ArtifactMaterializer, MaterializationResult

__all__ = [
    "Artifact",
    "ArtifactKind",
    "ArtifactExtractor",
    "ExtractionResult",
    "ArtifactMaterializer",
    "MaterializationResult",
    "detect_asset_kind",
    "is_data_uri",
    "is_likely_url",
]
