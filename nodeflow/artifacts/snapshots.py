"""Compact snapshots of nodes created from artifacts, kept on the source node."""

from typing import Any

from pydantic import BaseModel, Field

from nodeflow.artifacts.extractor import is_data_uri, is_likely_url

SNAPSHOT_SOURCE_KEYS = (
    "source_provider",
    "source_prediction_id",
    "source_prediction_url",
    "source_node_id",
    "source_node_title",
    "asset_index",
    "artifact_value_preview",
    "source_asset_signature",
    "display_mode",
)

IMAGE_LINK_KEYS = (
    "image_url",
    "image_original",
    "original_image",
    "image_edited",
    "edited_image",
    "image_crop",
    "crop_image",
    "annotated_image",
)
VIDEO_LINK_KEYS = ("video_url",)

MAX_SNAPSHOT_VALUE = 2048


class CreatedNodeSnapshot(BaseModel):
    node_id: str
    type: str
    title: str
    content_type: str | None = None
    ui_position: dict[str, float] | None = None
    meta: dict[str, Any] = Field(default_factory=dict)


def sanitize_meta_snapshot(meta: dict[str, Any]) -> dict[str, Any]:
    """Keep scalar values; drop blank strings and large data URIs, shorten long strings."""
    allowed: dict[str, Any] = {}
    for key, value in meta.items():
        if isinstance(value, str):
            trimmed = value.strip()
            if not trimmed:
                continue
            if len(trimmed) > MAX_SNAPSHOT_VALUE:
                if is_data_uri(trimmed):
                    continue
                allowed[key] = f"{trimmed[:200]}…"
            else:
                allowed[key] = trimmed
        elif isinstance(value, bool | int | float):
            allowed[key] = value
    return allowed


def extract_node_meta_snapshot(
    meta: dict[str, Any], kind: str, raw_value: str | None = None
) -> dict[str, Any]:
    snapshot: dict[str, Any] = {}
    for key in SNAPSHOT_SOURCE_KEYS:
        value = meta.get(key)
        if isinstance(value, str) and value.strip():
            if "url" in key and not is_likely_url(value):
                continue
            snapshot[key] = value.strip()
        elif isinstance(value, bool | int | float):
            snapshot[key] = value

    link_keys = IMAGE_LINK_KEYS if kind == "image" else VIDEO_LINK_KEYS if kind == "video" else ()
    for key in link_keys:
        value = meta.get(key)
        if isinstance(value, str) and is_likely_url(value):
            snapshot[key] = value.strip()

    if "artifact_value_preview" not in snapshot and raw_value and raw_value.strip():
        snapshot["artifact_value_preview"] = raw_value.strip()[:280]
    return sanitize_meta_snapshot(snapshot)


def pick_primary_link(snapshot: CreatedNodeSnapshot | None) -> str | None:
    """First URL-like link of a created node, images before video."""
    if snapshot is None:
        return None
    for key in (*IMAGE_LINK_KEYS, *VIDEO_LINK_KEYS):
        value = snapshot.meta.get(key)
        if isinstance(value, str) and is_likely_url(value):
            return value.strip()
    return None


def describe_plural(kind: str, count: int) -> str:
    singular = kind if kind in ("image", "video", "text") else "node"
    return singular if count == 1 else f"{singular}s"


def describe_counts(types: list[str]) -> str:
    """``["image", "text", "text"]`` -> ``"1 image, 2 texts"`` (first-seen order)."""
    counts: dict[str, int] = {}
    for node_type in types:
        counts[node_type] = counts.get(node_type, 0) + 1
    return ", ".join(f"{count} {describe_plural(t, count)}" for t, count in counts.items())
