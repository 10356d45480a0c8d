"""
Artifact extraction from arbitrary provider output.

Provider replies arrive as strings, JSON strings, lists of streamed
tokens, or nested documents mixing URLs and prose. ``ArtifactExtractor``
walks any of these and returns a flat list of typed artifacts:

- URLs and data URIs become image or video artifacts (by extension,
  MIME prefix or keyword), each distinct value once;
- other strings become text artifacts;
- a list made only of non-URL strings is treated as streamed tokens and
  joined into one string before classification.

The walk uses an explicit worklist and an identity set, so deep or
self-referencing documents neither recurse nor loop.
"""

import hashlib
import json
import logging
import re
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

URL_KEYS = ("output", "url", "uri", "image", "image_url", "video", "video_url", "audio", "href")
TEXT_KEYS = ("text", "content", "value", "result", "message")
TITLE_KEYS = ("title", "label", "name", "id")

DATA_URI_RE = re.compile(r"^data:(image|video)/[a-z0-9.+-]+;base64,", re.IGNORECASE)
HTTP_RE = re.compile(r"^https?://", re.IGNORECASE)
IMAGE_EXT_RE = re.compile(r"(\.png|\.jpg|\.jpeg|\.gif|\.webp|\.bmp|\.tiff)(\?.*)?$")
VIDEO_EXT_RE = re.compile(r"(\.mp4|\.mov|\.webm|\.mkv|\.avi|\.mpe?g)(\?.*)?$")
IMAGE_WORD_RE = re.compile(r"\bimage\b")
VIDEO_WORD_RE = re.compile(r"\bvideo\b")


class ArtifactKind(StrEnum):
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"


@dataclass(frozen=True)
class Artifact:
    kind: ArtifactKind
    value: str
    title: str | None = None


@dataclass
class ExtractionResult:
    artifacts: list[Artifact] = field(default_factory=list)
    duplicates: int = 0

    @property
    def texts(self) -> list[Artifact]:
        return [a for a in self.artifacts if a.kind == ArtifactKind.TEXT]

    @property
    def assets(self) -> list[Artifact]:
        return [a for a in self.artifacts if a.kind != ArtifactKind.TEXT]


# ---------------------------------------------------------------------------
# String classification
# ---------------------------------------------------------------------------


def is_data_uri(value: str) -> bool:
    return bool(DATA_URI_RE.match(value.strip()))


def is_likely_url(value: str) -> bool:
    """True for image/video data URIs and well-formed http(s) URLs."""
    trimmed = value.strip()
    if not trimmed:
        return False
    if is_data_uri(trimmed):
        return True
    if not HTTP_RE.match(trimmed):
        return False
    try:
        return bool(urlparse(trimmed).netloc)
    except ValueError:
        return False


def detect_asset_kind(url: str) -> ArtifactKind:
    lower = url.lower()
    if is_data_uri(lower):
        return ArtifactKind.IMAGE if lower.startswith("data:image/") else ArtifactKind.VIDEO
    if IMAGE_EXT_RE.search(lower):
        return ArtifactKind.IMAGE
    if VIDEO_EXT_RE.search(lower):
        return ArtifactKind.VIDEO
    if IMAGE_WORD_RE.search(lower):
        return ArtifactKind.IMAGE
    if VIDEO_WORD_RE.search(lower):
        return ArtifactKind.VIDEO
    return ArtifactKind.TEXT


def compute_asset_signature(value: str) -> str:
    """Content signature (sha256 of the trimmed value) used for dedup."""
    return hashlib.sha256(value.strip().encode("utf-8")).hexdigest()


def pick_string(record: dict[str, Any], keys: tuple[str, ...]) -> str | None:
    for key in keys:
        value = record.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _parse_json_if_possible(value: str) -> Any:
    trimmed = value.strip()
    if not trimmed or trimmed[0] not in "{[":
        return None
    try:
        return json.loads(trimmed)
    except json.JSONDecodeError:
        return None


# ---------------------------------------------------------------------------
# Extractor
# ---------------------------------------------------------------------------


class ArtifactExtractor:
    """Stateless walker; call ``extract`` once per output source."""

    def extract(self, raw: Any) -> ExtractionResult:
        result = ExtractionResult()
        seen_values: set[str] = set()
        # id -> object keeps visited containers alive so ids are never reused
        seen_objects: dict[int, Any] = {}
        worklist: list[tuple[Any, str | None]] = [(raw, None)]

        def add(kind: ArtifactKind, value: str, title: str | None) -> None:
            trimmed = value.strip()
            if not trimmed:
                return
            if kind != ArtifactKind.TEXT:
                if trimmed in seen_values:
                    result.duplicates += 1
                    return
                seen_values.add(trimmed)
            result.artifacts.append(Artifact(kind=kind, value=trimmed, title=title))

        def consider_string(value: str, title: str | None) -> None:
            trimmed = value.strip()
            if not trimmed:
                return
            parsed = _parse_json_if_possible(trimmed)
            if parsed is not None:
                worklist.append((parsed, title))
                return
            if is_likely_url(trimmed):
                add(detect_asset_kind(trimmed), trimmed, title)
                return
            add(ArtifactKind.TEXT, trimmed, title)

        while worklist:
            value, title = worklist.pop()
            if value is None:
                continue
            if isinstance(value, str):
                consider_string(value, title)
                continue

            if isinstance(value, list | tuple):
                if id(value) in seen_objects:
                    continue
                seen_objects[id(value)] = value
                all_strings = all(isinstance(item, str) for item in value)
                if value and all_strings and not any(is_likely_url(item) for item in value):
                    consider_string("".join(value), title)
                    continue
                # reversed so items are visited in document order
                worklist.extend((item, title) for item in reversed(value))
                continue

            if isinstance(value, dict):
                if id(value) in seen_objects:
                    continue
                seen_objects[id(value)] = value
                derived_title = title or pick_string(value, TITLE_KEYS)
                ordered = [value[key] for key in URL_KEYS if key in value]
                ordered += [value[key] for key in TEXT_KEYS if key in value]
                ordered += [
                    entry
                    for key, entry in value.items()
                    if key not in URL_KEYS and key not in TEXT_KEYS
                ]
                worklist.extend((entry, derived_title) for entry in reversed(ordered))

        logger.debug(
            f"Extracted {len(result.artifacts)} artifact(s), "
            f"{result.duplicates} duplicate(s) suppressed"
        )
        return result


# ---------------------------------------------------------------------------
# Text helpers
# ---------------------------------------------------------------------------


def merge_texts(artifacts: list[Artifact]) -> str | None:
    """Join distinct trimmed text values with blank lines."""
    parts: list[str] = []
    seen: set[str] = set()
    for artifact in artifacts:
        text = artifact.value.strip()
        if not text or text in seen:
            continue
        seen.add(text)
        parts.append(text)
    return "\n\n".join(parts) if parts else None


FIRST_WORD_RE = re.compile(r"^\s*([\w-]+)")


def normalize_aggregated_text(value: str | None) -> str | None:
    """
    Strip trailing whitespace and a trailing repeat of the first word.

    Streaming providers sometimes echo the opening token at the very end
    ("Hello world. Hello").
    """
    if not value:
        return None
    normalized = value.rstrip()
    if not normalized:
        return None
    match = FIRST_WORD_RE.match(normalized)
    if match:
        first_word = match.group(1)
        trailing = re.compile(rf"(?:[\s ]+|\s*\n+){re.escape(first_word)}$", re.IGNORECASE)
        if len(normalized) > len(first_word) and trailing.search(normalized):
            candidate = trailing.sub("", normalized).rstrip()
            if candidate:
                normalized = candidate
    return normalized


# ---------------------------------------------------------------------------
# Output candidates
# ---------------------------------------------------------------------------

PRIMARY_OUTPUT_MAX_DEPTH = 5


def extract_primary_output(output: Any, depth: int = 0) -> str:
    """First non-empty string found, preferring ``output`` keys, within 5 levels."""
    if depth > PRIMARY_OUTPUT_MAX_DEPTH or output is None:
        return ""
    if isinstance(output, str):
        return output.strip()
    if isinstance(output, list | tuple):
        for item in output:
            candidate = extract_primary_output(item, depth + 1)
            if candidate:
                return candidate
        return ""
    if isinstance(output, dict):
        nested = output.get("output")
        if isinstance(nested, str) and nested.strip():
            return nested.strip()
        if nested is not None:
            candidate = extract_primary_output(nested, depth + 1)
            if candidate:
                return candidate
        for entry in output.values():
            candidate = extract_primary_output(entry, depth + 1)
            if candidate:
                return candidate
    return ""


def collect_output_candidates(output: str, parsed: Any = None, raw_output: Any = None) -> list[Any]:
    """
    Gather distinct sources to feed the extractor.

    Order: parsed output (when present), raw provider output, the plain
    output string (only when nothing was parsed), then the primary
    string found inside all of them.
    """
    candidates: list[Any] = []
    seen_strings: set[str] = set()
    seen_objects: set[int] = set()

    def register(value: Any) -> None:
        if value is None:
            return
        if isinstance(value, str):
            trimmed = value.strip()
            if not trimmed or trimmed in seen_strings:
                return
            seen_strings.add(trimmed)
            candidates.append(trimmed)
            return
        if isinstance(value, dict | list):
            if id(value) in seen_objects:
                return
            seen_objects.add(id(value))
        candidates.append(value)

    has_parsed = isinstance(parsed, dict | list) or (isinstance(parsed, str) and parsed.strip())
    if has_parsed:
        register(parsed)
    register(raw_output)
    if not has_parsed:
        register(output)

    primary = extract_primary_output(candidates)
    if primary and primary not in seen_strings:
        candidates.append(primary)
    return candidates


def unwrap_output_source(source: Any) -> Any:
    """Reduce a provider job document to its ``output`` member when it has one."""
    if isinstance(source, dict):
        if source.get("status") == "succeeded" and isinstance(source.get("output"), str):
            return source["output"]
        if source.get("output"):
            return source["output"]
    return source
