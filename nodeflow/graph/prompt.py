"""Render upstream nodes as prompt context for generative calls."""

import json

from nodeflow.graph.node import Node, NodeType

CONTENT_PREVIEW_LIMIT = 2000
MAX_JSON_SIZE = 50 * 1024


def _simple(node: Node) -> str:
    label = node.title or node.id
    parts = [f"• **{label}** ({node.type})"]
    content = (node.content or "")[:CONTENT_PREVIEW_LIMIT]

    if node.type == NodeType.IMAGE:
        parts.append(f"Image: {node.title or 'Untitled'}")
        url = node.meta_str("image_url") or node.meta_str("original_image")
        if url:
            parts.append(f"URL: {url}")
    elif node.type == NodeType.VIDEO:
        parts.append(f"Video: {node.title or 'Untitled'}")
        url = node.meta_str("video_url")
        if url:
            parts.append(f"URL: {url}")
    elif node.type == NodeType.FILE:
        parts.append(f"File: {node.title or 'Untitled'}")
        url = node.meta_str("file_url")
        if url:
            parts.append(f"URL: {url}")
        if content:
            parts.append(f"Content: {content}")
    elif node.type == NodeType.SCRIPT:
        parts.append(f"Code: {node.title or 'Untitled'}")
        if content:
            parts.extend(["```", content, "```"])
    elif node.type == NodeType.GENERATIVE:
        parts.append(f"AI Node: {node.title or 'Untitled'}")
        if content:
            parts.append(content)
    elif content:
        parts.append(content)
    return "\n".join(parts)


def _full_json(node: Node, index: int) -> str:
    header = f"## Node {index + 1}: {node.title or node.id}"
    dumped = json.dumps(node.model_dump(mode="json"), indent=2, ensure_ascii=False)
    if len(dumped) > MAX_JSON_SIZE:
        return (
            f"{header}\n```json\n{dumped[:MAX_JSON_SIZE]}\n```\n"
            "[...truncated - node JSON exceeds 50KB]"
        )
    return f"{header}\n```json\n{dumped}\n```"


def build_context_summary(nodes: list[Node], mode: str = "simple") -> str:
    """Format upstream nodes in ``simple`` or ``full_json`` mode."""
    if not nodes:
        return ""
    if mode == "full_json":
        return "\n\n".join(_full_json(node, index) for index, node in enumerate(nodes))
    return "\n\n".join(_simple(node) for node in nodes)
