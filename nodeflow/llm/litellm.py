"""LiteLLM-backed text provider (OpenAI, Anthropic, and the rest via one API)."""

import json
import logging
from typing import Any

import litellm

from nodeflow.errors import ProviderError
from nodeflow.llm.provider import GenerativeProvider, ProviderRequest, ProviderResponse

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS = 4096


def build_messages(request: ProviderRequest) -> list[dict[str, Any]]:
    """Render the prompt, upstream context, downstream hints and files as chat messages."""
    messages: list[dict[str, Any]] = []
    if request.settings.system_prompt:
        messages.append({"role": "system", "content": request.settings.system_prompt})

    sections = [request.prompt]
    if request.context:
        sections.append(f"Context:\n{request.context}")
    if request.next_nodes:
        lines = [
            f"- {n.title or n.node_id} ({n.type}): {n.short_description}"
            for n in request.next_nodes
        ]
        sections.append("Downstream nodes:\n" + "\n".join(lines))
    text_files = [f for f in request.files if not f.type.startswith("image/")]
    for file in text_files:
        sections.append(f"File {file.name} ({file.type}):\n{file.content}")
    text = "\n\n".join(s for s in sections if s)

    images = [f for f in request.files if f.type.startswith("image/")]
    if not images:
        messages.append({"role": "user", "content": text})
        return messages

    parts: list[dict[str, Any]] = [{"type": "text", "text": text}]
    for image in images:
        parts.append({"type": "image_url", "image_url": {"url": image.content}})
    messages.append({"role": "user", "content": parts})
    return messages


class LiteLLMProvider(GenerativeProvider):
    """Chat-completion provider through ``litellm.acompletion``."""

    name = "litellm"

    def __init__(
        self,
        model: str = "gpt-4o-mini",
        api_key: str | None = None,
        api_base: str | None = None,
        **extra_kwargs: Any,
    ):
        self.model = model
        self.api_key = api_key
        self.api_base = api_base
        self.extra_kwargs = extra_kwargs

    async def run(self, request: ProviderRequest) -> ProviderResponse:
        settings = request.settings
        model = settings.model or self.model
        kwargs: dict[str, Any] = {
            "model": model,
            "messages": build_messages(request),
            "max_tokens": settings.max_tokens or DEFAULT_MAX_TOKENS,
            **self.extra_kwargs,
        }
        if settings.temperature is not None:
            kwargs["temperature"] = settings.temperature
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.api_base:
            kwargs["api_base"] = self.api_base
        if request.response_schema is not None:
            kwargs["response_format"] = {"type": "json_object"}

        logger.info(f"Calling {model} for node {request.node.id}", extra={"provider": self.name})
        try:
            response = await litellm.acompletion(**kwargs)
        except Exception as e:
            raise ProviderError(f"{model} call failed: {e}", provider=self.name) from e

        content = response.choices[0].message.content or ""
        request_payload = {k: v for k, v in kwargs.items() if k != "api_key"}
        return ProviderResponse(
            output=content,
            content_type="text/plain",
            provider=self.name,
            model=model,
            payload=None,
            logs=[f"{model}: {len(content)} characters"],
            request_payload=json.loads(json.dumps(request_payload, default=str)),
        )
