"""Generative provider abstraction."""

from nodeflow.llm.litellm import LiteLLMProvider
from nodeflow.llm.mock import MockProvider
from nodeflow.llm.provider import GenerativeProvider, ProviderRequest, ProviderResponse
from nodeflow.llm.replicate import ReplicateProvider

__all__ = [
    "GenerativeProvider",
    "ProviderRequest",
    "ProviderResponse",
    "LiteLLMProvider",
    "ReplicateProvider",
    "MockProvider",
]
