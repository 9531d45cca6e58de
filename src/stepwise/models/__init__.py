"""Convenience exports for stepwise LLM client implementations."""

from .llm_client import (
    ChatMessage,
    LLMClient,
    LLMClientError,
    LLMRequest,
    LLMResponseFormatError,
    LLMRetryError,
    LLMTransportError,
)
from .offline import OfflineLLMClient, is_offline_model
from .responses import ResponsesClient

__all__ = [
    "ChatMessage",
    "LLMClient",
    "LLMClientError",
    "LLMRequest",
    "LLMResponseFormatError",
    "LLMRetryError",
    "LLMTransportError",
    "OfflineLLMClient",
    "ResponsesClient",
    "is_offline_model",
]
