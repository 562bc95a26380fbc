"""LLM provider adapters."""

from .auto import get_analyzer_model, get_chat_model
from .base import ChatMessage, ChatModel, ChatResponse, LLMError

__all__ = [
    "ChatMessage",
    "ChatModel",
    "ChatResponse",
    "LLMError",
    "get_analyzer_model",
    "get_chat_model",
]
