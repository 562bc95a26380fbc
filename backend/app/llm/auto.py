"""Pick a chat model from settings.

Detection priority when ``LLM_PROVIDER`` is not set:

1. ``ANTHROPIC_API_KEY`` -> Anthropic
2. ``OPENAI_API_KEY`` -> OpenAI
3. No key -> ``None`` (chat is unavailable, memory analysis is skipped)
"""

from __future__ import annotations

from typing import Optional

from ..config import Settings, get_settings
from ..logging_config import get_logger
from .base import ChatModel

logger = get_logger("archidesk.llm")

# Default chat models per provider
_CHAT_DEFAULTS = {
    "anthropic": "claude-sonnet-4-5-20250929",
    "openai": "gpt-4o",
}

# Cheap, fast models for background extraction
_ANALYZER_DEFAULTS = {
    "anthropic": "claude-haiku-4-5-20251001",
    "openai": "gpt-4o-mini",
}


def _resolve_provider(settings: Settings) -> Optional[str]:
    forced = (settings.llm_provider or "").lower().strip()
    if forced:
        return forced
    if settings.anthropic_api_key:
        return "anthropic"
    if settings.openai_api_key:
        return "openai"
    return None


def _build(provider: str, model_id: str, settings: Settings) -> Optional[ChatModel]:
    if provider == "anthropic":
        from .anthropic import AnthropicChatModel

        return AnthropicChatModel(model_id=model_id, api_key=settings.anthropic_api_key)

    if provider == "openai":
        from .openai import OpenAIChatModel

        return OpenAIChatModel(model_id=model_id, api_key=settings.openai_api_key)

    logger.warning(f"Unknown LLM provider '{provider}', no model configured")
    return None


def get_chat_model(settings: Settings | None = None) -> Optional[ChatModel]:
    """Model used to answer chat messages."""
    settings = settings or get_settings()
    provider = _resolve_provider(settings)
    if provider is None:
        return None
    model_id = settings.chat_model or _CHAT_DEFAULTS.get(provider, "")
    model = _build(provider, model_id, settings)
    if model is not None:
        logger.info(f"Chat model configured: {provider}/{model_id}")
    return model


def get_analyzer_model(settings: Settings | None = None) -> Optional[ChatModel]:
    """Cheap model used for background preference extraction."""
    settings = settings or get_settings()
    provider = _resolve_provider(settings)
    if provider is None:
        return None
    model_id = settings.analyzer_model or _ANALYZER_DEFAULTS.get(provider, "")
    return _build(provider, model_id, settings)
