"""Chat model backed by Anthropic's messages API.

The ``anthropic`` SDK is imported lazily so the module imports without
it; the import only fails when the class is instantiated.
"""

from __future__ import annotations

import os
from typing import Any, Optional

from .base import ChatMessage, ChatResponse, LLMError, classify_sdk_error


class AnthropicChatModel:
    """Usage::

        model = AnthropicChatModel()  # uses ANTHROPIC_API_KEY env var
        response = model.generate([ChatMessage(role="user", content="Hallo")])
    """

    def __init__(
        self,
        model_id: str = "claude-sonnet-4-5-20250929",
        *,
        api_key: Optional[str] = None,
        max_tokens: int = 4096,
    ) -> None:
        try:
            import anthropic  # noqa: F811
        except ImportError:
            raise ImportError(
                "The 'anthropic' package is required for AnthropicChatModel. "
                "Install it with: pip install anthropic"
            ) from None

        resolved_key = api_key or os.environ.get("ANTHROPIC_API_KEY")
        if not resolved_key:
            raise ValueError("An API key is required. Pass api_key= or set ANTHROPIC_API_KEY.")

        self._model_id = model_id
        self._max_tokens = max_tokens
        self._client = anthropic.Anthropic(api_key=resolved_key)

    @property
    def model_id(self) -> str:
        return self._model_id

    def generate(
        self,
        messages: list[ChatMessage],
        *,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        system: Optional[str] = None,
    ) -> ChatResponse:
        api_messages, merged_system = self._prepare_messages(messages, system)
        kwargs: dict[str, Any] = {
            "model": self._model_id,
            "messages": api_messages,
            "max_tokens": max_tokens or self._max_tokens,
        }
        if merged_system:
            kwargs["system"] = merged_system
        if temperature is not None:
            kwargs["temperature"] = temperature

        try:
            response = self._client.messages.create(**kwargs)
        except Exception as exc:
            raise self._classify_error(exc) from exc

        return self._parse_response(response)

    def _prepare_messages(
        self,
        messages: list[ChatMessage],
        system: Optional[str],
    ) -> tuple[list[dict[str, Any]], Optional[str]]:
        """Split out system messages; Anthropic takes them as a top-level param."""
        merged_system = system
        api_messages: list[dict[str, Any]] = []

        for msg in messages:
            if msg.role == "system":
                merged_system = f"{merged_system}\n\n{msg.content}" if merged_system else msg.content
                continue
            api_messages.append({"role": msg.role, "content": msg.content})

        return api_messages, merged_system

    @staticmethod
    def _classify_error(exc: Exception) -> LLMError:
        import anthropic as _anthropic

        return classify_sdk_error(_anthropic, exc, "Anthropic API error")

    @staticmethod
    def _parse_response(response: Any) -> ChatResponse:
        text = "".join(block.text for block in response.content if block.type == "text")
        usage = {}
        if response.usage:
            usage = {
                "input_tokens": response.usage.input_tokens,
                "output_tokens": response.usage.output_tokens,
            }
        return ChatResponse(
            content=text,
            usage=usage,
            stop_reason=response.stop_reason,
            model_id=response.model,
        )
