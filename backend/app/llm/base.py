"""Provider-neutral message and response types for LLM calls."""

from dataclasses import dataclass, field
from typing import Optional, Protocol


class LLMError(Exception):
    """Raised when a provider SDK reports an error.

    ``error_class`` is one of ``rate_limit``, ``auth``, ``timeout``,
    ``server`` or ``unknown``.
    """

    def __init__(self, error_class: str, message: str) -> None:
        super().__init__(message)
        self.error_class = error_class


@dataclass
class ChatMessage:
    """A message in a conversation."""

    role: str  # "system", "user", "assistant"
    content: str


@dataclass
class ChatResponse:
    """Complete response from a model."""

    content: str
    usage: dict[str, int] = field(default_factory=dict)
    stop_reason: Optional[str] = None
    model_id: Optional[str] = None


class ChatModel(Protocol):
    """What the chat route and the preference analyzer need from a provider."""

    @property
    def model_id(self) -> str: ...

    def generate(
        self,
        messages: list[ChatMessage],
        *,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        system: Optional[str] = None,
    ) -> ChatResponse: ...


def classify_sdk_error(sdk, exc: Exception, prefix: str) -> LLMError:
    """Map an SDK exception to an LLMError by looking up the SDK's error types.

    Both the anthropic and openai SDKs expose the same exception names.
    """
    checks = [
        ("RateLimitError", "rate_limit", "rate limited"),
        ("AuthenticationError", "auth", "auth failed"),
        ("APITimeoutError", "timeout", "timeout"),
    ]
    for attr, error_class, label in checks:
        exc_type = getattr(sdk, attr, None)
        if exc_type is not None and isinstance(exc, exc_type):
            return LLMError(error_class, f"{prefix}: {label}: {exc}")

    api_status = getattr(sdk, "APIStatusError", None)
    if api_status is not None and isinstance(exc, api_status):
        code = getattr(exc, "status_code", "?")
        return LLMError("server", f"{prefix}: API error ({code}): {exc}")

    return LLMError("unknown", f"{prefix}: {exc}")
