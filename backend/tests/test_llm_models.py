"""Tests for the chat model wrappers and provider selection.

The provider SDKs are replaced with fakes in ``sys.modules`` so no
network access or real API keys are needed.
"""

from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from app.config import Settings
from app.llm import ChatMessage, LLMError, get_analyzer_model, get_chat_model


def _fake_sdk(client_attr: str) -> SimpleNamespace:
    return SimpleNamespace(
        **{client_attr: MagicMock(return_value=MagicMock())},
        RateLimitError=type("RateLimitError", (Exception,), {}),
        AuthenticationError=type("AuthenticationError", (Exception,), {}),
        APITimeoutError=type("APITimeoutError", (Exception,), {}),
        APIStatusError=type(
            "APIStatusError",
            (Exception,),
            {
                "__init__": lambda self, msg, status_code=500: (
                    super(type(self), self).__init__(msg),
                    setattr(self, "status_code", status_code),
                )[-1]
            },
        ),
    )


def _settings(**kwargs) -> Settings:
    defaults = {
        "supabase_url": "https://test.supabase.co",
        "jwt_secret_key": "test",
        "llm_provider": "",
        "anthropic_api_key": None,
        "openai_api_key": None,
        "chat_model": None,
        "analyzer_model": None,
    }
    defaults.update(kwargs)
    return Settings(**defaults)


@pytest.fixture
def openai_model():
    fake = _fake_sdk("OpenAI")
    with patch.dict("sys.modules", {"openai": fake}):
        from app.llm.openai import OpenAIChatModel

        yield OpenAIChatModel(api_key="test-key"), fake


@pytest.fixture
def anthropic_model():
    fake = _fake_sdk("Anthropic")
    with patch.dict("sys.modules", {"anthropic": fake}):
        from app.llm.anthropic import AnthropicChatModel

        yield AnthropicChatModel(api_key="test-key"), fake


class TestOpenAIChatModel:
    def test_system_prompt_prepended(self, openai_model):
        model, _ = openai_model
        create = model._client.chat.completions.create
        create.return_value = SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content="Hoi"), finish_reason="stop")],
            usage=SimpleNamespace(prompt_tokens=12, completion_tokens=3),
            model="gpt-4o-mini",
        )

        response = model.generate([ChatMessage(role="user", content="hi")], system="Be brief", temperature=0.2)

        kwargs = create.call_args.kwargs
        assert kwargs["messages"][0] == {"role": "system", "content": "Be brief"}
        assert kwargs["temperature"] == 0.2
        assert response.content == "Hoi"
        assert response.usage == {"input_tokens": 12, "output_tokens": 3}
        assert response.stop_reason == "stop"

    @pytest.mark.parametrize(
        "error_name, expected",
        [
            ("RateLimitError", "rate_limit"),
            ("AuthenticationError", "auth"),
            ("APITimeoutError", "timeout"),
            ("APIStatusError", "server"),
        ],
    )
    def test_sdk_errors_classified(self, openai_model, error_name, expected):
        model, fake = openai_model
        model._client.chat.completions.create.side_effect = getattr(fake, error_name)("failed")
        with pytest.raises(LLMError) as exc_info:
            model.generate([ChatMessage(role="user", content="hi")])
        assert exc_info.value.error_class == expected

    def test_unknown_exception_classified(self, openai_model):
        model, _ = openai_model
        model._client.chat.completions.create.side_effect = ValueError("odd")
        with pytest.raises(LLMError) as exc_info:
            model.generate([ChatMessage(role="user", content="hi")])
        assert exc_info.value.error_class == "unknown"


class TestAnthropicChatModel:
    def test_system_messages_merged(self, anthropic_model):
        model, _ = anthropic_model
        create = model._client.messages.create
        create.return_value = SimpleNamespace(
            content=[SimpleNamespace(type="text", text="Hallo "), SimpleNamespace(type="text", text="daar")],
            usage=SimpleNamespace(input_tokens=20, output_tokens=4),
            stop_reason="end_turn",
            model="claude-test",
        )

        response = model.generate(
            [
                ChatMessage(role="system", content="Memory section"),
                ChatMessage(role="user", content="hi"),
            ],
            system="Base prompt",
        )

        kwargs = create.call_args.kwargs
        assert kwargs["system"] == "Base prompt\n\nMemory section"
        assert kwargs["messages"] == [{"role": "user", "content": "hi"}]
        assert response.content == "Hallo daar"
        assert response.model_id == "claude-test"

    def test_rate_limit_classified(self, anthropic_model):
        model, fake = anthropic_model
        model._client.messages.create.side_effect = fake.RateLimitError("slow down")
        with pytest.raises(LLMError) as exc_info:
            model.generate([ChatMessage(role="user", content="hi")])
        assert exc_info.value.error_class == "rate_limit"

    def test_missing_key_rejected(self, monkeypatch):
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        with patch.dict("sys.modules", {"anthropic": _fake_sdk("Anthropic")}):
            from app.llm.anthropic import AnthropicChatModel

            with pytest.raises(ValueError):
                AnthropicChatModel()


class TestProviderSelection:
    def test_no_keys_means_no_model(self):
        assert get_chat_model(_settings()) is None
        assert get_analyzer_model(_settings()) is None

    def test_anthropic_preferred_when_both_keys_set(self):
        settings = _settings(anthropic_api_key="a-key", openai_api_key="o-key")
        with patch.dict("sys.modules", {"anthropic": _fake_sdk("Anthropic")}):
            chat = get_chat_model(settings)
            analyzer = get_analyzer_model(settings)
        assert chat.model_id == "claude-sonnet-4-5-20250929"
        assert analyzer.model_id == "claude-haiku-4-5-20251001"

    def test_forced_provider_and_model(self):
        settings = _settings(llm_provider="openai", openai_api_key="o-key", chat_model="gpt-4.1")
        with patch.dict("sys.modules", {"openai": _fake_sdk("OpenAI")}):
            chat = get_chat_model(settings)
            analyzer = get_analyzer_model(settings)
        assert chat.model_id == "gpt-4.1"
        assert analyzer.model_id == "gpt-4o-mini"

    def test_unknown_provider(self):
        assert get_chat_model(_settings(llm_provider="mystery")) is None
