"""Tests for the LiteLLM chat client with mocked completions."""

from types import SimpleNamespace
from unittest.mock import patch

import pytest

from sublate.core.config import LLMConfig, ProviderSettings
from sublate.core.models import ChatOptions
from sublate.llm.client import ChatCompletionError, LiteLLMClient

MESSAGES = [{"role": "user", "content": "hi"}]


def _response(content, prompt=12, completion=3):
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        usage=SimpleNamespace(
            prompt_tokens=prompt, completion_tokens=completion, total_tokens=prompt + completion
        ),
    )


def _chunk(text):
    return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=text))])


def _client():
    return LiteLLMClient(
        LLMConfig(
            temperature=0.3,
            max_tokens=2048,
            providers={
                "local": ProviderSettings(
                    model_prefix="ollama_chat", api_base="http://localhost:11434"
                ),
                "openai": ProviderSettings(model_prefix="openai", api_key="sk-test"),
            },
        )
    )


class TestRoute:
    def test_prefix_added(self):
        assert _client().route("local", "qwen3:8b") == "ollama_chat/qwen3:8b"

    def test_model_with_prefix_kept(self):
        assert _client().route("local", "openai/gpt-4o") == "openai/gpt-4o"

    def test_unknown_provider_uses_id(self):
        assert _client().route("groq", "llama3") == "groq/llama3"


class TestChatCompletion:
    @patch("litellm.completion")
    def test_returns_content_and_usage(self, mock_completion):
        mock_completion.return_value = _response("bonjour")
        content, usage = _client().chat_completion("local", "qwen3:8b", MESSAGES, ChatOptions())
        assert content == "bonjour"
        assert (usage.prompt_tokens, usage.completion_tokens, usage.total_tokens) == (12, 3, 15)

        kwargs = mock_completion.call_args.kwargs
        assert kwargs["model"] == "ollama_chat/qwen3:8b"
        assert kwargs["api_base"] == "http://localhost:11434"
        assert kwargs["temperature"] == 0.3
        assert kwargs["max_tokens"] == 2048
        assert "response_format" not in kwargs
        assert "api_key" not in kwargs

    @patch("litellm.completion")
    def test_json_mode_and_options(self, mock_completion):
        mock_completion.return_value = _response("{}")
        options = ChatOptions(temperature=0.0, top_p=0.9, max_tokens=100, json_mode=True)
        _client().chat_completion("openai", "gpt-4o-mini", MESSAGES, options)
        kwargs = mock_completion.call_args.kwargs
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["temperature"] == 0.0
        assert kwargs["top_p"] == 0.9
        assert kwargs["max_tokens"] == 100
        assert kwargs["api_key"] == "sk-test"

    @patch("litellm.completion", side_effect=Exception("connection refused"))
    def test_errors_wrapped(self, _mock):
        with pytest.raises(ChatCompletionError, match="connection refused"):
            _client().chat_completion("local", "qwen3:8b", MESSAGES, ChatOptions())

    @patch("litellm.completion")
    def test_empty_choices(self, mock_completion):
        mock_completion.return_value = SimpleNamespace(choices=[], usage=None)
        with pytest.raises(ChatCompletionError, match="empty response"):
            _client().chat_completion("local", "qwen3:8b", MESSAGES, ChatOptions())

    @patch("litellm.completion")
    def test_missing_usage(self, mock_completion):
        mock_completion.return_value = SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content=None))]
        )
        content, usage = _client().chat_completion("local", "m", MESSAGES, ChatOptions())
        assert content == ""
        assert usage.is_empty()

    @patch("litellm.stream_chunk_builder")
    @patch("litellm.completion")
    def test_streaming_forwards_deltas(self, mock_completion, mock_builder):
        mock_completion.return_value = iter([_chunk("bon"), _chunk(None), _chunk("jour")])
        mock_builder.return_value = _response("bonjour", prompt=5, completion=2)
        deltas = []
        content, usage = _client().chat_completion(
            "local", "qwen3:8b", MESSAGES, ChatOptions(), on_delta=deltas.append
        )
        assert deltas == ["bon", "jour"]
        assert content == "bonjour"
        assert usage.total_tokens == 7
        assert mock_completion.call_args.kwargs["stream"] is True
        assert len(mock_builder.call_args.args[0]) == 3
