"""Chat completion client interface and its LiteLLM implementation."""

from __future__ import annotations

from typing import Any, Callable, Protocol

from sublate.core.config import LLMConfig
from sublate.core.models import ChatOptions, TokenUsage

DeltaCallback = Callable[[str], None]


class ChatCompletionError(RuntimeError):
    """Raised when the provider call fails or returns no usable response."""


class ChatCompletionClient(Protocol):
    def chat_completion(
        self,
        provider_id: str,
        model: str,
        messages: list[dict[str, str]],
        options: ChatOptions,
        on_delta: DeltaCallback | None = None,
    ) -> tuple[str, TokenUsage]:
        """Return (content, usage) or raise ChatCompletionError."""
        ...


def _usage_from(response: Any) -> TokenUsage:
    usage = getattr(response, "usage", None)
    if usage is None:
        return TokenUsage()
    return TokenUsage(
        prompt_tokens=getattr(usage, "prompt_tokens", 0) or 0,
        completion_tokens=getattr(usage, "completion_tokens", 0) or 0,
        total_tokens=getattr(usage, "total_tokens", 0) or 0,
    )


class LiteLLMClient:
    """Send chat completions through LiteLLM.

    ``provider_id`` selects an entry in ``LLMConfig.providers``; its
    ``model_prefix`` is joined with the model name to form the LiteLLM route
    (``ollama_chat/qwen3:8b``) unless the model already carries one.
    """

    def __init__(self, config: LLMConfig) -> None:
        self.config = config

    def route(self, provider_id: str, model: str) -> str:
        if "/" in model:
            return model
        prefix = self.config.provider(provider_id).model_prefix
        return f"{prefix}/{model}" if prefix else model

    def _request_kwargs(self, provider_id: str, options: ChatOptions) -> dict[str, Any]:
        settings = self.config.provider(provider_id)
        kwargs: dict[str, Any] = {
            "api_base": settings.api_base or self.config.api_base,
            "temperature": (
                options.temperature if options.temperature is not None else self.config.temperature
            ),
            "max_tokens": options.max_tokens or self.config.max_tokens,
        }
        if settings.api_key:
            kwargs["api_key"] = settings.api_key
        if options.top_p is not None:
            kwargs["top_p"] = options.top_p
        if options.json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        return kwargs

    def chat_completion(
        self,
        provider_id: str,
        model: str,
        messages: list[dict[str, str]],
        options: ChatOptions,
        on_delta: DeltaCallback | None = None,
    ) -> tuple[str, TokenUsage]:
        """Send a chat completion request via LiteLLM.

        When ``on_delta`` is given the response is streamed and each content
        delta is forwarded as it arrives; the chunks are then rebuilt into one
        response to recover token usage.

        Raises:
            ChatCompletionError: If the request fails or returns no content.
        """
        try:
            import litellm
        except ImportError:
            raise ImportError("LiteLLM is not installed. Install with: pip install litellm")

        kwargs = self._request_kwargs(provider_id, options)
        route = self.route(provider_id, model)
        try:
            if on_delta is None:
                response = litellm.completion(model=route, messages=messages, **kwargs)
            else:
                chunks = []
                for chunk in litellm.completion(
                    model=route, messages=messages, stream=True, **kwargs
                ):
                    chunks.append(chunk)
                    delta = chunk.choices[0].delta.content if chunk.choices else None
                    if delta:
                        on_delta(delta)
                response = litellm.stream_chunk_builder(chunks, messages=messages)
        except Exception as e:
            raise ChatCompletionError(f"{route}: {e}") from e

        if response is None or not response.choices:
            raise ChatCompletionError(f"{route}: empty response")
        content = response.choices[0].message.content or ""
        return content, _usage_from(response)
