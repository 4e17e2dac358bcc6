"""Request strategy for one batch: JSON mode with JSONL fallback, retry once.

JSON mode (``response_format=json_object``) is the cheaper, stricter protocol
but not every provider or model honours it. The negotiator probes it on the
first batch of a task and sticks with the outcome; any JSON-mode failure
switches the rest of the task to JSONL, which nearly every model can emit.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from sublate.core.config import TranslationConfig
from sublate.core.models import ChatOptions, ChatRole, LLMProfile, TokenUsage
from sublate.llm.client import ChatCompletionClient, ChatCompletionError
from sublate.llm.parsing import NoItemsParsedError, TranslationItem, parse_json_items, parse_jsonl
from sublate.llm.prompts import PromptGlossaryEntry, build_batch_prompts
from sublate.subtitles.conversation import ConversationRecorder
from sublate.utils.console import console
from sublate.utils.tasks import CancellationToken


class ProtocolNegotiator:
    """Decides JSON mode vs JSONL per batch.

    Args:
        pinned: ``True``/``False`` forces a protocol for every batch; ``None``
            negotiates.
        allow_probe: When False (retry-only runs) JSON mode is never tried
            unless pinned.
    """

    def __init__(self, pinned: bool | None = None, allow_probe: bool = True) -> None:
        self.pinned = pinned
        self.allow_probe = allow_probe
        self.determined = pinned is not None
        self.json_ok = bool(pinned)

    def use_json_mode(self, batch_index: int) -> bool:
        """Whether batch ``batch_index`` (0-based) should start in JSON mode."""
        if self.pinned is not None:
            return self.pinned
        if not self.allow_probe:
            return False
        if not self.determined:
            return batch_index == 0
        return self.json_ok

    def record_success(self) -> None:
        if self.pinned is None:
            self.determined = True
            self.json_ok = True

    def record_failure(self) -> None:
        if self.pinned is None:
            self.determined = True
            self.json_ok = False


class Diagnostics:
    """Timestamped failure log attached to a failed task's error message."""

    def __init__(self) -> None:
        self.lines: list[str] = []

    def log(self, message: str) -> None:
        ts = datetime.now(timezone.utc).isoformat(timespec="seconds")
        self.lines.append(f"{ts} - {message}")

    def render(self) -> str:
        return "".join(f"{line}\n" for line in self.lines)

    def __len__(self) -> int:
        return len(self.lines)


@dataclass
class BatchRequest:
    """Everything needed to prompt for one batch.

    ``index`` is 1-based. ``texts`` are already masked.
    """

    index: int
    count: int
    ids: list[str]
    texts: list[str]
    global_style: dict[str, Any] = field(default_factory=dict)
    glossary: list[PromptGlossaryEntry] = field(default_factory=list)
    references: list[dict[str, str]] = field(default_factory=list)
    boundary_src: list[str] = field(default_factory=list)
    boundary_dst: list[str] = field(default_factory=list)

    @property
    def label(self) -> str:
        return f"batch {self.index}/{self.count}"


class RequestCycle:
    """Runs the request/parse/retry exchange for batches of one task.

    Every completed call reports its usage through ``on_usage`` whether or
    not its content parses. The cancellation token is checked before each
    attempt and after each call returns.
    """

    def __init__(
        self,
        client: ChatCompletionClient,
        provider_id: str,
        model: str,
        negotiator: ProtocolNegotiator,
        diagnostics: Diagnostics,
        recorder: ConversationRecorder,
        on_usage: Callable[[TokenUsage], None],
        src_label: str,
        dst_label: str,
        profile: LLMProfile | None = None,
        config: TranslationConfig | None = None,
        token: CancellationToken | None = None,
    ) -> None:
        self.client = client
        self.provider_id = provider_id
        self.model = model
        self.negotiator = negotiator
        self.diagnostics = diagnostics
        self.recorder = recorder
        self.on_usage = on_usage
        self.src_label = src_label
        self.dst_label = dst_label
        self.profile = profile
        self.config = config or TranslationConfig()
        self.token = token or CancellationToken()

    def _options(self, json_mode: bool) -> ChatOptions:
        if self.profile is not None:
            return self.profile.chat_options(json_mode=json_mode)
        if json_mode:
            return ChatOptions(json_mode=True)
        return ChatOptions(temperature=self.config.jsonl_temperature)

    def _messages(self, batch: BatchRequest, json_mode: bool) -> tuple[list[dict[str, str]], str]:
        system, user = build_batch_prompts(
            json_mode,
            self.profile.sys_prompt_tpl if self.profile else "",
            self.src_label,
            self.dst_label,
            batch.global_style,
            batch.glossary,
            batch.references,
            batch.boundary_src,
            batch.boundary_dst,
            batch.ids,
            batch.texts,
        )
        mode = "JSON mode" if json_mode else "JSONL"
        preview = (
            f"Batch {batch.index}/{batch.count} ({len(batch.ids)} items) [{mode}]"
            f"\n\nSystem:\n{system}\n\nUser:\n{user}"
        )
        messages = [
            {"role": "system", "content": system},
            {"role": "user", "content": user},
        ]
        return messages, preview

    def _batch_meta(self, batch: BatchRequest, json_mode: bool) -> dict[str, Any]:
        return {
            "batch_index": batch.index,
            "batch_count": batch.count,
            "items": len(batch.ids),
            "json_mode": json_mode,
        }

    def _call(
        self, batch: BatchRequest, messages: list[dict[str, str]], json_mode: bool
    ) -> tuple[str, TokenUsage]:
        """One provider call; usage is accounted and the response recorded."""
        stage = "batch_json" if json_mode else "batch_jsonl"
        on_delta = None
        if self.config.stream:
            meta = {**self._batch_meta(batch, json_mode), "delta": True, "append": True}

            def on_delta(delta: str) -> None:
                if delta.strip():
                    self.recorder.push_delta(
                        ChatRole.PROVIDER, "response", delta, f"{stage}_stream", meta
                    )

        self.token.raise_if_cancelled()
        content, usage = self.client.chat_completion(
            self.provider_id, self.model, messages, self._options(json_mode), on_delta
        )
        self.on_usage(usage)
        self.recorder.append(
            ChatRole.PROVIDER,
            "response",
            content,
            stage,
            {
                **self._batch_meta(batch, json_mode),
                "prompt_tokens": usage.prompt_tokens,
                "completion_tokens": usage.completion_tokens,
                "total_tokens": usage.total_tokens,
            },
        )
        self.token.raise_if_cancelled()
        return content, usage

    def _try_json_mode(self, batch: BatchRequest) -> list[TranslationItem] | None:
        """Returns items, or None when JSON mode failed and JSONL should take over."""
        messages, preview = self._messages(batch, json_mode=True)
        self.recorder.append(
            ChatRole.APP, "request", preview, "batch_json", self._batch_meta(batch, True)
        )
        attempts = self.config.max_attempts
        last_error: Exception | None = None
        for attempt in range(1, attempts + 1):
            try:
                content, _ = self._call(batch, messages, json_mode=True)
            except ChatCompletionError as e:
                last_error = e
                self.diagnostics.log(
                    f"json-mode request failed {batch.label} (attempt {attempt}/{attempts}): {e}"
                )
                continue
            try:
                items = parse_json_items(content)
            except NoItemsParsedError as e:
                console.print(
                    f"[yellow]JSON mode returned no items for {batch.label}, "
                    f"falling back to JSONL:[/yellow] {e}"
                )
                self.diagnostics.log(f"json-mode parse failed {batch.label}: {e}")
                self.negotiator.record_failure()
                return None
            self.negotiator.record_success()
            return items

        console.print(f"[yellow]JSON mode request failed for {batch.label}:[/yellow] {last_error}")
        self.recorder.append(
            ChatRole.PROVIDER,
            "error",
            f"JSON mode request failed after retry: {last_error}",
            "batch_json_error",
            self._batch_meta(batch, True),
        )
        self.negotiator.record_failure()
        return None

    def _try_jsonl(self, batch: BatchRequest) -> list[TranslationItem]:
        messages, preview = self._messages(batch, json_mode=False)
        self.recorder.append(
            ChatRole.APP, "request", preview, "batch_jsonl", self._batch_meta(batch, False)
        )
        attempts = self.config.max_attempts
        last_error: Exception | None = None
        for attempt in range(1, attempts + 1):
            try:
                content, _ = self._call(batch, messages, json_mode=False)
            except ChatCompletionError as e:
                last_error = e
                self.diagnostics.log(
                    f"jsonl request failed {batch.label} (attempt {attempt}/{attempts}): {e}"
                )
                continue
            try:
                return parse_jsonl(content)
            except NoItemsParsedError as e:
                last_error = e
                self.diagnostics.log(
                    f"jsonl parse failed {batch.label} (attempt {attempt}/{attempts}): {e}"
                )

        console.print(f"[yellow]No usable output for {batch.label}:[/yellow] {last_error}")
        self.recorder.append(
            ChatRole.PROVIDER,
            "error",
            f"Batch request failed after retry: {last_error}",
            "batch_jsonl_error",
            self._batch_meta(batch, False),
        )
        return []

    def exchange(self, batch: BatchRequest) -> list[TranslationItem]:
        """Request one batch and return its parsed items.

        An empty list means the batch produced nothing after every attempt.

        Raises:
            TaskCancelledError: If the task was cancelled mid-exchange.
        """
        self.token.raise_if_cancelled()
        if self.negotiator.use_json_mode(batch.index - 1):
            items = self._try_json_mode(batch)
            if items is not None:
                return items
            self.token.raise_if_cancelled()
        return self._try_jsonl(batch)
