"""Shared test fixtures."""

from __future__ import annotations

import json
from typing import Callable

import pytest

from sublate.core.events import EventBus
from sublate.core.models import (
    ChatOptions,
    LanguageContent,
    Segment,
    SubtitleProject,
    TokenUsage,
)
from sublate.core.storage import InMemoryStore

DEFAULT_ANALYSIS = {
    "genre": "drama",
    "tone": "casual",
    "style_guide": ["Keep lines short", "Use informal address"],
    "scene_outline": [{"start_id": "s1", "end_id": "s3", "summary": "Opening"}],
    "roles": [{"name": "Ann", "person": "first", "notes": "lead"}],
    "initial_glossary": [{"source": "Springfield", "translations": {"all": "Springfield"}}],
}

# Responder: (batch ids, json_mode) -> reply text, an exception to raise, or None for the default
Responder = Callable[[list[str], bool], "str | Exception | None"]


def batch_payload(messages: list[dict[str, str]]) -> dict:
    """Decode the JSON context object embedded in a batch user prompt."""
    user = messages[-1]["content"]
    return json.loads(user[user.index("\n{\n") + 1 :])


def translate_text(text: str) -> str:
    return f"FR:{text}"


class FakeChatClient:
    """Scripted chat client.

    Analysis requests get ``analysis`` (a dict, a raw string, or an exception
    to raise). Batch requests echo every item through ``translate_text`` in
    the requested protocol unless ``respond`` returns something else.
    """

    def __init__(
        self,
        analysis: dict | str | Exception = DEFAULT_ANALYSIS,
        respond: Responder | None = None,
        usage: TokenUsage | None = None,
    ) -> None:
        self.analysis = analysis
        self.respond = respond
        self.usage = usage or TokenUsage(prompt_tokens=10, completion_tokens=5, total_tokens=15)
        self.calls: list[dict] = []

    @property
    def batch_calls(self) -> list[dict]:
        return [c for c in self.calls if c["kind"] == "batch"]

    @property
    def analysis_calls(self) -> list[dict]:
        return [c for c in self.calls if c["kind"] == "analysis"]

    def chat_completion(
        self,
        provider_id: str,
        model: str,
        messages: list[dict[str, str]],
        options: ChatOptions,
        on_delta=None,
    ) -> tuple[str, TokenUsage]:
        if "subtitle project analyst" in messages[0]["content"]:
            self.calls.append({"kind": "analysis", "messages": messages, "options": options})
            if isinstance(self.analysis, Exception):
                raise self.analysis
            if isinstance(self.analysis, str):
                return self.analysis, self.usage
            return json.dumps(self.analysis), self.usage

        payload = batch_payload(messages)
        ids = [item["id"] for item in payload["batch"]]
        self.calls.append(
            {
                "kind": "batch",
                "ids": ids,
                "json_mode": options.json_mode,
                "payload": payload,
                "messages": messages,
                "options": options,
            }
        )
        if self.respond is not None:
            reply = self.respond(ids, options.json_mode)
            if isinstance(reply, Exception):
                raise reply
            if reply is not None:
                return reply, self.usage

        items = [
            {"id": item["id"], "final": translate_text(item["text"])} for item in payload["batch"]
        ]
        if options.json_mode:
            return json.dumps({"items": items}, ensure_ascii=False), self.usage
        return "\n".join(json.dumps(i, ensure_ascii=False) for i in items), self.usage


def make_project(
    n: int, project_id: str = "p1", source_lang: str = "en", texts: list[str] | None = None
) -> SubtitleProject:
    """Project with ``n`` segments s1..sN, 2 seconds apart."""
    segments = []
    for i in range(1, n + 1):
        text = texts[i - 1] if texts else f"Line {i}"
        segments.append(
            Segment(
                id=f"s{i}",
                start=i * 2.0,
                end=i * 2.0 + 1.5,
                languages={source_lang: LanguageContent(text=text)},
            )
        )
    return SubtitleProject(id=project_id, project_name="Pilot", segments=segments)


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def collected(bus: EventBus) -> list:
    """Every event published on the bus, in order."""
    events: list = []
    bus.subscribe("subtitle.progress", events.append)
    bus.subscribe("subtitle.conversation", events.append)
    return events
