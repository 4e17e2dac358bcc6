"""Tests for protocol negotiation and the per-batch request cycle."""

import json

from sublate.core.config import TranslationConfig
from sublate.core.models import LLMProfile, SubtitleProject, TokenUsage
from sublate.llm.client import ChatCompletionError
from sublate.llm.protocol import BatchRequest, Diagnostics, ProtocolNegotiator, RequestCycle
from sublate.subtitles.conversation import ConversationRecorder

from conftest import FakeChatClient


class TestProtocolNegotiator:
    def test_probes_first_batch_only(self):
        negotiator = ProtocolNegotiator()
        assert negotiator.use_json_mode(0) is True
        assert negotiator.use_json_mode(1) is False

    def test_success_sticks(self):
        negotiator = ProtocolNegotiator()
        negotiator.record_success()
        assert all(negotiator.use_json_mode(i) for i in range(5))

    def test_failure_sticks(self):
        negotiator = ProtocolNegotiator()
        negotiator.record_failure()
        assert not any(negotiator.use_json_mode(i) for i in range(5))

    def test_retry_runs_never_probe(self):
        negotiator = ProtocolNegotiator(allow_probe=False)
        assert negotiator.use_json_mode(0) is False

    def test_pinned_ignores_outcomes(self):
        negotiator = ProtocolNegotiator(pinned=True)
        negotiator.record_failure()
        assert negotiator.use_json_mode(3) is True

        negotiator = ProtocolNegotiator(pinned=False)
        negotiator.record_success()
        assert negotiator.use_json_mode(0) is False

    def test_pinned_overrides_retry(self):
        assert ProtocolNegotiator(pinned=True, allow_probe=False).use_json_mode(0) is True


class TestDiagnostics:
    def test_lines_are_timestamped(self):
        diagnostics = Diagnostics()
        diagnostics.log("jsonl parse failed batch 1/2 (attempt 1/2): boom")
        assert len(diagnostics) == 1
        ts, message = diagnostics.lines[0].split(" - ", 1)
        assert "T" in ts
        assert message.startswith("jsonl parse failed batch 1/2")

    def test_render(self):
        diagnostics = Diagnostics()
        assert diagnostics.render() == ""
        diagnostics.log("a")
        diagnostics.log("b")
        rendered = diagnostics.render()
        assert rendered.endswith(" - b\n")
        assert rendered.count("\n") == 2


def _cycle(client, store, negotiator=None, profile=None, usage_log=None, config=None):
    project = SubtitleProject(id="p1")
    project.language("fr")
    store.save(project)
    recorder = ConversationRecorder(store, None, "p1", "fr", "t1")
    usage_log = usage_log if usage_log is not None else []
    return RequestCycle(
        client,
        "openai",
        "gpt-4o-mini",
        negotiator or ProtocolNegotiator(),
        Diagnostics(),
        recorder,
        usage_log.append,
        "en (English)",
        "fr (French)",
        profile=profile,
        config=config or TranslationConfig(stream=False),
    )


def _batch(ids=("a", "b"), index=1, count=1):
    return BatchRequest(index=index, count=count, ids=list(ids), texts=[f"t{i}" for i in ids])


def _messages(store):
    conv = store.get("p1").language_metadata["fr"].status.llm_conversations["t1"]
    return conv.messages


class TestRequestCycle:
    def test_json_mode_success(self, store):
        client = FakeChatClient()
        usage_log = []
        cycle = _cycle(client, store, usage_log=usage_log)
        items = cycle.exchange(_batch())
        assert [(i.id, i.final) for i in items] == [("a", "FR:ta"), ("b", "FR:tb")]
        assert [c["json_mode"] for c in client.batch_calls] == [True]
        assert cycle.negotiator.json_ok is True
        assert len(usage_log) == 1

    def test_json_parse_failure_falls_back_without_retry(self, store):
        client = FakeChatClient(respond=lambda ids, json_mode: "nope" if json_mode else None)
        cycle = _cycle(client, store)
        items = cycle.exchange(_batch())
        assert [i.id for i in items] == ["a", "b"]
        assert [c["json_mode"] for c in client.batch_calls] == [True, False]
        assert cycle.negotiator.determined and not cycle.negotiator.json_ok
        assert len(cycle.diagnostics) == 1
        assert "json-mode parse failed batch 1/1" in cycle.diagnostics.lines[0]

    def test_json_request_error_retried_then_fallback(self, store):
        def respond(ids, json_mode):
            return ChatCompletionError("unsupported response_format") if json_mode else None

        client = FakeChatClient(respond=respond)
        cycle = _cycle(client, store)
        items = cycle.exchange(_batch())
        assert len(items) == 2
        assert [c["json_mode"] for c in client.batch_calls] == [True, True, False]
        kinds = [(m.kind, m.metadata.get("stage")) for m in _messages(store)]
        assert ("error", "batch_json_error") in kinds

    def test_jsonl_retry_then_success(self, store):
        replies = iter(["garbage", None])
        client = FakeChatClient(respond=lambda ids, json_mode: next(replies))
        cycle = _cycle(client, store, negotiator=ProtocolNegotiator(pinned=False))
        items = cycle.exchange(_batch())
        assert len(items) == 2
        assert len(client.batch_calls) == 2
        assert len(cycle.diagnostics) == 1

    def test_jsonl_exhausted_returns_empty(self, store):
        client = FakeChatClient(respond=lambda ids, json_mode: "garbage")
        usage_log = []
        cycle = _cycle(
            client, store, negotiator=ProtocolNegotiator(pinned=False), usage_log=usage_log
        )
        assert cycle.exchange(_batch(index=2, count=3)) == []
        assert len(client.batch_calls) == 2
        assert len(usage_log) == 2
        assert len(cycle.diagnostics) == 2
        assert all("batch 2/3" in line for line in cycle.diagnostics.lines)
        last = _messages(store)[-1]
        assert last.kind == "error"
        assert last.content.startswith("Batch request failed after retry")

    def test_pinned_json_falls_back_for_this_batch_only(self, store):
        client = FakeChatClient(
            respond=lambda ids, json_mode: "nope" if json_mode and "a" in ids else None
        )
        cycle = _cycle(client, store, negotiator=ProtocolNegotiator(pinned=True))
        assert len(cycle.exchange(_batch(["a"], 1, 2))) == 1
        assert len(cycle.exchange(_batch(["b"], 2, 2))) == 1
        assert [c["json_mode"] for c in client.batch_calls] == [True, False, True]

    def test_options(self, store):
        client = FakeChatClient()
        cycle = _cycle(client, store, negotiator=ProtocolNegotiator(pinned=False))
        cycle.exchange(_batch())
        options = client.batch_calls[0]["options"]
        assert options.json_mode is False
        assert options.temperature == 0.2

        client = FakeChatClient()
        profile = LLMProfile(temperature=0.9, max_tokens=100)
        cycle = _cycle(client, store, profile=profile)
        cycle.exchange(_batch())
        options = client.batch_calls[0]["options"]
        assert (options.temperature, options.max_tokens, options.json_mode) == (0.9, 100, True)

    def test_audit_request_and_response(self, store):
        usage = TokenUsage(prompt_tokens=3, completion_tokens=4, total_tokens=7)
        client = FakeChatClient(usage=usage)
        cycle = _cycle(client, store)
        cycle.exchange(_batch(index=1, count=2))
        request, response = _messages(store)
        assert request.kind == "request"
        assert request.content.startswith("Batch 1/2 (2 items) [JSON mode]")
        assert response.kind == "response"
        assert response.metadata["total_tokens"] == 7
        assert json.loads(response.content)["items"][0]["id"] == "a"

    def test_profile_template_prefixes_system_prompt(self, store):
        client = FakeChatClient()
        cycle = _cycle(client, store, profile=LLMProfile(sys_prompt_tpl="House rules."))
        cycle.exchange(_batch())
        system = client.batch_calls[0]["messages"][0]["content"]
        assert system.startswith("House rules.\n\n")
        assert "from en (English) to fr (French)" in system
