"""Tests for core data models."""

from sublate.core.models import (
    ConversationStatus,
    ConversionTask,
    GlossaryEntry,
    LanguageContent,
    LLMConversation,
    LLMProfile,
    ProjectAnalysis,
    Segment,
    SubtitleProject,
    TokenUsage,
)


def test_segment_defaults():
    seg = Segment(id="s1")
    assert seg.languages == {}
    assert seg.guideline_standard == {}
    assert seg.is_kids_content is False
    assert seg.text_for("en") == ""


def test_segment_text_for():
    seg = Segment(id="s1", languages={"en": LanguageContent(text="Hello")})
    assert seg.text_for("en") == "Hello"


def test_language_creates_metadata_once():
    project = SubtitleProject(id="p1")
    meta = project.language("fr")
    meta.revision = 4
    assert project.language("fr").revision == 4
    assert list(project.language_metadata) == ["fr"]


def test_put_task_replaces_by_id():
    project = SubtitleProject(id="p1")
    meta = project.language("fr")
    meta.put_task(ConversionTask(id="t1", progress=10))
    meta.put_task(ConversionTask(id="t2"))
    meta.put_task(ConversionTask(id="t1", progress=50))
    assert [t.id for t in meta.status.conversion_tasks] == ["t1", "t2"]
    assert meta.find_task("t1").progress == 50
    assert meta.find_task("missing") is None


def test_put_task_stores_a_copy():
    meta = SubtitleProject(id="p1").language("fr")
    task = ConversionTask(id="t1")
    meta.put_task(task)
    task.progress = 99
    assert meta.find_task("t1").progress == 0


def test_find_segment():
    project = SubtitleProject(id="p1", segments=[Segment(id="a"), Segment(id="b")])
    assert project.find_segment("b").id == "b"
    assert project.find_segment("c") is None


def test_project_round_trips_through_json():
    segment = Segment(id="s1", start=1.0, end=2.5, languages={"en": LanguageContent(text="Hi")})
    project = SubtitleProject(id="p1", segments=[segment])
    project.metadata.task_terms = [GlossaryEntry(source="Acme", translations={"all": "Acme"})]
    project.language("fr").status.llm_conversations["t1"] = LLMConversation(id="t1")
    restored = SubtitleProject.model_validate_json(project.model_dump_json())
    assert restored == project


def test_unknown_fields_ignored():
    seg = Segment.model_validate({"id": "s1", "legacy_field": True})
    assert seg.id == "s1"


def test_conversation_terminal_states():
    assert not LLMConversation(id="c").is_terminal
    assert LLMConversation(id="c", status=ConversationStatus.FINISHED).is_terminal
    assert LLMConversation(id="c", status=ConversationStatus.FAILED).is_terminal


def test_analysis_is_empty():
    assert ProjectAnalysis().is_empty()
    assert ProjectAnalysis(tone="dry").is_empty()
    assert not ProjectAnalysis(style_guide=["short"]).is_empty()


def test_token_usage_is_empty():
    assert TokenUsage().is_empty()
    assert not TokenUsage(total_tokens=1).is_empty()


def test_profile_chat_options():
    profile = LLMProfile(temperature=0.5, top_p=0.8, max_tokens=256, json_mode=False)
    options = profile.chat_options(json_mode=True)
    assert options.json_mode is True
    assert (options.temperature, options.top_p, options.max_tokens) == (0.5, 0.8, 256)
