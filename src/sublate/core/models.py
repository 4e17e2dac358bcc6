"""Shared data models for sublate.

The subtitle project is persisted as one JSON document, so every record here
is a pydantic model that round-trips through ``model_dump_json`` /
``model_validate_json``.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ProcessStatus(str, Enum):
    OK = "ok"
    ERROR = "error"
    FALLBACK = "fallback"


class ConversionStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ConversationStatus(str, Enum):
    RUNNING = "running"
    FINISHED = "finished"
    FAILED = "failed"


class ChatRole(str, Enum):
    APP = "app"
    PROVIDER = "provider"


class _Document(BaseModel):
    model_config = ConfigDict(extra="ignore")


# --- segments ---------------------------------------------------------------


class LanguageProcess(_Document):
    """Provenance of the last attempt to produce a segment's text."""

    provider: str = ""
    model: str = ""
    task_id: str = ""
    status: ProcessStatus = ProcessStatus.OK
    error: str = ""
    updated_at: int = 0


class Guideline(_Document):
    current: int = 0
    level: int = 0  # 0 = within limit, 1 = slightly over, 2 = well over


class SubtitleGuideline(_Document):
    cps: Guideline | None = None  # characters per second
    wpm: Guideline | None = None  # words per minute
    cpl: Guideline | None = None  # characters per line


class LanguageContent(_Document):
    text: str = ""
    process: LanguageProcess | None = None
    subtitle_guideline: SubtitleGuideline | None = None


class Segment(_Document):
    """One time-coded cue with per-language text."""

    id: str
    start: float = 0.0  # seconds
    end: float = 0.0  # seconds
    speaker: str = ""
    languages: dict[str, LanguageContent] = Field(default_factory=dict)
    guideline_standard: dict[str, str] = Field(default_factory=dict)
    is_kids_content: bool = False

    def text_for(self, lang: str) -> str:
        content = self.languages.get(lang)
        return content.text if content else ""


# --- glossary ---------------------------------------------------------------


class GlossaryEntry(_Document):
    """A curated term with a fixed rendering or a do-not-translate flag."""

    id: str = ""
    set_id: str = ""
    source: str
    do_not_translate: bool = False
    case_sensitive: bool = False
    translations: dict[str, str] = Field(default_factory=dict)  # lang | "all" | "*" -> text
    notes: str = ""
    created_at: int = 0
    updated_at: int = 0


class GlossarySet(_Document):
    id: str
    name: str = ""
    description: str = ""
    entries: list[GlossaryEntry] = Field(default_factory=list)


# --- analysis ---------------------------------------------------------------


class SceneOutline(_Document):
    start_id: str = ""
    end_id: str = ""
    summary: str = ""


class Role(_Document):
    name: str = ""
    person: str = ""
    notes: str = ""


class ProjectAnalysis(_Document):
    """Project-level style summary shared by every batch of every run."""

    genre: str = ""
    tone: str = ""
    style_guide: list[str] = Field(default_factory=list)
    scene_outline: list[SceneOutline] = Field(default_factory=list)
    roles: list[Role] = Field(default_factory=list)
    initial_glossary: list[GlossaryEntry] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not self.genre and not self.style_guide and not self.scene_outline


# --- tasks & conversations --------------------------------------------------


class TokenUsage(_Document):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def is_empty(self) -> bool:
        return not (self.prompt_tokens or self.completion_tokens or self.total_tokens)


class ConversionTask(_Document):
    """One translation run for one target language."""

    id: str
    type: str = "llm_translate"
    status: ConversionStatus = ConversionStatus.PENDING
    progress: float = 0.0  # 0-100
    start_time: int = 0
    end_time: int = 0
    error_message: str = ""

    source_lang: str = ""
    target_lang: str = ""
    provider: str = ""
    provider_id: str = ""
    model: str = ""

    total_segments: int = 0
    processed_segments: int = 0
    failed_segments: int = 0
    project_total_segments: int = 0
    project_completed_segments: int = 0

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    request_count: int = 0

    stage: str = ""
    stage_detail: str = ""


class LLMChatMessage(_Document):
    id: str
    role: ChatRole
    kind: str = ""  # request | response | meta | error
    content: str
    created_at: int = 0
    metadata: dict[str, Any] = Field(default_factory=dict)


class LLMConversation(_Document):
    """Audit trail of one translation task, keyed by task id."""

    id: str
    project_id: str = ""
    language: str = ""
    task_id: str = ""
    provider: str = ""
    provider_id: str = ""
    model: str = ""
    status: ConversationStatus = ConversationStatus.RUNNING
    started_at: int = 0
    ended_at: int = 0
    messages: list[LLMChatMessage] = Field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.status != ConversationStatus.RUNNING


class LanguageStatus(_Document):
    is_original: bool = False
    conversion_tasks: list[ConversionTask] = Field(default_factory=list)
    llm_conversations: dict[str, LLMConversation] = Field(default_factory=dict)
    last_updated: int = 0


class LanguageMetadata(_Document):
    language_name: str = ""
    translator: str = ""
    sync_status: str = ""
    revision: int = 0
    active_task_id: str = ""
    status: LanguageStatus = Field(default_factory=LanguageStatus)

    def find_task(self, task_id: str) -> ConversionTask | None:
        for task in self.status.conversion_tasks:
            if task.id == task_id:
                return task
        return None

    def put_task(self, task: ConversionTask) -> None:
        """Replace the task record with the same id, or append it."""
        tasks = self.status.conversion_tasks
        for i, existing in enumerate(tasks):
            if existing.id == task.id:
                tasks[i] = task.model_copy(deep=True)
                return
        tasks.append(task.model_copy(deep=True))


class ProjectMetadata(_Document):
    analysis: ProjectAnalysis | None = None
    task_terms: list[GlossaryEntry] = Field(default_factory=list)


class SubtitleProject(_Document):
    """Aggregate root persisted as a whole document after every change."""

    id: str
    project_name: str = ""
    metadata: ProjectMetadata = Field(default_factory=ProjectMetadata)
    segments: list[Segment] = Field(default_factory=list)
    language_metadata: dict[str, LanguageMetadata] = Field(default_factory=dict)

    def find_segment(self, segment_id: str) -> Segment | None:
        for seg in self.segments:
            if seg.id == segment_id:
                return seg
        return None

    def language(self, lang: str) -> LanguageMetadata:
        """Return the metadata record for a language, creating it if missing."""
        meta = self.language_metadata.get(lang)
        if meta is None:
            meta = LanguageMetadata()
            self.language_metadata[lang] = meta
        return meta


# --- provider-facing --------------------------------------------------------


class ChatOptions(_Document):
    temperature: float | None = None
    top_p: float | None = None
    max_tokens: int | None = None
    json_mode: bool = False


class LLMProfile(_Document):
    """Caller-supplied model parameters shared across providers."""

    id: str = ""
    temperature: float | None = None
    top_p: float | None = None
    max_tokens: int | None = None
    json_mode: bool | None = None  # None = negotiate per task
    sys_prompt_tpl: str = ""

    def chat_options(self, json_mode: bool = False) -> ChatOptions:
        return ChatOptions(
            temperature=self.temperature,
            top_p=self.top_p,
            max_tokens=self.max_tokens,
            json_mode=json_mode,
        )
