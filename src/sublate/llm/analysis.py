"""One-shot project analysis: genre, tone, style rules, scenes, roles, glossary hints.

The analysis is requested once per project and stored in
``project.metadata.analysis``; every later run reuses it without a model call.
"""

from __future__ import annotations

import json
from typing import Any

from pydantic import ValidationError

from sublate.core.config import TranslationConfig
from sublate.core.models import (
    ChatOptions,
    GlossaryEntry,
    LLMProfile,
    ProjectAnalysis,
    Role,
    SceneOutline,
    SubtitleProject,
    TokenUsage,
)
from sublate.core.storage import DocumentStore, StorageError
from sublate.llm.client import ChatCompletionClient, ChatCompletionError
from sublate.llm.parsing import normalize_payload
from sublate.llm.prompts import build_analysis_prompts
from sublate.subtitles.conversation import sync_conversations_from_store

_ANALYSIS_KEYS = ("genre", "tone", "style_guide", "scene_outline", "roles", "initial_glossary")


class AnalysisError(RuntimeError):
    """Raised when no usable analysis could be obtained.

    ``usage`` holds whatever tokens were spent before the failure.
    """

    def __init__(self, message: str, usage: TokenUsage | None = None) -> None:
        super().__init__(message)
        self.usage = usage or TokenUsage()


def _str_list(value: Any) -> list[str]:
    if isinstance(value, str):
        return [value] if value.strip() else []
    if isinstance(value, list):
        return [str(v) for v in value if isinstance(v, (str, int, float)) and str(v).strip()]
    return []


def _models(value: Any, model: type) -> list:
    """Validate each dict in ``value`` as ``model``, dropping the ones that fail."""
    if not isinstance(value, list):
        return []
    out = []
    for item in value:
        if not isinstance(item, dict):
            continue
        try:
            out.append(model.model_validate(item))
        except ValidationError:
            continue
    return out


def _lenient_analysis(obj: dict[str, Any]) -> ProjectAnalysis:
    """Coerce field by field, keeping whatever parts are well-formed."""
    genre = obj.get("genre")
    tone = obj.get("tone")
    return ProjectAnalysis(
        genre=genre if isinstance(genre, str) else "",
        tone=tone if isinstance(tone, str) else "",
        style_guide=_str_list(obj.get("style_guide")),
        scene_outline=_models(obj.get("scene_outline"), SceneOutline),
        roles=_models(obj.get("roles"), Role),
        initial_glossary=_models(obj.get("initial_glossary"), GlossaryEntry),
    )


def parse_analysis(content: str) -> ProjectAnalysis | None:
    """Parse a model response into a ProjectAnalysis, or None if nothing usable.

    Accepts the object directly, wrapped in code fences, or nested one level
    under a wrapper key (``{"analysis": {...}}``).
    """
    payload = normalize_payload(content)
    try:
        data = json.loads(payload)
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict):
        return None

    candidates = [data]
    if not any(key in data for key in _ANALYSIS_KEYS):
        candidates = [
            v for v in data.values() if isinstance(v, dict) and any(k in v for k in _ANALYSIS_KEYS)
        ][:1]

    for obj in candidates:
        try:
            analysis = ProjectAnalysis.model_validate(obj)
        except ValidationError:
            analysis = _lenient_analysis(obj)
        if not analysis.is_empty():
            return analysis
    return None


class ProjectAnalyzer:
    def __init__(
        self,
        client: ChatCompletionClient,
        store: DocumentStore,
        config: TranslationConfig | None = None,
    ) -> None:
        self.client = client
        self.store = store
        self.config = config or TranslationConfig()

    def _options(self, profile: LLMProfile | None) -> ChatOptions:
        if profile is not None:
            return profile.chat_options(json_mode=True)
        return ChatOptions(temperature=self.config.analysis_temperature, json_mode=True)

    def ensure_analysis(
        self,
        project: SubtitleProject,
        source_lang: str,
        provider_id: str,
        model: str,
        profile: LLMProfile | None = None,
    ) -> tuple[ProjectAnalysis, TokenUsage]:
        """Return the project's analysis, requesting and storing it if missing.

        Returns:
            Tuple of (analysis, usage). Usage is zero when the stored analysis
            was reused.

        Raises:
            AnalysisError: If the request fails, the response has no usable
                analysis, or the result cannot be saved.
        """
        if project.metadata.analysis is not None:
            return project.metadata.analysis, TokenUsage()

        system, user = build_analysis_prompts(
            project.segments, source_lang, profile.sys_prompt_tpl if profile else ""
        )
        messages = [
            {"role": "system", "content": system},
            {"role": "user", "content": user},
        ]
        try:
            content, usage = self.client.chat_completion(
                provider_id, model, messages, self._options(profile)
            )
        except ChatCompletionError as e:
            raise AnalysisError(f"analysis request failed: {e}") from e

        analysis = parse_analysis(content)
        if analysis is None:
            preview = content if len(content) <= 300 else content[:300] + "..."
            raise AnalysisError(f"analysis json parse failed: {preview}", usage)

        project.metadata.analysis = analysis
        sync_conversations_from_store(self.store, project)
        try:
            self.store.save(project)
        except StorageError as e:
            raise AnalysisError(f"failed to save analysis: {e}", usage) from e
        return analysis, usage
