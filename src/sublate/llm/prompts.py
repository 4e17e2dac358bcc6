"""Prompt templates for project analysis and batch subtitle translation."""

from __future__ import annotations

import json
from typing import Any, Sequence

from pydantic import BaseModel, Field

from sublate.core.models import Segment

JSON_MODE_SYSTEM = """\
You are a professional subtitle translator. Translate subtitle lines from %s to %s \
accurately while keeping them natural and concise for on-screen reading.

For every line, internally write a draft, briefly reflect on accuracy, tone and \
length, then produce the final translation. Output only the final result.

Rules:
- Translate every item in "batch"; keep each "id" exactly as given
- Follow "global_style" and stay consistent with "reference_translations"
- Use "boundary_context" only to understand the preceding lines; do NOT translate it
- Tokens like ⟦P000⟧ or ⟦G000⟧ are placeholders: copy them unchanged, never translate, \
split or drop them
- Apply the "glossary" renderings for listed terms
- Do NOT merge or split lines

Return ONE JSON object: {"items": [{"id": "<id>", "final": "<translation>"}, ...]}
"""

JSON_MODE_USER = """\
Translate the "batch" items below. Respond with a single JSON object containing \
an "items" array, one entry per batch id, and nothing else."""

JSONL_SYSTEM = """\
You are a professional subtitle translator. Translate subtitle lines from %s to %s \
accurately while keeping them natural and concise for on-screen reading.

For every line, internally write a draft, briefly reflect on accuracy, tone and \
length, then produce the final translation. Output only the final result.

Rules:
- Translate every item in "batch"; keep each "id" exactly as given
- Follow "global_style" and stay consistent with "reference_translations"
- Use "boundary_context" only to understand the preceding lines; do NOT translate it
- Tokens like ⟦P000⟧ or ⟦G000⟧ are placeholders: copy them unchanged, never translate, \
split or drop them
- Apply the "glossary" renderings for listed terms
- Do NOT merge or split lines

Output JSON Lines: exactly one JSON object per line, in batch order, e.g.
{"id": "<id>", "final": "<translation>"}
No code fences, no commentary, no blank lines.
"""

JSONL_USER = """\
Translate the "batch" items below. Output one JSON object per line with keys \
"id" and "final", and nothing else."""

ANALYSIS_SYSTEM = (
    "You are a subtitle project analyst. Read all items and output only ONE JSON object "
    "with keys: genre, tone, style_guide (array of short rules), scene_outline (array of "
    "{start_id,end_id,summary}), roles (array of {name,person,notes}), initial_glossary "
    "(array of glossary entries). Do NOT translate lines individually. The initial_glossary "
    "should use fields: source, translations (map target_lang->text, allow 'all' as "
    "wildcard), do_not_translate (bool), case_sensitive (bool). Keep the list concise."
)

ANALYSIS_USER = (
    "Analyze the following subtitle bullets (id + text) written in {source_lang}. "
    "Return ONLY the JSON object, no code fences, no comments.\n"
)


class PromptGlossaryEntry(BaseModel):
    """Glossary term as disclosed to the model.

    ``origin`` is "global" (selected set), "task" (extra terms for this run)
    or "auto" (analysis hint). ``placeholder`` is only set on enforced terms
    that matched in the current batch, and only outside strict mode.
    """

    id: str | None = None
    set_id: str | None = None
    source: str
    do_not_translate: bool = False
    case_sensitive: bool = False
    translations: dict[str, str] = Field(default_factory=dict)
    placeholder: str | None = None
    origin: str | None = None


def _with_profile_template(sys_tpl: str, base: str) -> str:
    if sys_tpl.strip():
        return sys_tpl.strip() + "\n\n" + base
    return base


def format_batch_payload(
    global_style: dict[str, Any],
    glossary: Sequence[PromptGlossaryEntry],
    references: Sequence[dict[str, str]],
    boundary_src: Sequence[str],
    boundary_dst: Sequence[str],
    ids: Sequence[str],
    texts: Sequence[str],
) -> str:
    """Serialize the per-batch context object sent in the user prompt."""
    payload = {
        "global_style": global_style,
        "glossary": [g.model_dump(exclude_none=True) for g in glossary],
        "reference_translations": list(references),
        "boundary_context": {"prev_src": list(boundary_src), "prev_dst": list(boundary_dst)},
        "batch": [{"id": i, "text": t} for i, t in zip(ids, texts)],
    }
    return json.dumps(payload, ensure_ascii=False, indent=2)


def build_batch_prompts(
    json_mode: bool,
    sys_tpl: str,
    src_label: str,
    dst_label: str,
    global_style: dict[str, Any],
    glossary: Sequence[PromptGlossaryEntry],
    references: Sequence[dict[str, str]],
    boundary_src: Sequence[str],
    boundary_dst: Sequence[str],
    ids: Sequence[str],
    texts: Sequence[str],
) -> tuple[str, str]:
    """Build (system, user) prompts for one batch in JSON mode or JSONL."""
    base = (JSON_MODE_SYSTEM if json_mode else JSONL_SYSTEM) % (src_label, dst_label)
    system = _with_profile_template(sys_tpl, base)
    payload = format_batch_payload(
        global_style, glossary, references, boundary_src, boundary_dst, ids, texts
    )
    user = (JSON_MODE_USER if json_mode else JSONL_USER) + "\n" + payload
    return system, user


def build_analysis_prompts(
    segments: Sequence[Segment],
    source_lang: str,
    sys_tpl: str = "",
) -> tuple[str, str]:
    """Build (system, user) prompts for the one-off project analysis.

    Each non-empty source line becomes a bullet ``- {"id": ..., "text": ...}``.
    """
    lines = []
    for seg in segments:
        text = seg.text_for(source_lang).strip()
        if not text:
            continue
        lines.append("- " + json.dumps({"id": seg.id, "text": text}, ensure_ascii=False))
    system = _with_profile_template(sys_tpl, ANALYSIS_SYSTEM)
    user = ANALYSIS_USER.format(source_lang=source_lang) + "\n".join(lines)
    return system, user
