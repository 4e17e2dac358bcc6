"""Tolerant extraction of translation items from model output.

Models are asked for either one JSON object (``{"items": [...]}``) or JSON
Lines (one ``{"id": ..., "final": ...}`` per line), but in practice they wrap
output in code fences, prepend commentary, or mix both shapes. The parsers
here accept all of that and raise ``NoItemsParsedError`` only when nothing
usable remains.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any


class NoItemsParsedError(ValueError):
    """Raised when a model response contains no translation items."""


@dataclass
class TranslationItem:
    """One translated line returned by the model."""

    id: str
    final: str = ""
    draft: str = ""
    reflection: list[str] = field(default_factory=list)
    src: str = ""

    def output(self) -> str:
        """Usable text for this item: ``final``, else ``draft``, else empty."""
        if self.final.strip():
            return self.final
        if self.draft.strip():
            return self.draft
        return ""


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float, bool)):
        return str(value)
    return ""


def _coerce_item(obj: Any) -> TranslationItem | None:
    """Build an item from a decoded JSON object, or None if it has no id."""
    if not isinstance(obj, dict):
        return None
    item_id = _as_text(obj.get("id")).strip()
    if not item_id:
        return None
    reflection = obj.get("reflection") or []
    if isinstance(reflection, str):
        reflection = [reflection]
    elif not isinstance(reflection, list):
        reflection = []
    return TranslationItem(
        id=item_id,
        final=_as_text(obj.get("final")),
        draft=_as_text(obj.get("draft")),
        reflection=[_as_text(r) for r in reflection],
        src=_as_text(obj.get("src")),
    )


def _coerce_items(values: Any) -> list[TranslationItem]:
    if not isinstance(values, list):
        return []
    return [item for item in (_coerce_item(v) for v in values) if item is not None]


def strip_first_fence(block: str) -> str:
    """Return the content of the first markdown code block in ``block``."""
    block = block.strip()
    if not block.startswith("```"):
        return block
    # Drop the opening ``` / ```json line
    newline = block.find("\n")
    if newline == -1:
        return ""
    block = block[newline + 1 :]
    end = block.rfind("```")
    if end != -1:
        block = block[:end]
    return block.strip()


def normalize_payload(raw: str) -> str:
    """Extract the JSON/JSONL body from raw model output.

    Handles:
    - Bare JSON or JSONL (returned trimmed)
    - Output starting with ``` or ```json
    - A few lines of commentary followed by a fenced block, as long as the
      fence comes before the first line starting with { or [
    """
    text = (raw or "").strip()
    if not text:
        return text
    if text.startswith("```"):
        return strip_first_fence(text)

    lines = text.split("\n")
    for i, line in enumerate(lines):
        line = line.strip()
        if not line:
            continue
        if line.startswith("```"):
            return strip_first_fence("\n".join(lines[i:]))
        if line.startswith(("{", "[")):
            break
    return text


def parse_json_items(raw: str) -> list[TranslationItem]:
    """Parse JSON-mode output: ``{"items": [...]}``, a bare array, or a wrapper.

    Raises:
        NoItemsParsedError: If no item with an id could be extracted.
    """
    text = normalize_payload(raw)
    if not text:
        raise NoItemsParsedError("empty content")
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise NoItemsParsedError(f"no items parsed from JSON: {e}") from e

    if isinstance(data, dict):
        items = _coerce_items(data.get("items"))
        if items:
            return items
        # Provider wrapped the array in an unexpected object
        for value in data.values():
            items = _coerce_items(value)
            if items:
                return items
    else:
        items = _coerce_items(data)
        if items:
            return items
    raise NoItemsParsedError("no items parsed from JSON")


def parse_jsonl(raw: str) -> list[TranslationItem]:
    """Parse JSON Lines output, skipping blank or malformed lines.

    A line holding a JSON array of items is accepted too. If no line yields an
    item, the whole payload is retried as a single JSON object/array.

    Raises:
        NoItemsParsedError: If nothing could be extracted.
    """
    payload = normalize_payload(raw)
    items: list[TranslationItem] = []
    for line in payload.splitlines():
        line = line.strip().rstrip(",")
        if not line:
            continue
        try:
            data = json.loads(line)
        except json.JSONDecodeError:
            continue
        if isinstance(data, list):
            items.extend(_coerce_items(data))
            continue
        item = _coerce_item(data)
        if item is not None:
            items.append(item)
    if items:
        return items

    try:
        return parse_json_items(payload)
    except NoItemsParsedError:
        raise NoItemsParsedError("no jsonl items parsed") from None
