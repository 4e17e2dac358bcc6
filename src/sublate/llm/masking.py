"""Placeholder masking for spans the model must not touch.

Markup, override codes, bracket notes and timecodes are swapped for
``⟦P000⟧``-style tokens before a batch is sent; enforced glossary terms are
swapped for ``⟦G000⟧`` tokens. After translation, ``restore`` puts the
original span (or the glossary's fixed rendering) back.

Restore maps are plain dicts keyed by token. Tokens are unique and generated
from indices, so iteration order never changes the result.
"""

from __future__ import annotations

import re
from typing import Sequence

from sublate.core.models import GlossaryEntry

RestoreMap = dict[str, str]

# Splits text so odd-indexed parts are existing placeholder tokens
_TOKEN_SPLIT = re.compile(r"(⟦[PG]\d{3,}⟧)")

_GENERAL_PATTERNS = [
    re.compile(r"<[^>]+>"),  # html tags
    re.compile(r"\{\\[^}]+\}"),  # ASS override codes {\b1}
    re.compile(r"\{[^}]+\}"),  # {variables}
    re.compile(r"\[[^\]]+\]"),  # [NOTES]
    re.compile(r"\d{2}:\d{2}:\d{2}[.,:]\d{2,3}"),  # timecodes
]


def general_placeholder(index: int) -> str:
    return f"⟦P{index:03d}⟧"


def glossary_placeholder(index: int) -> str:
    return f"⟦G{index:03d}⟧"


def mask_general(lines: Sequence[str]) -> tuple[list[str], RestoreMap]:
    """Replace protected spans across a whole batch with shared placeholders.

    Identical spans get the same placeholder no matter which line they occur
    in. Placeholders are numbered in discovery order (pattern by pattern,
    line by line).
    """
    out = list(lines)
    restore_map: RestoreMap = {}
    by_match: dict[str, str] = {}
    for pattern in _GENERAL_PATTERNS:
        for line in out:
            if not line:
                continue
            for match in pattern.findall(line):
                if match not in by_match:
                    token = general_placeholder(len(by_match))
                    by_match[match] = token
                    restore_map[token] = match

    if not by_match:
        return out, restore_map

    # Longest spans first so a span nested inside another is never split
    ordered = sorted(by_match.items(), key=lambda kv: -len(kv[0]))
    for i, line in enumerate(out):
        for match, token in ordered:
            if match in line:
                line = line.replace(match, token)
        out[i] = line
    return out, restore_map


def glossary_replacement(entry: GlossaryEntry, target_lang: str) -> str:
    """Pick the text a glossary placeholder restores to for ``target_lang``."""
    if entry.do_not_translate:
        return entry.source
    for key in (target_lang, "all", "*"):
        value = entry.translations.get(key, "")
        if value.strip():
            return value
    return entry.source


def mask_glossary(
    lines: Sequence[str],
    entries: Sequence[GlossaryEntry | None],
    target_lang: str,
) -> tuple[list[str], RestoreMap, list[bool]]:
    """Replace enforced glossary terms with placeholders.

    Terms are matched longest-source-first so "New York City" wins over
    "New York". Text inside placeholders already in the line is never
    matched. Placeholders use the entry's index in ``entries``, which lets
    the prompt glossary refer back to them.

    Returns:
        Tuple of (masked lines, restore map, used flags). ``used[i]`` is True
        when entry ``i`` matched at least once in this batch.
    """
    out = list(lines)
    restore_map: RestoreMap = {}
    used = [False] * len(entries)
    if not entries or not out:
        return out, restore_map, used

    order = sorted(
        range(len(entries)),
        key=lambda i: -len(entries[i].source) if entries[i] is not None else 0,
    )
    for idx in order:
        entry = entries[idx]
        if entry is None or not entry.source.strip():
            continue
        token = glossary_placeholder(idx)
        flags = 0 if entry.case_sensitive else re.IGNORECASE
        pattern = re.compile(re.escape(entry.source), flags)
        for j, line in enumerate(out):
            if not line:
                continue
            replaced, count = _subn_outside_tokens(pattern, token, line)
            if count:
                out[j] = replaced
                used[idx] = True
        if used[idx]:
            restore_map[token] = glossary_replacement(entry, target_lang)
    return out, restore_map, used


def _subn_outside_tokens(pattern: re.Pattern[str], token: str, line: str) -> tuple[str, int]:
    parts = _TOKEN_SPLIT.split(line)
    total = 0
    for i in range(0, len(parts), 2):
        parts[i], count = pattern.subn(token, parts[i])
        total += count
    return "".join(parts), total


def restore(text: str, restore_map: RestoreMap) -> str:
    """Substitute every placeholder in ``text`` back to its restore value."""
    if not text or not restore_map:
        return text
    for token, value in restore_map.items():
        text = text.replace(token, value)
    return text
