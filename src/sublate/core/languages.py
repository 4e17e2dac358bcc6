"""Language display names used in translation prompts.

Codes follow the BCP 47 tags subtitle projects are usually keyed by
("en", "zh-Hans", "pt-BR"). Unknown codes fall back to the code itself.
"""

from __future__ import annotations

from sublate.core.models import SubtitleProject

# fmt: off
LANGUAGE_NAMES: dict[str, str] = {
    "ar": "Arabic",         "bg": "Bulgarian",      "ca": "Catalan",
    "cs": "Czech",          "da": "Danish",         "de": "German",
    "el": "Greek",          "en": "English",        "es": "Spanish",
    "et": "Estonian",       "fa": "Persian",        "fi": "Finnish",
    "fr": "French",         "he": "Hebrew",         "hi": "Hindi",
    "hr": "Croatian",       "hu": "Hungarian",      "id": "Indonesian",
    "it": "Italian",        "ja": "Japanese",       "ko": "Korean",
    "lt": "Lithuanian",     "lv": "Latvian",        "ms": "Malay",
    "nl": "Dutch",          "no": "Norwegian",      "pl": "Polish",
    "pt": "Portuguese",     "pt-BR": "Brazilian Portuguese",
    "ro": "Romanian",       "ru": "Russian",        "sk": "Slovak",
    "sl": "Slovenian",      "sr": "Serbian",        "sv": "Swedish",
    "th": "Thai",           "tr": "Turkish",        "uk": "Ukrainian",
    "vi": "Vietnamese",     "zh": "Chinese",
    "zh-Hans": "Simplified Chinese",
    "zh-Hant": "Traditional Chinese",
    "yue": "Cantonese",
}
# fmt: on


def language_name(code: str) -> str:
    """Get the display name for a code, or the code itself if unknown."""
    return LANGUAGE_NAMES.get(code.strip(), code.strip())


def resolve_language_name(code: str, project: SubtitleProject | None = None) -> str:
    """Resolve a display name, preferring the project's own language metadata."""
    code = code.strip()
    if not code:
        return ""
    if project is not None:
        meta = project.language_metadata.get(code)
        if meta and meta.language_name.strip():
            return meta.language_name.strip()
    return language_name(code)


def prompt_label(code: str, name: str) -> str:
    """Combine code and name for prompts, e.g. "fr (French)", without repeating."""
    code, name = code.strip(), name.strip()
    if not name:
        return code
    if not code or code.lower() == name.lower():
        return code or name
    return f"{code} ({name})"
