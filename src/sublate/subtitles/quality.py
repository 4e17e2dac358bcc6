"""Reading-speed and line-length metrics for translated segments.

Thresholds follow Netflix-style timed text guidelines: 17 CPS / 160 WPM for
alphabetic scripts, 15 / 140 for ideographic scripts, 13 / 130 for kids
content, and at most 42 characters per line.
"""

from __future__ import annotations

import re

from sublate.core.models import Guideline, Segment, SubtitleGuideline

MAX_CPL = 42

_IDEOGRAPHIC = re.compile(
    "["
    "\u1100-\u11ff"  # Hangul Jamo
    "\u3040-\u309f"  # Hiragana
    "\u30a0-\u30ff"  # Katakana
    "\u3130-\u318f"  # Hangul compatibility Jamo
    "\u31f0-\u31ff"  # Katakana phonetic extensions
    "\u3400-\u4dbf"  # CJK extension A
    "\u4e00-\u9fff"  # CJK unified ideographs
    "\uac00-\ud7af"  # Hangul syllables
    "\uf900-\ufaff"  # CJK compatibility ideographs
    "\uff66-\uff9f"  # Halfwidth Katakana
    "\U00020000-\U0002ffff"  # CJK extensions B+
    "]"
)
_WHITESPACE = frozenset(" \t\n\r")


def is_ideographic(char: str) -> bool:
    return bool(_IDEOGRAPHIC.match(char))


def count_characters(text: str) -> int:
    """Characters excluding spaces, tabs and line breaks."""
    return sum(1 for ch in text if ch not in _WHITESPACE)


def count_words(text: str) -> int:
    """Words for WPM: each ideographic character counts as one word."""
    has_ideographic = has_alphabetic = False
    for ch in text:
        if ch.isalpha():
            if is_ideographic(ch):
                has_ideographic = True
            else:
                has_alphabetic = True

    if has_ideographic and has_alphabetic:
        count = 0
        in_word = False
        for ch in text:
            if is_ideographic(ch):
                count += 1
                in_word = False
            elif ch.isalpha():
                if not in_word:
                    count += 1
                    in_word = True
            else:
                in_word = False
        return count
    if has_ideographic:
        return count_characters(text)
    return len(text.split())


def max_line_length(text: str) -> int:
    return max((count_characters(line) for line in text.split("\n")), default=0)


def is_primarily_ideographic(text: str) -> bool:
    letters = [ch for ch in text if ch.isalpha()]
    if not letters:
        return False
    ideographic = sum(1 for ch in letters if is_ideographic(ch))
    return ideographic / len(letters) > 0.5


def reading_speed(text: str, is_kids_content: bool = False) -> tuple[int, int]:
    """Recommended (max CPS, max WPM) for the text."""
    if is_kids_content:
        return 13, 130
    if is_primarily_ideographic(text):
        return 15, 140
    return 17, 160


def evaluate_level(current: int, threshold: int) -> int:
    """0 within the limit, 1 up to 20% over, 2 beyond that."""
    if current <= threshold:
        return 0
    if current <= int(threshold * 1.2):
        return 1
    return 2


class QualityAssessor:
    def assess_text(
        self, text: str, duration: float, is_kids_content: bool = False
    ) -> SubtitleGuideline:
        """Compute CPS, WPM and CPL guidelines for one piece of text.

        A non-positive duration yields zero CPS and WPM.
        """
        max_cps, max_wpm = reading_speed(text, is_kids_content)
        cps = wpm = 0
        if duration > 0:
            cps = int(count_characters(text) / duration)
            wpm = int(count_words(text) / duration * 60)
        cpl = max_line_length(text)
        return SubtitleGuideline(
            cps=Guideline(current=cps, level=evaluate_level(cps, max_cps)),
            wpm=Guideline(current=wpm, level=evaluate_level(wpm, max_wpm)),
            cpl=Guideline(current=cpl, level=evaluate_level(cpl, MAX_CPL)),
        )

    def assess_segment(self, segment: Segment) -> Segment:
        """Refresh the guideline of every language that has a guideline standard."""
        duration = segment.end - segment.start
        for lang, content in segment.languages.items():
            if not segment.guideline_standard.get(lang):
                continue
            content.subtitle_guideline = self.assess_text(
                content.text, duration, segment.is_kids_content
            )
        return segment
