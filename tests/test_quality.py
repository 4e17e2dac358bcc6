"""Tests for reading-speed and line-length metrics."""

from sublate.core.models import LanguageContent, Segment
from sublate.subtitles.quality import (
    QualityAssessor,
    count_characters,
    count_words,
    evaluate_level,
    is_primarily_ideographic,
    max_line_length,
    reading_speed,
)


class TestCounting:
    def test_characters_skip_whitespace(self):
        assert count_characters("Hi there\nyou") == 10

    def test_words_alphabetic(self):
        assert count_words("Hello  there, friend") == 3

    def test_words_ideographic(self):
        assert count_words("你好世界") == 4

    def test_words_mixed_scripts(self):
        assert count_words("我爱 Python 编程") == 5

    def test_max_line_length(self):
        assert max_line_length("short\na much longer line") == 15
        assert max_line_length("") == 0

    def test_primarily_ideographic(self):
        assert is_primarily_ideographic("こんにちは hi")
        assert not is_primarily_ideographic("hello 世界")
        assert not is_primarily_ideographic("123 ...")


class TestThresholds:
    def test_reading_speed(self):
        assert reading_speed("Hello") == (17, 160)
        assert reading_speed("你好") == (15, 140)
        assert reading_speed("你好", is_kids_content=True) == (13, 130)

    def test_evaluate_level(self):
        assert evaluate_level(17, 17) == 0
        assert evaluate_level(20, 17) == 1
        assert evaluate_level(21, 17) == 2


class TestQualityAssessor:
    def test_assess_text(self):
        guideline = QualityAssessor().assess_text("Hello world", 1.0)
        assert guideline.cps.current == 10
        assert guideline.cps.level == 0
        assert guideline.wpm.current == 120
        assert guideline.cpl.current == 10

    def test_fast_text_flagged(self):
        guideline = QualityAssessor().assess_text("x" * 30, 1.0)
        assert guideline.cps.current == 30
        assert guideline.cps.level == 2

    def test_zero_duration(self):
        guideline = QualityAssessor().assess_text("Hello", 0)
        assert guideline.cps.current == 0
        assert guideline.wpm.current == 0
        assert guideline.cpl.current == 5

    def test_segment_only_languages_with_standard(self):
        seg = Segment(
            id="s1",
            start=0.0,
            end=2.0,
            languages={"en": LanguageContent(text="Hi"), "fr": LanguageContent(text="Salut")},
            guideline_standard={"fr": "netflix"},
        )
        QualityAssessor().assess_segment(seg)
        assert seg.languages["en"].subtitle_guideline is None
        assert seg.languages["fr"].subtitle_guideline.cps.current == 2
