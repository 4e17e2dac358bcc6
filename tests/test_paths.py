"""Tests for document file naming."""

from sublate.utils.paths import slugify


class TestSlugify:
    def test_basic(self):
        assert slugify("Pilot Episode") == "pilot-episode"

    def test_keeps_unicode_letters(self):
        assert slugify("Épisode 1: Zürich!") == "épisode-1-zürich"

    def test_collapses_separators(self):
        assert slugify("a__b   c--d") == "a-b-c-d"

    def test_strips_leading_trailing(self):
        assert slugify("--p1--") == "p1"

    def test_truncates_long_ids(self):
        assert len(slugify("x" * 200)) == 80

    def test_empty(self):
        assert slugify("!!!") == ""
