"""
Tests for source normalisation and classification.
"""

import pytest

from storyverse.pipeline.classify import ContentClassifier, detect_source_type, normalize_text
from storyverse.pipeline.models import PipelineContext, SourceType

from tests.fixtures import ARTICLE_TEXT, HARBOUR_SCRIPT, PLAIN_LINES, TRANSCRIPT_TEXT


def _ctx(text):
    return PipelineContext(
        job_id=1, source_text=text, normalized_text=normalize_text(text), story_length="short"
    )


class TestNormalizeText:
    """Tests for text clean-up."""

    def test_line_endings(self):
        assert normalize_text("a\r\nb\rc") == "a\nb\nc"

    def test_collapses_blank_runs(self):
        assert normalize_text("a\n\n\n\n\nb") == "a\n\nb"

    def test_trims(self):
        assert normalize_text("  \n hello \n\n") == "hello"


class TestDetectSourceType:
    """Tests for the marker heuristics."""

    def test_script(self):
        assert detect_source_type(normalize_text(HARBOUR_SCRIPT)) == SourceType.SCRIPT

    def test_article(self):
        assert detect_source_type(ARTICLE_TEXT) == SourceType.ARTICLE

    def test_numbered_heading(self):
        assert detect_source_type("Intro\n2. Second part\nmore") == SourceType.ARTICLE

    def test_transcript(self):
        assert detect_source_type(TRANSCRIPT_TEXT) == SourceType.TRANSCRIPT

    def test_default_is_script(self):
        assert detect_source_type(PLAIN_LINES) == SourceType.SCRIPT

    def test_script_wins_over_speakers(self):
        text = "INT. KITCHEN - DAY\nMARIA: Hello there."
        assert detect_source_type(text) == SourceType.SCRIPT

    def test_only_head_is_inspected(self):
        text = "\n".join(["plain words"] * 60 + ["CHAPTER TWO"])
        assert detect_source_type(text) == SourceType.SCRIPT


class TestContentClassifier:
    """Tests for the stage 0 classifier."""

    def test_plain_lines(self):
        artifacts = ContentClassifier()(_ctx(PLAIN_LINES))
        assert artifacts.detected_type == "script"
        assert artifacts.outline_count == 25
        assert artifacts.parse_confidence == 0.95
        assert artifacts.warnings == []

    def test_outline_counts_non_blank_lines(self):
        artifacts = ContentClassifier()(_ctx(HARBOUR_SCRIPT))
        assert artifacts.outline_count == 7

    def test_very_short_source(self):
        artifacts = ContentClassifier()(_ctx("Just one line."))
        assert artifacts.outline_count == 1
        assert "very_short_source" in artifacts.warnings

    @pytest.mark.parametrize("text", ["", "   \n\n  "])
    def test_empty_source(self, text):
        with pytest.raises(ValueError):
            ContentClassifier()(_ctx(text))

    def test_type_detected_on_raw_lines(self):
        """Blank lines in the raw source count toward the inspected head."""
        text = "Opening words\n" + "\n" * 60 + "Chapter Two\nMore words\nThe end"
        assert detect_source_type(normalize_text(text)) == SourceType.ARTICLE

        artifacts = ContentClassifier()(_ctx(text))
        assert artifacts.detected_type == "script"
        assert artifacts.outline_count == 4

    def test_crlf_source(self):
        artifacts = ContentClassifier()(_ctx("CHAPTER ONE\r\nIt rained.\r\nThe end."))
        assert artifacts.detected_type == "article"
