"""Stage 0: Normalisation and Source Classification.

Cleans raw source text and classifies it as a script, article or
transcript from structural markers in the opening lines of the raw text,
blank lines included. Pure text heuristics: no generation calls, so this
stage is the cheapest to retry.
"""

import logging
import re

from .models import PipelineContext, SourceType, Stage0Artifacts

logger = logging.getLogger(__name__)

# Lines inspected for structural markers
HEAD_LINES = 50

# Scene headings / screenplay transitions
SCRIPT_MARKERS = ("int.", "ext.", "fade in")

# Chaptering: the word itself or numbered headings ("1. The Arrival")
ARTICLE_MARKER = "chapter"
NUMBERED_HEADING_RE = re.compile(r"^\d+\.")

# Speaker labels ("MARIA: I told you...")
SPEAKER_LABEL_RE = re.compile(r"^\s*[A-Z]+:\s")

DEFAULT_SOURCE_TYPE = SourceType.SCRIPT
PARSE_CONFIDENCE = 0.95


def normalize_text(text: str) -> str:
    """Unify line endings, collapse runs of blank lines, trim."""
    cleaned = text.replace("\r\n", "\n").replace("\r", "\n")
    cleaned = re.sub(r"\n{3,}", "\n\n", cleaned)
    return cleaned.strip()


def detect_source_type(text: str) -> SourceType:
    """Classify source material by its structural markers.

    Checked in order: scene headings (script), chaptering or numbered
    headings (article), speaker labels (transcript). Anything else gets
    the default type.
    """
    lines = text.split("\n")[:HEAD_LINES]
    content = "\n".join(lines).lower()

    if any(marker in content for marker in SCRIPT_MARKERS):
        return SourceType.SCRIPT
    if ARTICLE_MARKER in content or any(NUMBERED_HEADING_RE.match(l) for l in lines):
        return SourceType.ARTICLE
    if any(SPEAKER_LABEL_RE.match(l) for l in lines):
        return SourceType.TRANSCRIPT
    return DEFAULT_SOURCE_TYPE


class ContentClassifier:
    """Stage 0: classifies normalised source text."""

    def __call__(self, ctx: PipelineContext) -> Stage0Artifacts:
        return self.classify(ctx.source_text, ctx.normalized_text)

    def classify(self, source_text: str, normalized_text: str) -> Stage0Artifacts:
        """Classify the source.

        Raises:
            ValueError: If the source contains no text at all.
        """
        if not normalized_text:
            raise ValueError("Source text is empty")

        outline_count = sum(1 for line in source_text.split("\n") if line.strip())
        detected = detect_source_type(source_text)

        warnings = []
        if outline_count < 3:
            warnings.append("very_short_source")

        logger.info(
            "Classified source as %s (%d outline lines)", detected.value, outline_count
        )
        return Stage0Artifacts(
            detected_type=detected.value,
            parse_confidence=PARSE_CONFIDENCE,
            outline_count=outline_count,
            warnings=warnings,
        )
