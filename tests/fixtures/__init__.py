"""Test fixtures for storyverse tests."""

from .sources import HARBOUR_SCRIPT, PLAIN_LINES, ARTICLE_TEXT, TRANSCRIPT_TEXT
from .responses import (
    STRUCTURE_RESPONSE,
    IDENTITY_RESPONSE,
    GUARDRAILS_RESPONSE,
    WORLD_RESPONSE,
    MOMENTS_RESPONSE,
    PERSONA_RESPONSE,
    PROMPT_KEYS,
    load_all_responses,
)
from .bibles import make_bible_dict, make_card
from .contexts import make_artifacts, make_context

__all__ = [
    "HARBOUR_SCRIPT",
    "PLAIN_LINES",
    "ARTICLE_TEXT",
    "TRANSCRIPT_TEXT",
    "STRUCTURE_RESPONSE",
    "IDENTITY_RESPONSE",
    "GUARDRAILS_RESPONSE",
    "WORLD_RESPONSE",
    "MOMENTS_RESPONSE",
    "PERSONA_RESPONSE",
    "PROMPT_KEYS",
    "load_all_responses",
    "make_bible_dict",
    "make_card",
    "make_artifacts",
    "make_context",
]
