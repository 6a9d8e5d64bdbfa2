"""Shared utility functions for the transformation pipeline."""

import re


def slugify(text: str, max_length: int = 0) -> str:
    """Convert text to an ID-safe slug.

    >>> slugify("The Neon Dragon Bar & Grill")
    'the-neon-dragon-bar-grill'
    """
    slug = text.lower().strip()
    slug = re.sub(r"[^a-z0-9\s_-]", "", slug)
    slug = re.sub(r"[\s_-]+", "-", slug)
    slug = slug.strip("-")
    if max_length:
        slug = slug[:max_length].rstrip("-")
    return slug or "untitled"


def excerpt(text: str, limit: int) -> str:
    """Bounded prefix of ``text`` sent along with an instruction."""
    return text[:limit]


def bullet_list(items: list[str]) -> str:
    """Render items as a comma-joined line, or 'none' when empty."""
    return ", ".join(items) if items else "none"
