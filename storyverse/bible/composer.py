"""Prompt Composer - builds grounded visual generation prompts from a bible.

``compose`` layers, in fixed precedence order, the StyleBible directives,
the WorldBible context, the descriptions of characters in the scene and
finally the card's own content. Locked character and world traits are
returned separately as ``locked_constraints`` so the caller can pass them
to the image model as hard constraints.

The composer is a pure function: identical inputs give identical output.
"""

from dataclasses import dataclass, field
from typing import Optional

from .models import CharacterBibleEntry, ProjectBible

BASELINE_NEGATIVES = ("text", "watermark", "logo", "subtitles", "captions")


@dataclass
class ComposedPrompt:
    """Hand-off data for the image/video generation collaborator."""
    full_prompt: str
    negative_prompt: str
    character_descriptions: list[str] = field(default_factory=list)
    world_context: list[str] = field(default_factory=list)
    style_directives: list[str] = field(default_factory=list)
    locked_constraints: list[str] = field(default_factory=list)
    bible_version_id: Optional[str] = None


def card_content(card: dict) -> str:
    """The card's scene content: its image prompt, else its scene text."""
    image = card.get("image_generation") or {}
    return (image.get("prompt") or card.get("scene_text") or "").strip()


def card_text(card: dict) -> str:
    """Everything written on a card, for matching and scanning."""
    image = card.get("image_generation") or {}
    parts = [
        card.get("title") or "",
        card.get("scene_text") or "",
        *(card.get("captions") or []),
        image.get("prompt") or "",
    ]
    return "\n".join(p for p in parts if p)


def match_characters(
    bible: ProjectBible, card: dict, characters_in_scene: Optional[list[str]] = None
) -> list[CharacterBibleEntry]:
    """Bible characters present in a card, in bible order.

    With an explicit list, characters match by name or id
    (case-insensitive); otherwise by their name appearing anywhere in the
    card's text.
    """
    if characters_in_scene is not None:
        wanted = {c.strip().lower() for c in characters_in_scene}
        return [
            c for c in bible.characters
            if c.name.lower() in wanted or c.id.lower() in wanted
        ]
    haystack = card_text(card).lower()
    return [c for c in bible.characters if c.name and c.name.lower() in haystack]


def compose(
    bible: Optional[ProjectBible],
    card: dict,
    characters_in_scene: Optional[list[str]] = None,
) -> ComposedPrompt:
    """Compose the generation prompt for a card.

    Args:
        bible: Current project bible, or None for a bible-less universe.
        card: Card record (title, scene_text, captions, image_generation).
        characters_in_scene: Optional explicit names/ids of characters in
            the scene; when omitted, characters are matched from the card text.
    """
    style_directives: list[str] = []
    world_context: list[str] = []
    character_descriptions: list[str] = []
    locked_constraints: list[str] = []
    negatives = list(BASELINE_NEGATIVES)

    if bible is not None and bible.style is not None:
        style = bible.style
        style_directives.append(f"Aspect ratio {style.aspect_ratio}")
        if style.realism_level:
            style_directives.append(f"{style.realism_level} rendering")
        if style.color_grading:
            style_directives.append(f"Color grading: {style.color_grading}")
        if style.camera_movement:
            style_directives.append(f"Camera movement: {style.camera_movement}")
        if style.no_on_screen_text:
            style_directives.append("No on-screen text")
        negatives.extend(style.additional_negative_prompts)

    if bible is not None and bible.world is not None:
        world = bible.world
        setting = ", ".join(p for p in (world.setting.place, world.setting.era, world.setting.culture) if p)
        if setting:
            world_context.append(f"Setting: {setting}")
        vl = world.visual_language
        visual = ", ".join(p for p in (vl.cinematic_style, vl.lighting, vl.lens_vibe, vl.realism_level) if p)
        if visual:
            world_context.append(f"Visual language: {visual}")
        tone = ", ".join(p for p in (world.tone_rules.mood, world.tone_rules.genre) if p)
        if tone:
            world_context.append(f"Tone: {tone}")
        haystack = card_text(card).lower()
        for anchor in world.environment_anchors:
            if anchor.name.lower() in haystack:
                detail = "; ".join(p for p in (anchor.description, anchor.visual_details) if p)
                world_context.append(f"{anchor.name}: {detail}" if detail else anchor.name)
        locked_constraints.extend(world.locked_world_traits)

    if bible is not None:
        for char in match_characters(bible, card, characters_in_scene):
            description = char.description()
            character_descriptions.append(
                f"{char.name}: {description}" if description else char.name
            )
            locked_constraints.extend(f"{char.name}: {t}" for t in char.locked_traits)

    sections = []
    if style_directives:
        sections.append("Style: " + ". ".join(style_directives))
    if world_context:
        sections.append("World: " + ". ".join(world_context))
    if character_descriptions:
        sections.append("Characters: " + ". ".join(character_descriptions))
    content = card_content(card)
    if content:
        sections.append("Scene: " + content)

    return ComposedPrompt(
        full_prompt="\n".join(sections),
        negative_prompt=", ".join(dedupe(negatives)),
        character_descriptions=character_descriptions,
        world_context=world_context,
        style_directives=style_directives,
        locked_constraints=locked_constraints,
        bible_version_id=bible.version_id if bible is not None else None,
    )


def dedupe(items: list[str]) -> list[str]:
    """Drop blanks and case-insensitive repeats, keeping first occurrences."""
    seen = set()
    result = []
    for item in items:
        cleaned = item.strip()
        key = cleaned.lower()
        if cleaned and key not in seen:
            seen.add(key)
            result.append(cleaned)
    return result
