"""Visual prompt building against a universe DesignGuide.

The bible-less counterpart of the composer, for experiences that predate
Project Bible support. Precedence: universe style first, card scene next,
character visual profile next, reference-asset notes last; the negative
prompt is assembled last and never empty.
"""

from dataclasses import dataclass, field
from typing import Optional

from .models import DesignGuide, snake_keys

FALLBACK_PROMPT = "A cinematic scene"
FALLBACK_NEGATIVE = "blurry, low quality, distorted, ugly"
MAX_REFERENCE_ASSETS = 3

QUALITY_SETTINGS = {
    "draft": {"quality": "draft", "steps": 20, "guidance_scale": 5},
    "standard": {"quality": "standard", "steps": 30, "guidance_scale": 7},
    "high": {"quality": "high", "steps": 40, "guidance_scale": 8},
    "ultra": {"quality": "ultra", "steps": 50, "guidance_scale": 9},
}

QUALITY_ENHANCERS = {
    "draft": "quick render, stylized",
    "standard": "high quality, detailed, good lighting",
    "high": "highly detailed, sharp focus, professional photography, 8k resolution",
    "ultra": "masterpiece quality, hyperrealistic, ultra detailed, ray tracing, 16k resolution, studio lighting",
}

MIN_QUALITY_TERMS = ("high quality", "detailed", "professional", "8k resolution")


@dataclass
class VisualPrompt:
    prompt: str
    negative_prompt: str
    style_keywords: list[str] = field(default_factory=list)
    reference_image_urls: list[str] = field(default_factory=list)


def build_visual_prompt(
    design_guide: Optional[DesignGuide],
    card: Optional[dict] = None,
    character: Optional[dict] = None,
    reference_assets: tuple = (),
) -> VisualPrompt:
    """Build an image prompt for a card from the universe's design guide.

    Args:
        design_guide: The universe's guide, or None.
        card: Card record; its image_generation prompt wins over scene_text.
        character: Featured character record with an optional visual_profile.
        reference_assets: Universe reference assets (asset_type, is_active,
            image_path, prompt_notes, character_id).
    """
    g = design_guide or DesignGuide()
    parts: list[str] = []
    style_keywords: list[str] = []
    negative_parts: list[str] = []
    reference_image_urls: list[str] = []

    # Universe style
    if g.base_prompt:
        parts.append(g.base_prompt)
    if g.art_style:
        parts.append(f"Style: {g.art_style}")
        style_keywords.append(g.art_style)
    if g.color_palette:
        parts.append(f"Color palette: {g.color_palette}")
    if g.mood_tone:
        parts.append(f"Mood: {g.mood_tone}")
    if g.camera_style:
        parts.append(f"Camera: {g.camera_style}")
    if g.lighting_notes:
        parts.append(f"Lighting: {g.lighting_notes}")
    style_keywords.extend(g.style_keywords)
    if g.required_elements:
        parts.append(f"Must include: {', '.join(g.required_elements)}")

    # Card scene
    if card:
        card = snake_keys(card)
        image = card.get("image_generation") or {}
        if image.get("prompt"):
            parts.append(image["prompt"])
        elif card.get("scene_text"):
            parts.append(card["scene_text"])
        if image.get("shot_type"):
            parts.append(f"Shot type: {image['shot_type']}")
        if image.get("lighting"):
            parts.append(f"Lighting: {image['lighting']}")

    # Character visual profile
    if character:
        character = snake_keys(character)
        vp = character.get("visual_profile") or {}
        desc = []
        if vp.get("continuity_description"):
            desc.append(vp["continuity_description"])
        if vp.get("age_range"):
            desc.append(f"age {vp['age_range']}")
        if vp.get("build"):
            desc.append(vp["build"])
        if vp.get("hair"):
            desc.append(vp["hair"])
        if vp.get("wardrobe"):
            desc.append(f"wearing {vp['wardrobe']}")
        if vp.get("accessories"):
            desc.append(f"with {vp['accessories']}")
        if desc:
            parts.append(f"Character {character.get('name', '')}: {', '.join(desc)}")
        if vp.get("do_not_change"):
            negative_parts.append(f"Do not alter: {', '.join(vp['do_not_change'])}")

    # Reference assets
    assets = [snake_keys(a) for a in reference_assets]
    selected = [a for a in assets if a.get("asset_type") == "style" and a.get("is_active")]
    if character:
        selected += [
            a for a in assets
            if a.get("is_active") and a.get("character_id") is not None
            and a.get("character_id") == character.get("id")
        ]
    for asset in selected[:MAX_REFERENCE_ASSETS]:
        path = asset.get("image_path") or ""
        if path and not path.startswith("data:"):
            reference_image_urls.append(path)
        if asset.get("prompt_notes"):
            parts.append(asset["prompt_notes"])

    # Negative prompt
    if g.negative_prompt:
        negative_parts.insert(0, g.negative_prompt)
    if g.avoid_list:
        negative_parts.append(", ".join(g.avoid_list))

    if style_keywords:
        parts.append(", ".join(style_keywords))

    prompt = ". ".join(p for p in parts if p).replace("..", ".").strip()
    negative = ", ".join(p for p in negative_parts if p).strip()
    return VisualPrompt(
        prompt=prompt or FALLBACK_PROMPT,
        negative_prompt=negative or FALLBACK_NEGATIVE,
        style_keywords=style_keywords,
        reference_image_urls=reference_image_urls,
    )


def get_quality_settings(design_guide: Optional[DesignGuide]) -> dict:
    """Sampler settings for the guide's quality level."""
    level = design_guide.quality_level if design_guide else "standard"
    return dict(QUALITY_SETTINGS.get(level, QUALITY_SETTINGS["standard"]))


def build_minimum_design_prompt(user_prompt: str, design_guide: Optional[DesignGuide]) -> str:
    """Wrap a free-form user prompt in the guide's base style and quality terms."""
    if design_guide is None:
        if any(term in user_prompt.lower() for term in MIN_QUALITY_TERMS):
            return user_prompt
        return f"{user_prompt}, high quality, detailed, professional lighting"

    parts = []
    if design_guide.base_prompt:
        parts.append(design_guide.base_prompt)
    parts.append(user_prompt)
    if design_guide.style_keywords:
        parts.append(", ".join(design_guide.style_keywords))
    parts.append(QUALITY_ENHANCERS.get(design_guide.quality_level, QUALITY_ENHANCERS["standard"]))
    return ". ".join(p for p in parts if p).strip()
