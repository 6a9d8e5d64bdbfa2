"""Project Bible and Design Guide models.

A ProjectBible is the versioned, independently maintained rule set (style,
world, characters) used to keep every generated asset of a universe
consistent. A DesignGuide is the simpler per-universe style guide used by
experiences that predate bible support.

Both load from dicts with either camelCase or snake_case keys, or from
YAML/JSON files.
"""

import json
import re
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Optional

import yaml

REALISM_LEVELS = ("photorealistic", "stylized", "illustrated", "animated")
ASPECT_RATIOS = ("9:16", "16:9", "1:1", "4:3", "3:4")
QUALITY_LEVELS = ("draft", "standard", "high", "ultra")

_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")


def snake_keys(value):
    """Recursively convert camelCase dict keys to snake_case."""
    if isinstance(value, dict):
        return {_CAMEL_RE.sub("_", str(k)).lower(): snake_keys(v) for k, v in value.items()}
    if isinstance(value, list):
        return [snake_keys(v) for v in value]
    return value


# ---------------------------------------------------------------------------
# Characters
# ---------------------------------------------------------------------------

@dataclass
class PhysicalTraits:
    age_range: str = ""
    build: str = ""
    skin_tone: str = ""
    hair_style: str = ""
    hair_color: str = ""
    facial_features: str = ""
    distinguishing_marks: str = ""

    def describe(self) -> list[str]:
        """Non-empty traits as prompt fragments."""
        parts = []
        if self.age_range:
            parts.append(f"age {self.age_range}")
        if self.build:
            parts.append(f"{self.build} build")
        if self.skin_tone:
            parts.append(f"{self.skin_tone} skin")
        hair = " ".join(p for p in (self.hair_color, self.hair_style) if p)
        if hair:
            parts.append(f"{hair} hair")
        for extra in (self.facial_features, self.distinguishing_marks):
            if extra:
                parts.append(extra)
        return parts


@dataclass
class WardrobeRules:
    signature_items: list[str] = field(default_factory=list)
    color_palette: list[str] = field(default_factory=list)
    style: str = ""

    def describe(self) -> list[str]:
        parts = []
        if self.style:
            parts.append(f"{self.style} style")
        if self.signature_items:
            parts.append(f"wearing {', '.join(self.signature_items)}")
        if self.color_palette:
            parts.append(f"in {', '.join(self.color_palette)}")
        return parts


@dataclass
class CharacterBibleEntry:
    """Canonical appearance and traits of one character."""
    id: str
    name: str
    role: str = ""
    physical_traits: PhysicalTraits = field(default_factory=PhysicalTraits)
    wardrobe_rules: WardrobeRules = field(default_factory=WardrobeRules)
    mannerisms: str = ""
    locked_traits: list[str] = field(default_factory=list)
    reference_images: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> "CharacterBibleEntry":
        data = snake_keys(data)
        name = data.get("name", "")
        return cls(
            id=data.get("id") or name.lower().replace(" ", "-"),
            name=name,
            role=data.get("role") or "",
            physical_traits=PhysicalTraits(**_known(PhysicalTraits, data.get("physical_traits"))),
            wardrobe_rules=WardrobeRules(**_known(WardrobeRules, data.get("wardrobe_rules"))),
            mannerisms=data.get("mannerisms") or "",
            locked_traits=list(data.get("locked_traits") or []),
            reference_images=list(data.get("reference_images") or []),
        )

    def description(self) -> str:
        """Physical and wardrobe description, without locked traits."""
        parts = self.physical_traits.describe() + self.wardrobe_rules.describe()
        if self.mannerisms:
            parts.append(self.mannerisms)
        return ", ".join(parts)


# ---------------------------------------------------------------------------
# World
# ---------------------------------------------------------------------------

@dataclass
class Setting:
    place: str = ""
    era: str = ""
    culture: str = ""


@dataclass
class VisualLanguage:
    cinematic_style: str = ""
    lighting: str = ""
    lens_vibe: str = ""
    realism_level: str = ""

    def __post_init__(self):
        _check_realism(self.realism_level)


@dataclass
class EnvironmentAnchor:
    name: str
    description: str = ""
    visual_details: str = ""


@dataclass
class ToneRules:
    mood: str = ""
    genre: str = ""


@dataclass
class WorldBible:
    """The story's setting and visual language."""
    setting: Setting = field(default_factory=Setting)
    visual_language: VisualLanguage = field(default_factory=VisualLanguage)
    environment_anchors: list[EnvironmentAnchor] = field(default_factory=list)
    tone_rules: ToneRules = field(default_factory=ToneRules)
    locked_world_traits: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "WorldBible":
        data = snake_keys(data or {})
        return cls(
            setting=Setting(**_known(Setting, data.get("setting"))),
            visual_language=VisualLanguage(**_known(VisualLanguage, data.get("visual_language"))),
            environment_anchors=[
                EnvironmentAnchor(**_known(EnvironmentAnchor, a))
                for a in data.get("environment_anchors") or []
                if a.get("name")
            ],
            tone_rules=ToneRules(**_known(ToneRules, data.get("tone_rules"))),
            locked_world_traits=list(data.get("locked_world_traits") or []),
        )


# ---------------------------------------------------------------------------
# Style
# ---------------------------------------------------------------------------

@dataclass
class StyleBible:
    """Technical generation settings."""
    aspect_ratio: str = "9:16"
    no_on_screen_text: bool = True
    realism_level: str = ""
    color_grading: str = ""
    camera_movement: str = ""
    additional_negative_prompts: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "StyleBible":
        data = snake_keys(data or {})
        aspect_ratio = data.get("aspect_ratio") or "9:16"
        if aspect_ratio not in ASPECT_RATIOS:
            raise ValueError(f"Unsupported aspect ratio: {aspect_ratio}")
        _check_realism(data.get("realism_level") or "")
        no_text = data.get("no_on_screen_text")
        return cls(
            aspect_ratio=aspect_ratio,
            no_on_screen_text=True if no_text is None else bool(no_text),
            realism_level=data.get("realism_level") or "",
            color_grading=data.get("color_grading") or "",
            camera_movement=data.get("camera_movement") or "",
            additional_negative_prompts=list(data.get("additional_negative_prompts") or []),
        )


# ---------------------------------------------------------------------------
# Project Bible
# ---------------------------------------------------------------------------

@dataclass
class ProjectBible:
    """Versioned style/world/character rule set for a universe."""
    version_id: str
    version: int = 1
    characters: list[CharacterBibleEntry] = field(default_factory=list)
    world: Optional[WorldBible] = None
    style: Optional[StyleBible] = None

    @classmethod
    def from_dict(cls, data: dict) -> "ProjectBible":
        data = snake_keys(data)
        if not data.get("version_id"):
            raise ValueError("Project bible requires a version_id")
        return cls(
            version_id=str(data["version_id"]),
            version=int(data.get("version") or 1),
            characters=[CharacterBibleEntry.from_dict(c) for c in data.get("characters") or []],
            world=WorldBible.from_dict(data["world"]) if data.get("world") else None,
            style=StyleBible.from_dict(data["style"]) if data.get("style") else None,
        )

    def to_dict(self) -> dict:
        return asdict(self)

    def known_names(self) -> set[str]:
        """Lower-cased character names and each of their name parts."""
        names = set()
        for char in self.characters:
            full = char.name.strip().lower()
            if full:
                names.add(full)
                names.update(full.split())
        return names


# ---------------------------------------------------------------------------
# Design Guide
# ---------------------------------------------------------------------------

@dataclass
class DesignGuide:
    """Per-universe style guide for experiences without a bible."""
    art_style: str = ""
    color_palette: str = ""
    mood_tone: str = ""
    camera_style: str = ""
    default_aspect_ratio: str = "9:16"
    lighting_notes: str = ""
    base_prompt: str = ""
    negative_prompt: str = ""
    style_keywords: list[str] = field(default_factory=list)
    quality_level: str = "standard"
    avoid_list: list[str] = field(default_factory=list)
    required_elements: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "DesignGuide":
        values = _known(cls, snake_keys(data or {}))
        guide = cls(**{k: v for k, v in values.items() if v is not None})
        if guide.quality_level not in QUALITY_LEVELS:
            guide.quality_level = "standard"
        return guide

    def to_dict(self) -> dict:
        return asdict(self)


# ---------------------------------------------------------------------------
# File loading
# ---------------------------------------------------------------------------

def load_document(path: str | Path) -> dict:
    """Read a YAML or JSON mapping from disk."""
    path = Path(path)
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() == ".json":
        data = json.loads(text)
    else:
        data = yaml.safe_load(text)
    if not isinstance(data, dict):
        raise ValueError(f"{path} does not contain a mapping")
    return data


def load_bible(path: str | Path) -> ProjectBible:
    """Load a ProjectBible from a YAML or JSON file."""
    return ProjectBible.from_dict(load_document(path))


def load_design_guide(path: str | Path) -> DesignGuide:
    """Load a DesignGuide from a YAML or JSON file."""
    return DesignGuide.from_dict(load_document(path))


def _check_realism(level: str) -> None:
    if level and level not in REALISM_LEVELS:
        raise ValueError(f"Unsupported realism level: {level}")


def _known(cls, data: Optional[dict]) -> dict:
    """Subset of ``data`` naming fields of dataclass ``cls``."""
    if not data:
        return {}
    names = cls.__dataclass_fields__.keys()
    return {k: v for k, v in data.items() if k in names}
