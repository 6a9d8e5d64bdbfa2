"""Project Bible consistency layer: models, prompt composition, continuity."""

from .models import (
    ProjectBible,
    CharacterBibleEntry,
    WorldBible,
    StyleBible,
    DesignGuide,
    load_bible,
    load_design_guide,
)
from .composer import ComposedPrompt, compose
from .visual import VisualPrompt, build_visual_prompt, get_quality_settings, build_minimum_design_prompt
from .continuity import ContinuityReport, ContinuityWarning, check

__all__ = [
    # Models
    "ProjectBible",
    "CharacterBibleEntry",
    "WorldBible",
    "StyleBible",
    "DesignGuide",
    "load_bible",
    "load_design_guide",
    # Composition
    "ComposedPrompt",
    "compose",
    "VisualPrompt",
    "build_visual_prompt",
    "get_quality_settings",
    "build_minimum_design_prompt",
    # Continuity
    "ContinuityReport",
    "ContinuityWarning",
    "check",
]
