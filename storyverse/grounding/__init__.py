"""Source grounding: guardrail extraction and rendering."""

from .guardrails import (
    GuardrailSet,
    GuardrailExtractor,
    CREATIVE_LATITUDES,
    DEFLECTION_LINE,
    verify_quotes,
    find_exclusions,
    render_constraints,
    render_grounding_rules,
    render_grounding_data,
)

__all__ = [
    "GuardrailSet",
    "GuardrailExtractor",
    "CREATIVE_LATITUDES",
    "DEFLECTION_LINE",
    "verify_quotes",
    "find_exclusions",
    "render_constraints",
    "render_grounding_rules",
    "render_grounding_data",
]
