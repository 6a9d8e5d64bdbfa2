"""Source guardrails: the grounding contract derived from the source text.

A GuardrailSet is extracted once (stage 2) and then rendered into every
later instruction that touches the universe: the moment planner's
constraints, each character persona's grounding rules, and continuity
checks against excluded topics.
"""

import logging
import re
from dataclasses import asdict, dataclass, field
from typing import Optional

from ..pipeline.parsing import resolve_fields

logger = logging.getLogger(__name__)

CREATIVE_LATITUDES = ("strict", "moderate", "liberal")

LATITUDE_GUIDANCE = {
    "strict": "stay purely factual - only use what's explicitly in the source",
    "moderate": "interpret but don't invent new facts",
    "liberal": "allow creative interpretation while staying true to themes",
}

PERSONA_LATITUDE_GUIDANCE = {
    "strict": "stay purely factual",
    "moderate": "interpret but don't invent",
    "liberal": "allow creative interpretation",
}

DEFLECTION_LINE = "That's not something I know about from my experience"


@dataclass
class GuardrailSet:
    """Grounding constraints every later generation for a universe respects."""
    core_themes: list[str] = field(default_factory=list)
    tone_constraints: list[str] = field(default_factory=list)
    factual_boundaries: list[str] = field(default_factory=list)
    exclusions: list[str] = field(default_factory=list)
    quotable_elements: list[str] = field(default_factory=list)
    sensitive_topics: list[str] = field(default_factory=list)
    creative_latitude: str = "moderate"
    grounding_statement: str = ""

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional["GuardrailSet"]:
        if data is None:
            return None
        latitude = data.get("creative_latitude", "moderate")
        return cls(
            core_themes=list(data.get("core_themes", [])),
            tone_constraints=list(data.get("tone_constraints", [])),
            factual_boundaries=list(data.get("factual_boundaries", [])),
            exclusions=list(data.get("exclusions", [])),
            quotable_elements=list(data.get("quotable_elements", [])),
            sensitive_topics=list(data.get("sensitive_topics", [])),
            creative_latitude=latitude if latitude in CREATIVE_LATITUDES else "moderate",
            grounding_statement=data.get("grounding_statement", ""),
        )


class GuardrailExtractor:
    """Issues the guardrail-specific request and builds a GuardrailSet."""

    def __init__(self, llm_gateway, prompt_registry):
        self.gateway = llm_gateway
        self.registry = prompt_registry

    def extract(
        self,
        excerpt: str,
        source_text: str,
        genre: str,
        theme_statement: str,
        tone_tags: list[str],
    ) -> tuple[GuardrailSet, list[str]]:
        """Extract guardrails from a source excerpt.

        Args:
            excerpt: Bounded source excerpt sent to the model.
            source_text: Full normalized text, used to verify quotes.
            genre: Genre guess from the identity request.
            theme_statement: Theme from the identity request (default theme).
            tone_tags: Tone tags from the identity request (default tone).

        Returns:
            (guardrails, warnings) where warnings name every field that
            fell back to a default and every dropped quote.
        """
        from ..llm.gateway import load_schema

        prompt_tmpl = self.registry.get_prompt("guardrails")
        schema = load_schema(prompt_tmpl.schema_name)

        response = self.gateway.run_structured(
            prompt=prompt_tmpl.template,
            input_data={"genre": genre, "text": excerpt},
            schema=schema,
            options={"temperature": 0.2, "max_tokens": 2048},
        )

        resolved = resolve_fields(response.content, schema, {
            "core_themes": [theme_statement],
            "tone_constraints": list(tone_tags),
            "factual_boundaries": [],
            "exclusions": [],
            "quotable_elements": [],
            "sensitive_topics": [],
            "creative_latitude": "moderate",
            "grounding_statement": f"A {genre} story grounded in the source material.",
        })
        values = resolved.values
        warnings = resolved.warnings()

        quotes, dropped = verify_quotes(values["quotable_elements"], source_text)
        for quote in dropped:
            warnings.append(f"ungrounded_quote:{quote}")
        if dropped:
            logger.warning(
                "Dropped %d quotable element(s) not found in the source", len(dropped)
            )

        guardrails = GuardrailSet(
            core_themes=_clean_list(values["core_themes"]),
            tone_constraints=_clean_list(values["tone_constraints"]),
            factual_boundaries=_clean_list(values["factual_boundaries"]),
            exclusions=_clean_list(values["exclusions"]),
            quotable_elements=quotes,
            sensitive_topics=_clean_list(values["sensitive_topics"]),
            creative_latitude=values["creative_latitude"],
            grounding_statement=values["grounding_statement"],
        )
        return guardrails, warnings


def verify_quotes(quotes: list[str], source_text: str) -> tuple[list[str], list[str]]:
    """Split quotes into those literally present in the source and the rest.

    Matching is case-insensitive and ignores whitespace differences.
    """
    haystack = _squash(source_text)
    kept, dropped = [], []
    for quote in _clean_list(quotes):
        needle = _squash(quote.strip("\"'“”‘’ "))
        if needle and needle in haystack:
            kept.append(quote)
        else:
            dropped.append(quote)
    return kept, dropped


def find_exclusions(text: str, exclusions: list[str]) -> list[str]:
    """Exclusion entries that occur literally (word-bounded) in ``text``."""
    hits = []
    for entry in exclusions:
        term = entry.strip()
        if not term:
            continue
        pattern = r"(?<!\w)" + re.escape(term) + r"(?!\w)"
        if re.search(pattern, text, re.IGNORECASE):
            hits.append(entry)
    return hits


def render_constraints(guardrails: Optional[GuardrailSet]) -> str:
    """Inline constraint block embedded in the moment planner instruction."""
    if guardrails is None:
        return ""
    g = guardrails
    return "\n".join([
        "GROUNDING CONSTRAINTS (CRITICAL - MUST FOLLOW):",
        f"- Creative latitude: {g.creative_latitude} ({LATITUDE_GUIDANCE[g.creative_latitude]})",
        f"- ONLY reference themes from the source: {_join(g.core_themes, ', ', 'none specified')}",
        f"- Maintain tone: {_join(g.tone_constraints, ', ', 'none specified')}",
        f"- NEVER introduce these topics or elements: {_join(g.exclusions, ', ', 'nothing to exclude')}",
        f"- Use quotable elements from source where possible: {_join(g.quotable_elements[:3], '; ', 'none specified')}",
        f"- Handle sensitively: {_join(g.sensitive_topics, ', ', 'none specified')}",
        f"- Facts to respect: {_join(g.factual_boundaries[:5], '; ', 'none specified')}",
        "",
        "DO NOT invent new plot points, characters, or facts not in the source material.",
    ])


def render_grounding_rules(guardrails: Optional[GuardrailSet]) -> str:
    """Grounding rules appended to every character persona system prompt."""
    if guardrails is None:
        return ""
    g = guardrails
    return "\n".join([
        "SOURCE GROUNDING RULES (CRITICAL):",
        f"- You are grounded to this source material: {g.grounding_statement or 'the uploaded content'}",
        f"- Creative latitude: {g.creative_latitude} ({PERSONA_LATITUDE_GUIDANCE[g.creative_latitude]})",
        f"- Core themes to reference: {_join(g.core_themes, ', ', 'none specified')}",
        f"- Tone constraints: {_join(g.tone_constraints, ', ', 'none specified')}",
        f"- NEVER introduce: {_join(g.exclusions, ', ', 'nothing to exclude')}",
        f"- Your knowledge stops at the source. You know nothing about: {_join(g.exclusions, ', ', 'anything outside the source')}",
        f"- If asked about something NOT in the source material, say \"{DEFLECTION_LINE}\" or a similar in-character deflection.",
        "- If the source doesn't answer a question, clearly frame any response as interpretation, not fact.",
        "- No confident guessing. No lore creep. Stay grounded.",
    ])


def render_grounding_data(guardrails: Optional[GuardrailSet]) -> str:
    """Full guardrail listing passed as data to the persona request."""
    if guardrails is None:
        return ""
    g = guardrails
    return "\n".join([
        "SOURCE GROUNDING DATA:",
        f"- Grounding statement: {g.grounding_statement or 'A story grounded in the source material'}",
        f"- Creative latitude: {g.creative_latitude}",
        f"- Core themes: {_join(g.core_themes, ', ', 'none specified')}",
        f"- Tone constraints: {_join(g.tone_constraints, ', ', 'none specified')}",
        f"- MUST NOT introduce: {_join(g.exclusions, ', ', 'nothing specified')}",
        f"- Factual boundaries: {_join(g.factual_boundaries, '; ', 'None specified')}",
        f"- Key quotes to reference: {_join(g.quotable_elements[:5], '; ', 'None specified')}",
        f"- Sensitive topics: {_join(g.sensitive_topics, ', ', 'None specified')}",
    ])


def _join(items: list[str], sep: str, fallback: str) -> str:
    return sep.join(items) if items else fallback


def _clean_list(items: list) -> list[str]:
    return [str(i).strip() for i in items if str(i).strip()]


def _squash(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip().lower()
