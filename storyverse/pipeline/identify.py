"""Stage 2: Story Identity and Source Guardrails.

Two requests: the identity request (title, theme, tone, genre, audience)
and the guardrail request, whose defaults are derived from the identity
answer. Both share the same source excerpt.
"""

import logging

from ..grounding.guardrails import GuardrailExtractor
from .models import PipelineContext, Stage2Artifacts
from .stage import GenerativeStage
from .utils import excerpt

logger = logging.getLogger(__name__)

DEFAULTS = {
    "title": "Untitled Story",
    "theme_statement": "A story of choices and consequences.",
    "tone_tags": ["dramatic"],
    "genre_guess": "drama",
    "audience_guess": "General audience",
}


class IdentityExtractor(GenerativeStage):
    """Derives the story identity and its grounding contract."""

    stage = 2

    def __call__(self, ctx: PipelineContext) -> Stage2Artifacts:
        structure = ctx.structure
        text = excerpt(ctx.normalized_text, self.settings.excerpt_chars)

        resolved = self._generate(
            "identify_story",
            {
                "structure_summary": structure.structure_summary,
                "voice_notes": structure.voice_notes,
                "text": text,
            },
            DEFAULTS,
            options={"temperature": 0.5, "max_tokens": 1024},
        )
        values = resolved.values
        warnings = resolved.warnings()

        self._progress("Extracting source guardrails")
        extractor = GuardrailExtractor(self.gateway, self.registry)
        guardrails, guardrail_warnings = extractor.extract(
            excerpt=text,
            source_text=ctx.normalized_text,
            genre=values["genre_guess"],
            theme_statement=values["theme_statement"],
            tone_tags=values["tone_tags"],
        )
        warnings.extend(f"guardrails.{w}" for w in guardrail_warnings)

        logger.info(
            "Identified '%s' (%s), latitude=%s, %d exclusion(s)",
            values["title"], values["genre_guess"],
            guardrails.creative_latitude, len(guardrails.exclusions),
        )
        return Stage2Artifacts(
            title=values["title"],
            theme_statement=values["theme_statement"],
            tone_tags=list(values["tone_tags"]),
            genre_guess=values["genre_guess"],
            audience_guess=values["audience_guess"],
            guardrails=guardrails,
            warnings=warnings,
        )
