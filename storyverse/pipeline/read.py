"""Stage 1: Structural Reading."""

import logging

from .models import PipelineContext, Stage1Artifacts
from .stage import GenerativeStage
from .utils import excerpt

logger = logging.getLogger(__name__)

DEFAULTS = {
    "structure_summary": "Multi-scene narrative",
    "voice_notes": "Observational tone",
    "key_sections": ["Opening", "Middle", "End"],
    "estimated_duration": "",
}


class StructuralReader(GenerativeStage):
    """Summarises narrative structure, voice and key beats."""

    stage = 1

    def __call__(self, ctx: PipelineContext) -> Stage1Artifacts:
        resolved = self._generate(
            "read_structure",
            {
                "source_type": ctx.classification.detected_type,
                "text": excerpt(ctx.normalized_text, self.settings.excerpt_chars),
            },
            DEFAULTS,
            options={"temperature": 0.3, "max_tokens": 2048},
        )
        values = resolved.values
        # estimated_duration is informational; leaving it out is not worth a warning
        warnings = [w for w in resolved.warnings() if w != "missing:estimated_duration"]

        return Stage1Artifacts(
            structure_summary=values["structure_summary"],
            voice_notes=values["voice_notes"],
            key_sections=[str(s) for s in values["key_sections"]],
            estimated_duration=values["estimated_duration"],
            warnings=warnings,
        )
