"""Stage 3: World Extraction (characters, locations, world rules)."""

import logging

from .models import CharacterEntry, LocationEntry, PipelineContext, Stage3Artifacts
from .stage import GenerativeStage
from .utils import bullet_list, excerpt, slugify

logger = logging.getLogger(__name__)

DEFAULTS = {
    "characters": [],
    "locations": [],
    "world_rules": ["Grounded in reality"],
}


class WorldExtractor(GenerativeStage):
    """Extracts the named cast and places of the story."""

    stage = 3

    def __call__(self, ctx: PipelineContext) -> Stage3Artifacts:
        identity = ctx.identity
        resolved = self._generate(
            "extract_world",
            {
                "title": identity.title,
                "key_sections": bullet_list(ctx.structure.key_sections),
                "genre": identity.genre_guess,
                "text": excerpt(ctx.normalized_text, self.settings.excerpt_chars),
            },
            DEFAULTS,
            options={"temperature": 0.3, "max_tokens": 4096},
        )
        values = resolved.values
        warnings = resolved.warnings()

        characters = []
        seen = set()
        for raw in values["characters"]:
            name = str(raw.get("name") or "").strip()
            if not name:
                warnings.append("dropped_unnamed_character")
                continue
            char_id = _unique(raw.get("id") or slugify(name), seen)
            characters.append(CharacterEntry(
                id=char_id,
                name=name,
                role=raw.get("role") or "Character",
                description=raw.get("description") or "",
            ))

        locations = []
        seen = set()
        for raw in values["locations"]:
            name = str(raw.get("name") or "").strip()
            if not name:
                warnings.append("dropped_unnamed_location")
                continue
            locations.append(LocationEntry(
                id=_unique(raw.get("id") or slugify(name), seen),
                name=name,
                description=raw.get("description") or "",
            ))

        logger.info(
            "Extracted %d character(s), %d location(s)", len(characters), len(locations)
        )
        return Stage3Artifacts(
            characters=characters,
            locations=locations,
            world_rules=[str(r) for r in values["world_rules"]],
            warnings=warnings,
        )


def _unique(slug: str, seen: set) -> str:
    """Suffix a slug with -2, -3, ... until it is unused."""
    candidate = slug
    n = 2
    while candidate in seen:
        candidate = f"{slug}-{n}"
        n += 1
    seen.add(candidate)
    return candidate
