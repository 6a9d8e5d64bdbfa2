"""Stage 4: Moment Planning.

Shapes the story into a day-indexed card plan sized to the requested story
length. The instruction embeds the guardrail constraints, and every planned
card is scanned afterwards for excluded topics the model let through.
"""

import logging

from ..grounding.guardrails import find_exclusions, render_constraints
from .models import CARD_COUNT_TARGETS, CardPlanEntry, PipelineContext, Stage4Artifacts
from .stage import GenerativeStage
from .utils import bullet_list, excerpt

logger = logging.getLogger(__name__)

DEFAULTS = {
    "card_plan": [],
    "hook_pack_count": 3,
    "release_mode": "hybrid",
}


class MomentPlanner(GenerativeStage):
    """Plans the cards of a universe."""

    stage = 4

    def __call__(self, ctx: PipelineContext) -> Stage4Artifacts:
        identity = ctx.identity
        world = ctx.world
        guardrails = identity.guardrails
        target, description = CARD_COUNT_TARGETS.get(
            ctx.story_length, CARD_COUNT_TARGETS["medium"]
        )

        resolved = self._generate(
            "shape_moments",
            {
                "card_count_target": target,
                "card_count_description": description,
                "guardrail_constraints": render_constraints(guardrails),
                "title": identity.title,
                "theme_statement": identity.theme_statement,
                "genre": identity.genre_guess,
                "characters": bullet_list([f"{c.name} ({c.role})" for c in world.characters]),
                "locations": bullet_list([loc.name for loc in world.locations]),
                "key_sections": bullet_list(ctx.structure.key_sections),
                "grounding_statement": guardrails.grounding_statement if guardrails else "",
                "text": excerpt(ctx.normalized_text, self.settings.plan_excerpt_chars),
            },
            DEFAULTS,
            options={"temperature": 0.7, "max_tokens": 8192},
        )
        values = resolved.values
        warnings = resolved.warnings()

        card_plan = [_card_entry(raw, i) for i, raw in enumerate(values["card_plan"])]
        if not card_plan:
            warnings.append("empty_card_plan")

        hook_pack_count = values["hook_pack_count"]
        if self.settings.hook_pack_count is not None:
            hook_pack_count = self.settings.hook_pack_count

        exclusion_hits = []
        if guardrails and guardrails.exclusions:
            for card in card_plan:
                hits = find_exclusions(card.text(), guardrails.exclusions)
                if hits:
                    exclusion_hits.append({"day_index": card.day_index, "exclusions": hits})
            if exclusion_hits:
                logger.warning(
                    "%d planned card(s) mention excluded topics", len(exclusion_hits)
                )

        logger.info(
            "Planned %d card(s) for a %s story (target %s), hook pack %d",
            len(card_plan), ctx.story_length, target, hook_pack_count,
        )
        return Stage4Artifacts(
            card_plan=card_plan,
            hook_pack_count=hook_pack_count,
            release_mode=values["release_mode"],
            exclusion_hits=exclusion_hits,
            warnings=warnings,
        )


def _card_entry(raw: dict, position: int) -> CardPlanEntry:
    """Map one planned card onto a CardPlanEntry, filling absent fields."""
    day_index = raw.get("dayIndex")
    if not isinstance(day_index, int) or isinstance(day_index, bool):
        day_index = position + 1
    title = str(raw.get("title") or "").strip() or f"Day {day_index}"
    return CardPlanEntry(
        day_index=day_index,
        title=title,
        intent=raw.get("intent") or "",
        scene_text=raw.get("sceneText") or "",
        captions=[str(c) for c in raw.get("captions") or []],
        image_prompt=raw.get("imagePrompt") or "",
    )
