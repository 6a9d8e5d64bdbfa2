"""Stage 5: Experience Materialization.

Turns the derived artifacts into a persisted universe: one persona request
per character, then the universe, its characters, locations and scheduled
cards written in a single store transaction.

Hook-pack scheduling: with a hook pack of N, cards 0..N-1 publish at
``now`` and card i >= N publishes ``i - N + 1`` days later, so the first
daily card lands the day after the hook pack.
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from ..config import PipelineSettings
from ..db.job_store import JobStore
from ..grounding.guardrails import GuardrailSet, render_grounding_data, render_grounding_rules
from ..llm.gateway import ParseError
from .errors import JobNotFoundError
from .models import CardPlanEntry, CharacterEntry, PipelineContext, ReleaseMode, Stage5Artifacts
from .stage import GenerativeStage
from .utils import slugify

logger = logging.getLogger(__name__)

PERSONA_DEFAULTS = {
    "system_prompt": "",
    "voice": "Natural conversational tone fitting this character",
    "secrets": [],
    "goals": ["Engage the viewer authentically", "Stay grounded to the source material"],
    "knowledge_limits": [],
}
DEFAULT_SPEECH_STYLE = "Natural and in-character"

RELEASE_MODES = {
    "hybrid": ReleaseMode.HYBRID.value,
    "daily": ReleaseMode.DAILY.value,
}


def base_system_prompt(name: str, title: str) -> str:
    """Persona used when the generated one is unusable."""
    return (
        f'You are {name}, a character in "{title or "this story"}". '
        "Stay in character at all times.\n\n"
        "GROUNDING RULES:\n"
        "- You can ONLY speak to what is in the source material.\n"
        "- If asked about something not covered, say \"That's not something I can speak to\" "
        "or similar in-character response.\n"
        "- Never invent facts, backstory, or conclusions not present in the source.\n"
        "- When interpreting, clearly frame it as your perspective, not established fact."
    )


def schedule_cards(
    card_plan: list[CardPlanEntry], hook_pack_count: int, now: datetime
) -> list[tuple[int, CardPlanEntry, datetime]]:
    """Order cards by planned day, renumber them 1..n and assign publish times.

    Returns (day_index, card, publish_at) triples.
    """
    ordered = sorted(card_plan, key=lambda c: c.day_index)
    scheduled = []
    for i, card in enumerate(ordered):
        if i < hook_pack_count:
            publish_at = now
        else:
            publish_at = now + timedelta(days=i - hook_pack_count + 1)
        scheduled.append((i + 1, card, publish_at))
    return scheduled


class ExperienceMaterializer(GenerativeStage):
    """Builds and persists the universe for a finished plan."""

    stage = 5

    def __init__(
        self,
        llm_gateway,
        prompt_registry,
        store: JobStore,
        settings: Optional[PipelineSettings] = None,
        progress_fn: Optional[Callable[[str], None]] = None,
        now_fn: Optional[Callable[[], datetime]] = None,
    ):
        super().__init__(llm_gateway, prompt_registry, settings, progress_fn)
        self.store = store
        self._now = now_fn or (lambda: datetime.now(timezone.utc))

    def __call__(self, ctx: PipelineContext) -> Stage5Artifacts:
        if self.store.get_job(ctx.job_id) is None:
            raise JobNotFoundError(ctx.job_id)

        identity = ctx.identity
        world = ctx.world
        plan = ctx.plan
        guardrails = identity.guardrails

        universe = {
            "name": identity.title,
            "slug": f"{slugify(identity.title, 30)}-{uuid.uuid4().hex[:8]}",
            "description": f"{identity.genre_guess} - {identity.audience_guess}",
            "style_notes": ctx.structure.voice_notes,
            "release_mode": RELEASE_MODES.get(plan.release_mode, ReleaseMode.HYBRID.value),
            "intro_cards_count": plan.hook_pack_count,
            "source_guardrails": guardrails.to_dict() if guardrails else None,
        }

        characters = []
        for i, char in enumerate(world.characters, start=1):
            self._progress(f"Writing persona {i}/{len(world.characters)}: {char.name}")
            characters.append(self._persona(char, ctx, guardrails))

        locations = [
            {"location_slug": loc.id, "name": loc.name, "description": loc.description}
            for loc in world.locations
        ]

        primary = [world.characters[0].id] if world.characters else []
        cards = []
        for day_index, card, publish_at in schedule_cards(
            plan.card_plan, plan.hook_pack_count, self._now()
        ):
            cards.append({
                "day_index": day_index,
                "title": card.title,
                "captions": card.captions or ([card.intent] if card.intent else []),
                "scene_text": card.scene_text or f"Scene for {card.title}",
                "recap_text": f"Day {day_index} - {card.title}",
                "publish_at": publish_at.isoformat(),
                "image_generation": {
                    "prompt": card.image_prompt,
                    "shot_type": "medium",
                    "lighting": "natural",
                } if card.image_prompt else None,
                "primary_character_slugs": primary,
            })

        universe_id = self.store.materialize_universe(universe, characters, locations, cards)
        logger.info(
            "Materialized universe %d '%s': %d character(s), %d location(s), %d card(s)",
            universe_id, identity.title, len(characters), len(locations), len(cards),
        )
        return Stage5Artifacts(
            universe_id=universe_id,
            character_count=len(characters),
            location_count=len(locations),
            card_count=len(cards),
        )

    def _persona(
        self, char: CharacterEntry, ctx: PipelineContext, guardrails: Optional[GuardrailSet]
    ) -> dict:
        """Generate one character's chat persona.

        Output that is not a JSON object falls back to the base persona;
        transport errors propagate and fail the stage.
        """
        identity = ctx.identity
        rules = render_grounding_rules(guardrails)
        try:
            resolved = self._generate(
                "character_persona",
                {
                    "grounding_rules": rules,
                    "name": char.name,
                    "role": char.role or "Character",
                    "description": char.description or "A character in this story",
                    "title": identity.title,
                    "theme_statement": identity.theme_statement,
                    "genre": identity.genre_guess,
                    "grounding_data": render_grounding_data(guardrails),
                },
                PERSONA_DEFAULTS,
                options={"temperature": 0.7, "max_tokens": 2048},
            )
            values = resolved.values
        except ParseError as e:
            logger.warning("Persona for %s unusable (%s); using base persona", char.name, e)
            values = dict(PERSONA_DEFAULTS)

        system_prompt = values["system_prompt"] or base_system_prompt(char.name, identity.title)
        if rules:
            system_prompt = f"{system_prompt}\n\n{rules}"

        voice = values["voice"]
        return {
            "character_slug": char.id,
            "name": char.name,
            "role": char.role or "Character",
            "description": char.description,
            "system_prompt": system_prompt,
            "secrets": [str(s) for s in values["secrets"]],
            "chat_profile": {
                "voice": voice,
                "goals": list(values["goals"]),
                "speech_style": voice if voice != PERSONA_DEFAULTS["voice"] else DEFAULT_SPEECH_STYLE,
                "knowledge_limits": list(values["knowledge_limits"]),
            },
        }
