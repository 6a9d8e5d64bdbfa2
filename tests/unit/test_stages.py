"""
Tests for the generative stages 1-4.

Each stage runs against the mock gateway with a context holding the
artifacts of the stages before it.
"""

import pytest

from storyverse.config import PipelineSettings
from storyverse.llm.gateway import ParseError, TransportError
from storyverse.pipeline.identify import IdentityExtractor
from storyverse.pipeline.moments import MomentPlanner, _card_entry
from storyverse.pipeline.read import StructuralReader
from storyverse.pipeline.world import WorldExtractor

from tests.fixtures import (
    IDENTITY_RESPONSE, MOMENTS_RESPONSE, PROMPT_KEYS, STRUCTURE_RESPONSE, WORLD_RESPONSE,
    load_all_responses, make_context,
)


class TestStructuralReader:
    """Stage 1."""

    def test_reads_structure(self, loaded_gateway, prompt_registry):
        artifacts = StructuralReader(loaded_gateway, prompt_registry)(make_context(through=0))
        assert artifacts.structure_summary == STRUCTURE_RESPONSE["structure_summary"]
        assert artifacts.key_sections == ["Night office", "Dawn departure"]
        assert artifacts.estimated_duration == "1-week arc"
        assert artifacts.warnings == []

    def test_sends_source_type(self, loaded_gateway, prompt_registry):
        StructuralReader(loaded_gateway, prompt_registry)(make_context(through=0))
        call = loaded_gateway.calls_matching(PROMPT_KEYS["read"])[0]
        assert call["input_data"]["source_type"] == "script"
        assert "Source type: script" in call["rendered"]

    def test_excerpt_is_bounded(self, loaded_gateway, prompt_registry):
        reader = StructuralReader(
            loaded_gateway, prompt_registry, settings=PipelineSettings(excerpt_chars=20)
        )
        reader(make_context(through=0))
        call = loaded_gateway.calls_matching(PROMPT_KEYS["read"])[0]
        assert len(call["input_data"]["text"]) == 20

    def test_defaults_without_duration_warning(self, mock_gateway, prompt_registry):
        mock_gateway.set_response(PROMPT_KEYS["read"], {"voice_notes": "Dry"})
        artifacts = StructuralReader(mock_gateway, prompt_registry)(make_context(through=0))

        assert artifacts.structure_summary == "Multi-scene narrative"
        assert artifacts.voice_notes == "Dry"
        assert artifacts.key_sections == ["Opening", "Middle", "End"]
        assert artifacts.estimated_duration == ""
        assert artifacts.warnings == ["missing:structure_summary", "missing:key_sections"]

    def test_malformed_sections(self, mock_gateway, prompt_registry):
        mock_gateway.set_response(
            PROMPT_KEYS["read"], {**STRUCTURE_RESPONSE, "key_sections": "one, two"}
        )
        artifacts = StructuralReader(mock_gateway, prompt_registry)(make_context(through=0))
        assert artifacts.key_sections == ["Opening", "Middle", "End"]
        assert artifacts.warnings == ["malformed:key_sections"]

    def test_transport_error_propagates(self, mock_gateway, prompt_registry):
        mock_gateway.set_error(PROMPT_KEYS["read"], TransportError("quota exceeded"))
        with pytest.raises(TransportError):
            StructuralReader(mock_gateway, prompt_registry)(make_context(through=0))

    def test_unparsable_output_propagates(self, mock_gateway, prompt_registry):
        mock_gateway.set_response(PROMPT_KEYS["read"], "Sorry, I can't read that.")
        with pytest.raises(ParseError):
            StructuralReader(mock_gateway, prompt_registry)(make_context(through=0))


class TestIdentityExtractor:
    """Stage 2."""

    def test_identity_and_guardrails(self, loaded_gateway, prompt_registry):
        artifacts = IdentityExtractor(loaded_gateway, prompt_registry)(make_context(through=1))
        assert artifacts.title == "The Last Ferry"
        assert artifacts.tone_tags == ["tense", "intimate"]
        assert artifacts.guardrails.exclusions == ["smuggling"]
        assert artifacts.guardrails.creative_latitude == "strict"
        assert artifacts.warnings == []

    def test_two_requests(self, loaded_gateway, prompt_registry):
        IdentityExtractor(loaded_gateway, prompt_registry)(make_context(through=1))
        assert len(loaded_gateway.calls_matching(PROMPT_KEYS["identify"])) == 1
        assert len(loaded_gateway.calls_matching(PROMPT_KEYS["guardrails"])) == 1

    def test_defaults_flow_into_guardrails(self, mock_gateway, prompt_registry):
        mock_gateway.set_response(PROMPT_KEYS["identify"], {})
        mock_gateway.set_response(PROMPT_KEYS["guardrails"], {})
        artifacts = IdentityExtractor(mock_gateway, prompt_registry)(make_context(through=1))

        assert artifacts.title == "Untitled Story"
        assert artifacts.genre_guess == "drama"
        assert artifacts.guardrails.core_themes == ["A story of choices and consequences."]
        assert artifacts.guardrails.tone_constraints == ["dramatic"]
        assert "missing:title" in artifacts.warnings
        assert "guardrails.missing:exclusions" in artifacts.warnings

    def test_guardrail_transport_error(self, mock_gateway, prompt_registry):
        mock_gateway.set_response(PROMPT_KEYS["identify"], IDENTITY_RESPONSE)
        mock_gateway.set_error(PROMPT_KEYS["guardrails"], TransportError("timeout"))
        with pytest.raises(TransportError):
            IdentityExtractor(mock_gateway, prompt_registry)(make_context(through=1))

    def test_progress_reported(self, loaded_gateway, prompt_registry):
        messages = []
        IdentityExtractor(loaded_gateway, prompt_registry, progress_fn=messages.append)(
            make_context(through=1)
        )
        assert messages == ["Extracting source guardrails"]


class TestWorldExtractor:
    """Stage 3."""

    def test_extracts_world(self, loaded_gateway, prompt_registry):
        artifacts = WorldExtractor(loaded_gateway, prompt_registry)(make_context(through=2))
        assert [c.id for c in artifacts.characters] == ["ada", "marcus"]
        assert artifacts.characters[1].role == "Supporting"
        assert [loc.id for loc in artifacts.locations] == ["harbour-office", "dock"]
        assert artifacts.world_rules == ["Set in a small port town"]

    def test_key_sections_passed_as_line(self, loaded_gateway, prompt_registry):
        WorldExtractor(loaded_gateway, prompt_registry)(make_context(through=2))
        call = loaded_gateway.calls_matching(PROMPT_KEYS["world"])[0]
        assert call["input_data"]["key_sections"] == "Night office, Dawn departure"
        assert call["input_data"]["title"] == "The Last Ferry"

    def test_ids_derived_and_unique(self, mock_gateway, prompt_registry):
        mock_gateway.set_response(PROMPT_KEYS["world"], {
            "characters": [
                {"name": "Old Tom"},
                {"name": "Old Tom", "role": "Ghost"},
                {"id": "", "name": "  "},
            ],
            "locations": [{"name": "The Pier"}, {"description": "nameless"}],
            "world_rules": ["No magic"],
        })
        artifacts = WorldExtractor(mock_gateway, prompt_registry)(make_context(through=2))

        assert [c.id for c in artifacts.characters] == ["old-tom", "old-tom-2"]
        assert artifacts.characters[0].role == "Character"
        assert [loc.id for loc in artifacts.locations] == ["the-pier"]
        assert "dropped_unnamed_character" in artifacts.warnings
        assert "dropped_unnamed_location" in artifacts.warnings

    def test_empty_response(self, mock_gateway, prompt_registry):
        mock_gateway.set_response(PROMPT_KEYS["world"], {})
        artifacts = WorldExtractor(mock_gateway, prompt_registry)(make_context(through=2))
        assert artifacts.characters == []
        assert artifacts.locations == []
        assert artifacts.world_rules == ["Grounded in reality"]
        assert "missing:characters" in artifacts.warnings

    def test_bad_field_in_one_character(self, mock_gateway, prompt_registry):
        characters = [dict(c) for c in WORLD_RESPONSE["characters"]]
        characters[1]["role"] = None
        mock_gateway.set_response(
            PROMPT_KEYS["world"], {**WORLD_RESPONSE, "characters": characters}
        )
        artifacts = WorldExtractor(mock_gateway, prompt_registry)(make_context(through=2))

        assert [c.name for c in artifacts.characters] == ["Ada", "Marcus"]
        assert artifacts.characters[0].role == "Protagonist"
        assert artifacts.characters[1].role == "Character"
        assert len(artifacts.locations) == 2
        assert artifacts.warnings == ["malformed:characters[1].role"]


class TestMomentPlanner:
    """Stage 4."""

    def test_plans_cards(self, loaded_gateway, prompt_registry):
        artifacts = MomentPlanner(loaded_gateway, prompt_registry)(make_context(through=3))
        assert [c.day_index for c in artifacts.card_plan] == [3, 1, 2]
        assert artifacts.card_plan[1].scene_text == "Ada sorts the last manifests."
        assert artifacts.card_plan[0].image_prompt.startswith("A ferry")
        assert artifacts.hook_pack_count == 2
        assert artifacts.card_count == 3
        assert artifacts.hook_enabled
        assert artifacts.exclusion_hits == []

    @pytest.mark.parametrize("length,target", [
        ("short", "6-10"), ("medium", "14-18"), ("long", "20-28"),
    ])
    def test_card_count_target(self, loaded_gateway, prompt_registry, length, target):
        MomentPlanner(loaded_gateway, prompt_registry)(make_context(through=3, story_length=length))
        call = loaded_gateway.calls_matching(PROMPT_KEYS["moments"])[0]
        assert call["input_data"]["card_count_target"] == target

    def test_constraints_embedded(self, loaded_gateway, prompt_registry):
        MomentPlanner(loaded_gateway, prompt_registry)(make_context(through=3))
        rendered = loaded_gateway.calls_matching(PROMPT_KEYS["moments"])[0]["rendered"]
        assert "GROUNDING CONSTRAINTS (CRITICAL - MUST FOLLOW):" in rendered
        assert "Characters: Ada (Protagonist), Marcus (Supporting)" in rendered

    def test_no_guardrails(self, loaded_gateway, prompt_registry):
        artifacts = MomentPlanner(loaded_gateway, prompt_registry)(
            make_context(through=3, with_guardrails=False)
        )
        call = loaded_gateway.calls_matching(PROMPT_KEYS["moments"])[0]
        assert call["input_data"]["guardrail_constraints"] == ""
        assert artifacts.exclusion_hits == []

    def test_exclusion_hits(self, mock_gateway, prompt_registry):
        plan = dict(MOMENTS_RESPONSE)
        plan["card_plan"] = [
            {"dayIndex": 1, "title": "Cargo", "sceneText": "A night of smuggling begins."},
            {"dayIndex": 2, "title": "Calm", "sceneText": "Nothing happens."},
        ]
        load_all_responses(mock_gateway)
        mock_gateway.set_response(PROMPT_KEYS["moments"], plan)

        artifacts = MomentPlanner(mock_gateway, prompt_registry)(make_context(through=3))
        assert artifacts.exclusion_hits == [{"day_index": 1, "exclusions": ["smuggling"]}]

    def test_hook_pack_override(self, loaded_gateway, prompt_registry):
        planner = MomentPlanner(
            loaded_gateway, prompt_registry, settings=PipelineSettings(hook_pack_count=0)
        )
        artifacts = planner(make_context(through=3))
        assert artifacts.hook_pack_count == 0
        assert not artifacts.hook_enabled

    def test_empty_plan(self, mock_gateway, prompt_registry):
        mock_gateway.set_response(PROMPT_KEYS["moments"], {"card_plan": []})
        artifacts = MomentPlanner(mock_gateway, prompt_registry)(make_context(through=3))
        assert artifacts.card_plan == []
        assert artifacts.hook_pack_count == 3
        assert artifacts.release_mode == "hybrid"
        assert "empty_card_plan" in artifacts.warnings

    def test_invalid_release_mode(self, mock_gateway, prompt_registry):
        mock_gateway.set_response(
            PROMPT_KEYS["moments"], {**MOMENTS_RESPONSE, "release_mode": "weekly"}
        )
        artifacts = MomentPlanner(mock_gateway, prompt_registry)(make_context(through=3))
        assert artifacts.release_mode == "hybrid"
        assert "malformed:release_mode" in artifacts.warnings

    def _plan_with(self, index, **changes):
        cards = [dict(c) for c in MOMENTS_RESPONSE["card_plan"]]
        cards[index].update(changes)
        return {**MOMENTS_RESPONSE, "card_plan": cards}

    def test_null_field_in_one_card(self, mock_gateway, prompt_registry):
        mock_gateway.set_response(PROMPT_KEYS["moments"], self._plan_with(2, imagePrompt=None))
        artifacts = MomentPlanner(mock_gateway, prompt_registry)(make_context(through=3))

        assert artifacts.card_count == 3
        assert artifacts.card_plan[2].title == "The Tide"
        assert artifacts.card_plan[2].image_prompt == ""
        assert artifacts.card_plan[0].image_prompt.startswith("A ferry")
        assert artifacts.warnings == ["malformed:card_plan[2].imagePrompt"]

    def test_string_day_index_uses_position(self, mock_gateway, prompt_registry):
        mock_gateway.set_response(PROMPT_KEYS["moments"], self._plan_with(1, dayIndex="1"))
        artifacts = MomentPlanner(mock_gateway, prompt_registry)(make_context(through=3))

        assert artifacts.card_count == 3
        assert [c.day_index for c in artifacts.card_plan] == [3, 2, 2]
        assert artifacts.card_plan[1].title == "Last Manifest"
        assert "malformed:card_plan[1].dayIndex" in artifacts.warnings


class TestCardEntry:
    """Mapping of planned cards."""

    def test_camel_case_keys(self):
        card = _card_entry({
            "dayIndex": 4, "title": "T", "sceneText": "S", "imagePrompt": "I", "captions": ["c"],
        }, 0)
        assert (card.day_index, card.scene_text, card.image_prompt) == (4, "S", "I")
        assert card.captions == ["c"]

    def test_missing_day_index_uses_position(self):
        assert _card_entry({"title": "T"}, 2).day_index == 3

    def test_boolean_day_index_rejected(self):
        assert _card_entry({"dayIndex": True}, 0).day_index == 1

    def test_blank_title(self):
        assert _card_entry({"dayIndex": 5, "title": "  "}, 0).title == "Day 5"
