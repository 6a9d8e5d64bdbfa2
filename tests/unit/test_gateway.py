"""
Tests for the content-generation gateway.
"""

import pytest

from storyverse.llm.gateway import (
    GenerationError, LLMGateway, MockGateway, ParseError, TransportError,
    create_gateway, load_schema,
)


class TestRenderPrompt:
    """Tests for placeholder rendering."""

    def test_replaces_placeholders(self, mock_gateway):
        rendered = mock_gateway._render_prompt("Hello {{name}}, {{name}}!", {"name": "Ada"})
        assert rendered == "Hello Ada, Ada!"

    def test_serializes_structures(self, mock_gateway):
        rendered = mock_gateway._render_prompt("Data: {{items}}", {"items": ["a", "b"]})
        assert '"a"' in rendered
        assert '"b"' in rendered

    def test_unknown_placeholders_are_left(self, mock_gateway):
        rendered = mock_gateway._render_prompt("{{missing}}", {})
        assert rendered == "{{missing}}"


class TestParseContent:
    """Tests for turning raw model text into a JSON object."""

    def test_plain_json(self, mock_gateway):
        assert mock_gateway._parse_content('{"a": 1}') == {"a": 1}

    def test_fenced_json(self, mock_gateway):
        raw = 'Here you go:\n```json\n{"title": "X"}\n```'
        assert mock_gateway._parse_content(raw) == {"title": "X"}

    def test_embedded_object(self, mock_gateway):
        raw = 'Sure! {"title": "X"} Hope that helps.'
        assert mock_gateway._parse_content(raw) == {"title": "X"}

    def test_empty_is_parse_error(self, mock_gateway):
        with pytest.raises(ParseError):
            mock_gateway._parse_content("   ")

    def test_array_is_parse_error(self, mock_gateway):
        with pytest.raises(ParseError):
            mock_gateway._parse_content("[1, 2, 3]")

    def test_prose_is_parse_error(self, mock_gateway):
        with pytest.raises(ParseError):
            mock_gateway._parse_content("I cannot help with that.")


class TestMockGateway:
    """Tests for the mock gateway used throughout the suite."""

    def test_matches_rendered_prompt(self, mock_gateway):
        mock_gateway.set_response("TASK: A", {"answer": 1})
        response = mock_gateway.run_structured("TASK: A\n{{text}}", {"text": "x"}, {})
        assert response.content == {"answer": 1}
        assert response.model == "mock"

    def test_first_matching_key_wins(self, mock_gateway):
        mock_gateway.set_response("TASK", {"which": "first"})
        mock_gateway.set_response("TASK: B", {"which": "second"})
        response = mock_gateway.run_structured("TASK: B", {}, {})
        assert response.content == {"which": "first"}

    def test_raw_text_response(self, mock_gateway):
        mock_gateway.set_response("TASK", '```json\n{"ok": true}\n```')
        response = mock_gateway.run_structured("TASK", {}, {})
        assert response.content == {"ok": True}

    def test_unparsable_raw_text(self, mock_gateway):
        mock_gateway.set_response("TASK", "no json here")
        with pytest.raises(ParseError):
            mock_gateway.run_structured("TASK", {}, {})

    def test_injected_error(self, mock_gateway):
        mock_gateway.set_error("TASK", TransportError("quota exceeded"))
        with pytest.raises(TransportError, match="quota"):
            mock_gateway.run_structured("TASK", {}, {})

    def test_unmatched_prompt_is_transport_error(self, mock_gateway):
        with pytest.raises(TransportError):
            mock_gateway.run_structured("nothing configured", {}, {})

    def test_call_log(self, mock_gateway):
        mock_gateway.set_response("TASK", {})
        mock_gateway.run_structured("TASK {{x}}", {"x": "42"}, {"type": "object"})
        assert len(mock_gateway.call_log) == 1
        call = mock_gateway.call_log[0]
        assert call["rendered"] == "TASK 42"
        assert call["input_data"] == {"x": "42"}
        assert mock_gateway.calls_matching("TASK 42") == [call]

    def test_strict_schema_validation(self, mock_gateway):
        mock_gateway.set_response("TASK", {"count": "three"})
        schema = {"type": "object", "properties": {"count": {"type": "integer"}}}
        with pytest.raises(ParseError):
            mock_gateway.run_structured("TASK", {}, schema, {"strict": True})

    def test_lenient_by_default(self, mock_gateway):
        mock_gateway.set_response("TASK", {"count": "three"})
        schema = {"type": "object", "properties": {"count": {"type": "integer"}}}
        response = mock_gateway.run_structured("TASK", {}, schema)
        assert response.content == {"count": "three"}


class TestErrors:
    """Tests for the error hierarchy."""

    def test_hierarchy(self):
        assert issubclass(TransportError, GenerationError)
        assert issubclass(ParseError, GenerationError)

    def test_retryable_flag(self):
        assert TransportError("x", retryable=True).retryable
        assert not ParseError("x").retryable


class TestFactories:
    """Tests for gateway and schema helpers."""

    def test_create_mock_gateway(self):
        gateway = create_gateway("mock")
        assert isinstance(gateway, MockGateway)
        assert isinstance(gateway, LLMGateway)

    def test_unknown_provider(self):
        with pytest.raises(ValueError):
            create_gateway("carrier-pigeon")

    def test_claude_gateway_requires_key(self):
        with pytest.raises(ValueError):
            create_gateway("claude", api_key=None)

    @pytest.mark.parametrize("retries", [0, -1])
    def test_claude_gateway_needs_one_attempt(self, retries):
        with pytest.raises(ValueError, match="max_retries"):
            create_gateway("claude", api_key="sk-ant-test", max_retries=retries)

    @pytest.mark.parametrize("name", [
        "read_structure_output",
        "identify_story_output",
        "guardrails_output",
        "extract_world_output",
        "shape_moments_output",
        "character_persona_output",
    ])
    def test_bundled_schemas_load(self, name):
        schema = load_schema(name)
        assert schema["type"] == "object"
        assert "properties" in schema

    def test_missing_schema(self):
        with pytest.raises(FileNotFoundError):
            load_schema("does_not_exist")
