"""
Tests for field-level resolution of generation output.
"""

from storyverse.pipeline.parsing import ResolvedFields, resolve_fields

SCHEMA = {
    "type": "object",
    "properties": {
        "title": {"type": "string"},
        "tags": {"type": "array", "items": {"type": "string"}},
        "count": {"type": "integer"},
    },
}

DEFAULTS = {"title": "Untitled", "tags": ["drama"], "count": 3}


class TestResolveFields:
    """Missing versus malformed fields."""

    def test_all_present(self):
        result = resolve_fields({"title": "X", "tags": ["a"], "count": 1}, SCHEMA, DEFAULTS)
        assert result.values == {"title": "X", "tags": ["a"], "count": 1}
        assert result.complete
        assert result.warnings() == []

    def test_missing_fields_use_defaults(self):
        result = resolve_fields({"title": "X"}, SCHEMA, DEFAULTS)
        assert result.values["tags"] == ["drama"]
        assert result.values["count"] == 3
        assert result.missing == ["tags", "count"]
        assert result.malformed == []
        assert not result.complete

    def test_null_and_empty_string_are_missing(self):
        result = resolve_fields({"title": "", "tags": None, "count": 2}, SCHEMA, DEFAULTS)
        assert result.missing == ["title", "tags"]
        assert result.values["title"] == "Untitled"

    def test_wrong_shape_is_malformed(self):
        result = resolve_fields({"title": "X", "tags": "a, b", "count": "three"}, SCHEMA, DEFAULTS)
        assert result.malformed == ["tags", "count"]
        assert result.values["tags"] == ["drama"]
        assert result.values["count"] == 3
        assert result.warnings() == ["malformed:tags", "malformed:count"]

    def test_falsy_values_are_kept(self):
        """Zero and empty lists are real answers, not omissions."""
        result = resolve_fields({"title": "X", "tags": [], "count": 0}, SCHEMA, DEFAULTS)
        assert result.values["tags"] == []
        assert result.values["count"] == 0
        assert result.complete

    def test_fields_without_schema_are_accepted(self):
        result = resolve_fields({"extra": {"a": 1}}, SCHEMA, {"extra": {}})
        assert result.values["extra"] == {"a": 1}

    def test_extra_content_is_ignored(self):
        result = resolve_fields({"title": "X", "bonus": True}, SCHEMA, {"title": "Untitled"})
        assert result.values == {"title": "X"}

    def test_warning_order(self):
        result = ResolvedFields(values={}, missing=["a"], malformed=["b"])
        assert result.warnings() == ["missing:a", "malformed:b"]


ITEM_SCHEMA = {
    "type": "object",
    "properties": {
        "cards": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {"day": {"type": "integer"}, "title": {"type": "string"}},
            },
        },
        "names": {"type": "array", "items": {"type": "string"}},
    },
}


class TestResolveListItems:
    """Array fields resolve entry by entry."""

    def test_bad_value_in_one_entry_keeps_the_list(self):
        cards = [{"day": 1, "title": "A"}, {"day": "2", "title": "B"}, {"day": 3, "title": None}]
        result = resolve_fields({"cards": cards}, ITEM_SCHEMA, {"cards": []})

        assert result.values["cards"] == [{"day": 1, "title": "A"}, {"title": "B"}, {"day": 3}]
        assert result.malformed == ["cards[1].day", "cards[2].title"]
        assert result.warnings() == ["malformed:cards[1].day", "malformed:cards[2].title"]

    def test_input_entries_are_not_mutated(self):
        cards = [{"day": "x"}]
        resolve_fields({"cards": cards}, ITEM_SCHEMA, {"cards": []})
        assert cards == [{"day": "x"}]

    def test_non_object_entry_is_dropped(self):
        result = resolve_fields({"cards": [{"day": 1}, "loose", 7]}, ITEM_SCHEMA, {"cards": []})
        assert result.values["cards"] == [{"day": 1}]
        assert result.malformed == ["cards[1]", "cards[2]"]

    def test_bad_scalar_entry_is_dropped(self):
        result = resolve_fields({"names": ["Ada", 5, "Marcus"]}, ITEM_SCHEMA, {"names": []})
        assert result.values["names"] == ["Ada", "Marcus"]
        assert result.malformed == ["names[1]"]

    def test_non_list_still_falls_back_whole(self):
        result = resolve_fields({"cards": {"day": 1}}, ITEM_SCHEMA, {"cards": []})
        assert result.values["cards"] == []
        assert result.malformed == ["cards"]
