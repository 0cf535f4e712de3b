"""
Unit tests for JSON field decoding.

Tests cover:
- Text, bytes and already decoded values
- Malformed text and type mismatches falling back to the default
- Defaults never shared between calls
- Row decoding with and without only_present
"""

from core.json_fields import decode_fields, decode_input, load_json


class TestLoadJson:
    """Tests for load_json()."""

    def test_none_returns_default(self):
        assert load_json(None, {"x": 0}) == {"x": 0}

    def test_default_is_copied(self):
        """Mutating the returned value must not change the default."""
        default = {"items": []}
        value = load_json(None, default)
        value["items"].append(1)
        assert default == {"items": []}

    def test_parses_text(self):
        assert load_json('{"x": 10, "y": 20}', {}) == {"x": 10, "y": 20}

    def test_parses_bytes(self):
        assert load_json(b'["a", "b"]', []) == ["a", "b"]

    def test_passes_decoded_values_through(self):
        value = {"width": 40}
        assert load_json(value, {}) is value

    def test_malformed_text_returns_default(self):
        assert load_json("{not json", []) == []

    def test_type_mismatch_returns_default(self):
        """A list where an object is expected is rejected."""
        assert load_json("[1, 2]", {}) == {}
        assert load_json({"a": 1}, []) == []

    def test_scalar_default_accepts_any_type(self):
        assert load_json('"text"', None) == "text"
        assert load_json("[1]", None) == [1]


class TestDecodeFields:
    """Tests for decode_fields()."""

    def test_fills_missing_fields_with_defaults(self):
        row = {"id": "1", "buttons": '[{"id": "ok"}]'}
        decoded = decode_fields(row, {"buttons": [], "zones": []})
        assert decoded == {"id": "1", "buttons": [{"id": "ok"}], "zones": []}

    def test_only_present_leaves_missing_fields_out(self):
        row = {"id": "1", "position": '{"x": 1, "y": 2}'}
        decoded = decode_fields(row, {"position": {}, "tags": []}, only_present=True)
        assert decoded == {"id": "1", "position": {"x": 1, "y": 2}}

    def test_does_not_modify_row(self):
        row = {"tags": '["a"]'}
        decode_fields(row, {"tags": []})
        assert row == {"tags": '["a"]'}


class TestDecodeInput:
    """Tests for decode_input()."""

    def test_parses_only_listed_text_fields(self):
        data = {"position": '{"x": 5}', "name": "{literal}"}
        prepared = decode_input(data, ["position"])
        assert prepared == {"position": {"x": 5}, "name": "{literal}"}

    def test_malformed_text_becomes_none(self):
        assert decode_input({"size": "oops"}, ["size"]) == {"size": None}

    def test_structures_untouched(self):
        data = {"tags": ["a"]}
        assert decode_input(data, ["tags"]) == {"tags": ["a"]}
