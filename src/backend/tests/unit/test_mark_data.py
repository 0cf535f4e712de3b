"""
Unit tests for TV interface mark data handling.

Tests cover:
- Defaults of a new mark
- Falsy numeric values kept as given
- Enum validation
- JSON normalization of stored rows
"""

import pytest

from repositories.tv_interface_mark_repository import (
    DEFAULT_COLOR,
    TVInterfaceMarkRepository,
    TVInterfaceMarkSimplifiedRepository,
)


def minimal_mark(**overrides) -> dict:
    data = {"tv_interface_id": "tv_1", "name": "  Кнопка OK  ", "position": {"x": 10, "y": 20}}
    data.update(overrides)
    return data


class TestBuildMarkData:
    """Tests for build_mark_data()."""

    def test_defaults(self):
        mark = TVInterfaceMarkRepository.build_mark_data(minimal_mark())

        assert mark["name"] == "Кнопка OK"
        assert mark["mark_type"] == "point"
        assert mark["shape"] == "circle"
        assert mark["size"] == {"width": 20, "height": 20}
        assert mark["color"] == DEFAULT_COLOR
        assert mark["border_color"] == DEFAULT_COLOR
        assert mark["border_width"] == 2
        assert mark["opacity"] == 0.8
        assert mark["animation"] == "none"
        assert mark["animation_duration"] == 1000
        assert mark["priority"] == "normal"
        assert mark["is_clickable"] is True
        assert mark["is_visible"] is True
        assert mark["step_id"] is None
        assert mark["metadata"] == {}
        assert mark["tags"] == []

    def test_zero_values_are_kept(self):
        """Zero opacity or order is a value, not a missing field."""
        mark = TVInterfaceMarkRepository.build_mark_data(
            minimal_mark(opacity=0, border_width=0, display_order=0, animation_delay=0)
        )
        assert mark["opacity"] == 0
        assert mark["border_width"] == 0
        assert mark["display_order"] == 0

    def test_false_flags_are_kept(self):
        mark = TVInterfaceMarkRepository.build_mark_data(
            minimal_mark(is_clickable=False, is_visible=False, is_active=False)
        )
        assert mark["is_clickable"] is False
        assert mark["is_visible"] is False
        assert mark["is_active"] is False

    def test_default_size_not_shared(self):
        first = TVInterfaceMarkRepository.build_mark_data(minimal_mark())
        first["size"]["width"] = 99
        second = TVInterfaceMarkRepository.build_mark_data(minimal_mark())
        assert second["size"]["width"] == 20


class TestValidateEnums:
    """Tests for validate_enums()."""

    def test_valid_values(self):
        TVInterfaceMarkRepository.validate_enums(
            {"mark_type": "zone", "shape": "polygon", "animation": "pulse", "priority": "critical"}
        )

    def test_missing_values_allowed(self):
        TVInterfaceMarkRepository.validate_enums({})

    @pytest.mark.parametrize(
        "field,value",
        [("mark_type", "line"), ("shape", "star"), ("animation", "spin"), ("priority", "urgent")],
    )
    def test_unknown_value(self, field, value):
        with pytest.raises(ValueError, match=f"Недопустимое значение {field}"):
            TVInterfaceMarkRepository.validate_enums({field: value})


class TestNormalizeMarkData:
    """Tests for normalize_mark_data()."""

    def test_decodes_text_fields(self):
        row = {"id": "tim_1", "position": '{"x": 1, "y": 2}', "tags": '["ok"]'}
        normalized = TVInterfaceMarkRepository.normalize_mark_data(row)
        assert normalized == {"id": "tim_1", "position": {"x": 1, "y": 2}, "tags": ["ok"]}

    def test_malformed_position(self):
        assert TVInterfaceMarkRepository.normalize_mark_data({"position": "{"})["position"] == {}

    def test_simplified_position_default(self):
        normalized = TVInterfaceMarkSimplifiedRepository.normalize_mark_data({"position": None})
        assert normalized["position"] == {"x": 0, "y": 0}

    def test_none(self):
        assert TVInterfaceMarkRepository.normalize_mark_data(None) is None
