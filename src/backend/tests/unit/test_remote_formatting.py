"""
Unit tests for remote validation and response formatting.

Tests cover:
- Required fields on create only
- Layout and JSON shape validation
- JSON decoding of rows and lists of rows
- usage_count coercion
"""

from repositories.remote_repository import RemoteRepository


class TestValidateData:
    """Tests for RemoteRepository.validate_data()."""

    def test_valid(self):
        data = {"name": "RC-1", "manufacturer": "OpenBox", "model": "S4", "layout": "compact"}
        assert RemoteRepository.validate_data(data) == []

    def test_required_fields_on_create(self):
        errors = RemoteRepository.validate_data({})
        assert "Название пульта обязательно" in errors
        assert "Производитель обязателен" in errors
        assert "Модель обязательна" in errors

    def test_required_fields_not_checked_on_update(self):
        assert RemoteRepository.validate_data({"color_scheme": "light"}, is_update=True) == []

    def test_unknown_layout(self):
        errors = RemoteRepository.validate_data({"layout": "round"}, is_update=True)
        assert len(errors) == 1
        assert errors[0].startswith("Layout должен быть одним из")

    def test_dimensions_need_width_and_height(self):
        errors = RemoteRepository.validate_data({"dimensions": {"width": 200}}, is_update=True)
        assert errors == ["Dimensions должен содержать width и height"]

    def test_dimensions_given_as_text(self):
        data = {"dimensions": '{"width": 200, "height": 600}'}
        assert RemoteRepository.validate_data(data, is_update=True) == []

    def test_buttons_must_be_a_list(self):
        errors = RemoteRepository.validate_data({"buttons": '{"id": "power"}'}, is_update=True)
        assert errors == ["Buttons должен быть массивом"]


class TestFormatResponse:
    """Tests for RemoteRepository.format_response()."""

    def test_decodes_json_text(self):
        row = {
            "id": "r1",
            "buttons": '[{"id": "power", "x": 10}]',
            "zones": None,
            "dimensions": '{"width": 200, "height": 600}',
            "metadata": "broken{",
            "usage_count": "7",
        }
        formatted = RemoteRepository.format_response(row)

        assert formatted["buttons"] == [{"id": "power", "x": 10}]
        assert formatted["zones"] == []
        assert formatted["dimensions"] == {"width": 200, "height": 600}
        assert formatted["metadata"] == {}
        assert formatted["usage_count"] == 7

    def test_invalid_usage_count(self):
        assert RemoteRepository.format_response({"usage_count": "many"})["usage_count"] == 0

    def test_list_of_rows(self):
        formatted = RemoteRepository.format_response([{"buttons": "[]"}, {"buttons": None}])
        assert [row["buttons"] for row in formatted] == [[], []]

    def test_idempotent(self):
        row = {"buttons": '[{"id": "ok"}]', "usage_count": 1}
        once = RemoteRepository.format_response(row)
        assert RemoteRepository.format_response(once) == once

    def test_empty_input(self):
        assert RemoteRepository.format_response(None) is None
        assert RemoteRepository.format_response([]) == []
