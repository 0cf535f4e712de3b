"""
Unit tests for statement building and row preparation in BaseRepository.

Tests cover:
- Generic filters translated to WHERE clauses
- Sorting with fallback to the default column
- Pagination (offset only together with limit)
- Insert/update preparation
- DeletionCheck serialization
"""

from repositories.base_repository import DeletionCheck
from repositories.device_repository import DeviceRepository
from repositories.diagnostic_step_repository import DiagnosticStepRepository


def sql(stmt) -> str:
    return str(stmt.compile(compile_kwargs={"literal_binds": True}))


class TestBuildWhereClauses:
    """Tests for build_where_clauses()."""

    def test_no_filters(self):
        assert DeviceRepository.build_where_clauses(None) == []

    def test_known_filters(self):
        clauses = DeviceRepository.build_where_clauses(
            {"id": "d1", "is_active": True, "status": "active"}
        )
        assert len(clauses) == 3

    def test_false_is_a_filter_value(self):
        """is_active=False filters archived rows instead of being ignored."""
        clauses = DeviceRepository.build_where_clauses({"is_active": False})
        assert len(clauses) == 1

    def test_search_over_search_fields(self):
        clauses = DeviceRepository.build_where_clauses({"search": "openbox"})
        assert len(clauses) == 1
        compiled = sql(clauses[0])
        for field in DeviceRepository.search_fields:
            assert f"devices.{field}" in compiled

    def test_search_fields_override(self):
        clauses = DeviceRepository.build_where_clauses({"search": "x", "search_fields": ["brand"]})
        compiled = sql(clauses[0])
        assert "devices.brand" in compiled
        assert "devices.description" not in compiled


class TestBuildSelectQuery:
    """Tests for build_select_query()."""

    def test_default_sort_is_created_at_desc(self):
        compiled = sql(DeviceRepository.build_select_query())
        assert "ORDER BY devices.created_at DESC" in compiled

    def test_sort_ascending(self):
        compiled = sql(DeviceRepository.build_select_query(sort_by="name", sort_order="asc"))
        assert "ORDER BY devices.name ASC" in compiled

    def test_unknown_sort_column_falls_back(self):
        compiled = sql(DeviceRepository.build_select_query(sort_by="name; DROP TABLE devices"))
        assert "ORDER BY devices.created_at DESC" in compiled

    def test_repository_default_sort(self):
        compiled = sql(DiagnosticStepRepository.build_select_query(sort_order="ASC"))
        assert "ORDER BY diagnostic_steps.step_number ASC" in compiled

    def test_limit_and_offset(self):
        compiled = sql(DeviceRepository.build_select_query(limit=10, offset=20))
        assert "LIMIT 10" in compiled
        assert "OFFSET 20" in compiled

    def test_offset_ignored_without_limit(self):
        compiled = sql(DeviceRepository.build_select_query(offset=20))
        assert "OFFSET" not in compiled


class TestRowPreparation:
    """Tests for prepare_for_insert() and prepare_for_update()."""

    def test_insert_adds_id_timestamps_and_active_flag(self):
        prepared = DeviceRepository.prepare_for_insert({"name": "OpenBox S4"})
        assert prepared["id"]
        assert prepared["created_at"] == prepared["updated_at"]
        assert prepared["is_active"] is True

    def test_insert_keeps_given_values(self):
        prepared = DeviceRepository.prepare_for_insert({"id": "dev_1", "is_active": False})
        assert prepared["id"] == "dev_1"
        assert prepared["is_active"] is False

    def test_update_drops_immutable_columns(self):
        prepared = DeviceRepository.prepare_for_update(
            {"id": "dev_1", "created_at": "x", "name": "New"}
        )
        assert set(prepared) == {"name", "updated_at"}

    def test_step_insert_decodes_json_text(self):
        prepared = DiagnosticStepRepository.prepare_for_insert(
            {"title": "Шаг", "button_position": '{"x": 10, "y": 20}'}
        )
        assert prepared["button_position"] == {"x": 10, "y": 20}


class TestDeletionCheck:
    """Tests for DeletionCheck.to_dict()."""

    def test_allowed(self):
        assert DeletionCheck(True).to_dict() == {"can_delete": True}

    def test_blocked_with_suggestion(self):
        check = DeletionCheck(False, "Есть проблемы", "Архивируйте")
        assert check.to_dict() == {
            "can_delete": False,
            "reason": "Есть проблемы",
            "suggestion": "Архивируйте",
        }
