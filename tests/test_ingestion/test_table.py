"""Tests for the in-memory table model and schema builder."""

from datetime import datetime

import pytest

from game_insights.ingestion.table import (
    InvalidTableError,
    Table,
    build_schema,
    detect_value_type,
)


class TestFromRecords:
    def test_columns_in_first_seen_order(self):
        table = Table.from_records([{"a": 1, "b": 2}, {"c": 3, "a": 4}])
        assert table.columns == ["a", "b", "c"]

    def test_missing_keys_filled_with_none(self):
        table = Table.from_records([{"a": 1}, {"b": 2}])
        assert table.rows[0] == {"a": 1, "b": None}
        assert table.rows[1] == {"a": None, "b": 2}

    def test_explicit_columns_restrict_keys(self):
        table = Table.from_records([{"a": 1, "b": 2}], columns=["b"])
        assert table.rows == [{"b": 2}]

    def test_row_count_in_metadata(self):
        table = Table.from_records([{"a": 1}, {"a": 2}], source="csv")
        assert table.row_count == 2
        assert table.metadata.row_count == 2
        assert table.metadata.source == "csv"


class TestFromDict:
    def test_reads_payload(self):
        table = Table.from_dict({
            "columns": ["user_id"],
            "rows": [{"user_id": "u1"}],
            "metadata": {"source": "sheet", "fetchedAt": "2024-01-01"},
        })
        assert table.columns == ["user_id"]
        assert table.metadata.source == "sheet"
        assert table.metadata.fetched_at == "2024-01-01"
        assert table.metadata.row_count == 1

    def test_missing_metadata(self):
        table = Table.from_dict({"columns": ["a"], "rows": []})
        assert table.metadata.source == "unknown"
        assert table.row_count == 0


class TestDerive:
    def test_tags_source_and_keeps_columns(self):
        table = Table.from_records([{"a": 1}, {"a": 2}], source="upload")
        derived = table.derive(table.rows[:1], "sampled")
        assert derived.columns == ["a"]
        assert derived.row_count == 1
        assert derived.metadata.source == "upload (sampled)"
        assert table.row_count == 2


class TestValidate:
    def test_valid_table_passes(self):
        Table.from_records([{"a": 1}]).validate()

    def test_no_columns(self):
        with pytest.raises(InvalidTableError):
            Table(columns=[], rows=[{}]).validate()

    def test_no_rows(self):
        with pytest.raises(InvalidTableError):
            Table(columns=["a"], rows=[]).validate()

    def test_duplicate_columns(self):
        with pytest.raises(InvalidTableError, match="duplicate"):
            Table(columns=["a", "a"], rows=[{"a": 1}]).validate()

    def test_ragged_row(self):
        table = Table(columns=["a", "b"], rows=[{"a": 1, "b": 2}, {"a": 1}])
        with pytest.raises(InvalidTableError, match="row 1"):
            table.validate()

    def test_non_mapping_row(self):
        with pytest.raises(InvalidTableError):
            Table(columns=["a"], rows=[[1]]).validate()

    def test_is_value_error(self):
        assert issubclass(InvalidTableError, ValueError)


class TestDetectValueType:
    def test_primitives(self):
        assert detect_value_type(None) == "unknown"
        assert detect_value_type(True) == "boolean"
        assert detect_value_type(3) == "number"
        assert detect_value_type(2.5) == "number"
        assert detect_value_type("hello") == "string"

    def test_dates(self):
        assert detect_value_type(datetime(2024, 1, 1)) == "date"
        assert detect_value_type("2024-01-15") == "date"
        assert detect_value_type("2024-01-15T10:00:00Z") == "date"

    def test_dash_string_that_is_not_a_date(self):
        assert detect_value_type("not-a-date") == "string"


class TestBuildSchema:
    def test_type_from_first_present_value(self):
        table = Table.from_records([
            {"score": None, "name": ""},
            {"score": 10, "name": "bob"},
        ])
        schema = {c.name: c for c in build_schema(table)}
        assert schema["score"].type == "number"
        assert schema["name"].type == "string"
        assert schema["score"].nullable is True

    def test_uses_only_first_ten_rows(self):
        rows = [{"x": None} for _ in range(10)] + [{"x": 5}]
        schema = build_schema(Table.from_records(rows))
        assert schema[0].type == "unknown"
        assert len(schema[0].sample_values) == 10

    def test_not_nullable_when_all_present(self):
        schema = build_schema(Table.from_records([{"x": 1}, {"x": 2}]))
        assert schema[0].nullable is False
