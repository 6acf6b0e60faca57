"""Tests for quality analysis and cleaning."""

import pytest

from game_insights.cognitive.schema_analyzer import SchemaAnalyzer
from game_insights.discovery.data_cleaner import (
    CleaningPlan,
    CleaningStrategy,
    DataCleaner,
    QualityIssue,
    row_fingerprint,
)
from game_insights.ingestion.table import Table


def _analyze(records):
    table = Table.from_records(records)
    meanings = SchemaAnalyzer().analyze_table(table)
    return table, DataCleaner().analyze(table, meanings)


def _issues(plan, issue_type):
    return [i for i in plan.issues if i.issue_type == issue_type]


class TestRowFingerprint:
    def test_key_order_irrelevant(self):
        assert row_fingerprint({"a": 1, "b": "x"}) == row_fingerprint({"b": "x", "a": 1})

    def test_value_types_distinguished(self):
        assert row_fingerprint({"a": 1}) != row_fingerprint({"a": "1"})

    def test_length(self):
        assert len(row_fingerprint({"a": 1})) == 16


class TestAnalyze:
    def test_whitespace_issue(self):
        _, plan = _analyze([
            {"user_id": "u1", "country": " US "},
            {"user_id": "u2", "country": "UK"},
        ])
        issues = [i for i in _issues(plan, "whitespace") if i.column == "country"]
        assert len(issues) == 1
        assert issues[0].affected_rows == 1
        assert issues[0].affected_rows_percent == 50.0
        assert issues[0].suggested_fix.action == "trim_whitespace"

    def test_missing_required_column_removes_rows(self):
        _, plan = _analyze([{"user_id": "u1"}, {"user_id": None}, {"user_id": "u3"}])
        issue = _issues(plan, "missing_values")[0]
        assert issue.column == "user_id"
        assert issue.affected_rows == 1
        assert issue.severity == "high"
        assert issue.suggested_fix.action == "remove_rows"

    def test_missing_optional_column_filled(self):
        _, plan = _analyze([{"platform": "ios"}, {"platform": ""}] + [{"platform": "ios"}] * 30)
        issue = _issues(plan, "missing_values")[0]
        assert issue.severity == "low"
        assert issue.suggested_fix.action == "fill_mode"

    def test_invalid_numbers(self):
        _, plan = _analyze([{"revenue": 1.0}, {"revenue": "4.99"}, {"revenue": -2}])
        issue = _issues(plan, "invalid_type")[0]
        assert issue.column == "revenue"
        assert issue.affected_rows == 2
        assert issue.suggested_fix.action == "parse_number"

    def test_outliers(self):
        _, plan = _analyze([{"score": 10} for _ in range(20)] + [{"score": 1000}])
        issue = _issues(plan, "outliers")[0]
        assert issue.affected_rows == 1
        assert issue.examples == [1000.0]
        assert issue.suggested_fix.action == "cap_outliers"

    def test_outliers_need_enough_values(self):
        _, plan = _analyze([{"score": 10}] * 5 + [{"score": 1000}])
        assert not _issues(plan, "outliers")

    def test_duplicates(self):
        _, plan = _analyze([{"user_id": "u1", "level": 2}] * 3 + [{"user_id": "u2", "level": 2}])
        issue = _issues(plan, "duplicates")[0]
        assert issue.column == "*"
        assert issue.affected_rows == 2

    def test_clean_table_has_no_issues(self):
        _, plan = _analyze([{"user_id": "u1", "level": 1}, {"user_id": "u2", "level": 2}])
        assert plan.issues == []
        assert plan.estimated_clean_percentage == 100.0

    def test_estimate_never_exceeds_row_count(self):
        _, plan = _analyze([
            {"user_id": None, "country": " US ", "platform": ""},
            {"user_id": None, "country": " DE ", "platform": ""},
        ])
        assert plan.estimated_rows_affected <= 2
        assert 0.0 <= plan.estimated_clean_percentage <= 100.0

    def test_no_action_fixes_not_suggested(self):
        _, plan = _analyze([{"country": "usa"}, {"country": "DE"}])
        assert _issues(plan, "invalid_type")[0].suggested_fix.action == "no_action"
        assert all(a.action != "no_action" for a in plan.suggested_actions)

    def test_empty_table(self):
        plan = DataCleaner().analyze(Table(columns=["a"], rows=[]), [])
        assert plan.issues == []


class TestClean:
    def test_untyped_column_whitespace(self):
        table, plan = _analyze([{"c": " US "}, {"c": "US"}])
        issue = _issues(plan, "whitespace")[0]
        assert issue.affected_rows == 1
        assert issue.affected_rows_percent == 50.0
        result = DataCleaner().clean(table, plan)
        assert [r["c"] for r in result.cleaned.rows] == ["US", "US"]

    def test_trim_whitespace(self):
        table, plan = _analyze([
            {"user_id": "u1", "country": " US "},
            {"user_id": "u2", "country": "UK"},
        ])
        result = DataCleaner().clean(table, plan, approved=["trim_whitespace"])
        assert result.cleaned.rows[0]["country"] == "US"
        assert result.rows_modified == 1
        assert result.rows_removed == 0
        assert result.quality_score_after >= result.quality_score_before

    def test_input_table_untouched(self):
        table, plan = _analyze([{"user_id": "u1", "country": " US "}, {"user_id": "u2", "country": "UK"}])
        DataCleaner().clean(table, plan)
        assert table.rows[0]["country"] == " US "

    def test_remove_rows_and_duplicates(self):
        table, plan = _analyze(
            [{"user_id": "u1", "level": 1}] * 2 + [{"user_id": None, "level": 2}, {"user_id": "u2", "level": 3}]
        )
        result = DataCleaner().clean(table, plan)
        assert result.rows_removed == 2
        assert [r["user_id"] for r in result.cleaned.rows] == ["u1", "u2"]
        actions = {a.action for a in result.applied_actions}
        assert actions == {"remove_rows", "remove_duplicates"}

    def test_parse_number(self):
        table, plan = _analyze([{"revenue": 1.0}, {"revenue": "4.99"}, {"revenue": "3"}])
        result = DataCleaner().clean(table, plan, approved=["parse_number"])
        values = [r["revenue"] for r in result.cleaned.rows]
        assert values == [1.0, 4.99, 3]

    def test_fill_mode(self):
        table, plan = _analyze([{"platform": "ios"}, {"platform": "ios"}, {"platform": None}])
        result = DataCleaner().clean(table, plan)
        assert result.cleaned.rows[2]["platform"] == "ios"
        assert result.quality_score_after == 100

    def test_cap_outliers(self):
        table, plan = _analyze([{"score": 10} for _ in range(20)] + [{"score": 1000}])
        result = DataCleaner().clean(table, plan)
        assert result.cleaned.rows[-1]["score"] < 1000
        assert result.cleaned.rows[0]["score"] == 10

    def test_unapproved_actions_skipped(self):
        table, plan = _analyze([{"user_id": "u1", "country": " US "}, {"user_id": "u2", "country": "UK"}])
        result = DataCleaner().clean(table, plan, approved=[])
        assert result.applied_actions == []
        assert result.cleaned.rows == table.rows

    def test_fill_value_from_params(self):
        table = Table.from_records([{"platform": "ios"}, {"platform": None}])
        issue = QualityIssue(
            column="platform", issue_type="missing_values", severity="high",
            affected_rows=1, affected_rows_percent=50.0, examples=[],
            suggested_fix=CleaningStrategy("fill_value", "Fill", {"value": "unknown"}),
        )
        plan = CleaningPlan(issues=[issue], suggested_actions=[], estimated_rows_affected=1,
                            estimated_clean_percentage=50.0)
        result = DataCleaner().clean(table, plan)
        assert result.cleaned.rows[1]["platform"] == "unknown"

    def test_fills_use_full_table_after_required_removal(self):
        table, plan = _analyze([
            {"user_id": None, "a": "x", "b": "y", "c": "z"},
            {"user_id": "u1", "a": None, "b": None, "c": None},
        ])
        fills = {i.column: i.suggested_fix for i in _issues(plan, "missing_values") if i.column != "user_id"}
        assert {col: fix.params["value"] for col, fix in fills.items()} == {"a": "x", "b": "y", "c": "z"}

        result = DataCleaner().clean(table, plan)
        assert result.cleaned.rows == [{"user_id": "u1", "a": "x", "b": "y", "c": "z"}]
        assert result.rows_removed == 1
        assert result.quality_score_before == 50
        assert result.quality_score_after == 100

    def test_removal_that_lowers_score_skipped(self):
        table, plan = _analyze([
            {"user_id": None, "a": "x", "b": "y", "c": "z"},
            {"user_id": "u1", "a": None, "b": None, "c": None},
        ])
        result = DataCleaner().clean(table, plan, approved=["remove_rows"])
        assert result.rows_removed == 0
        assert result.applied_actions == []
        assert result.quality_score_after == result.quality_score_before

    def test_never_removes_every_row(self):
        table, plan = _analyze([{"user_id": None, "level": 3}])
        result = DataCleaner().clean(table, plan)
        assert result.cleaned.rows == [{"user_id": None, "level": 3}]


class TestQualityScore:
    def test_scores(self):
        assert DataCleaner.calculate_quality_score([]) == 0
        assert DataCleaner.calculate_quality_score([{"a": 1, "b": "x"}]) == 100
        assert DataCleaner.calculate_quality_score([{"a": None, "b": "x"}]) == 50
        assert DataCleaner.calculate_quality_score([{"a": " x "}]) == 80

    @pytest.mark.parametrize(
        "records",
        [
            [
                {"user_id": None, "a": "x", "b": "y", "c": "z"},
                {"user_id": "u1", "a": None, "b": None, "c": None},
            ],
            [{"user_id": "u1", "platform": "ios"}] * 2 + [
                {"user_id": None, "platform": None},
                {"user_id": "u2", "platform": " android "},
            ],
            [{"user_id": None, "note": None}, {"user_id": "u1", "note": None}],
            [{"user_id": "u1", "revenue": "4.99", "country": " US "}] * 3 + [{"user_id": "", "revenue": None}],
            [{"user_id": None, "level": 3}],
        ],
    )
    @pytest.mark.parametrize("approved", ["all", ["remove_rows"], ["remove_duplicates", "fill_mode"]])
    def test_cleaning_never_lowers_score(self, records, approved):
        table, plan = _analyze(records)
        result = DataCleaner().clean(table, plan, approved=approved)
        assert result.quality_score_after >= result.quality_score_before
