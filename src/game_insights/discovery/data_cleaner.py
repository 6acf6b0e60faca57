"""Data cleaner — detect quality issues and apply approved repairs.

Two phases: :meth:`DataCleaner.analyze` only inspects
and returns a :class:`CleaningPlan`; :meth:`DataCleaner.clean` applies the
subset of actions the caller approved and returns a new table.
"""

from __future__ import annotations

import hashlib
import json
import logging
import math
import re
import statistics
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Iterable

from game_insights.cognitive.schema_analyzer import ColumnMeaning, SemanticType
from game_insights.ingestion.table import Table
from game_insights.utils.values import is_missing, parse_number, to_datetime, to_number

logger = logging.getLogger(__name__)

CLEANING_ACTIONS = (
    "remove_rows",
    "fill_mean",
    "fill_median",
    "fill_mode",
    "fill_value",
    "trim_whitespace",
    "parse_number",
    "cap_outliers",
    "remove_duplicates",
    "no_action",
)

ROW_REMOVAL_ACTIONS = ("remove_rows", "remove_duplicates")

OUTLIER_SIGMA = 3.0
OUTLIER_MIN_VALUES = 10
MAX_EXAMPLES = 5


@dataclass
class CleaningStrategy:
    action: str
    description: str
    params: dict[str, Any] = field(default_factory=dict)


@dataclass
class QualityIssue:
    column: str  # "*" for table-wide issues
    issue_type: str  # missing_values | invalid_type | whitespace | outliers | duplicates
    severity: str  # low | medium | high
    affected_rows: int
    affected_rows_percent: float
    examples: list[Any]
    suggested_fix: CleaningStrategy


@dataclass
class SuggestedAction:
    column: str
    action: str
    reason: str


@dataclass
class CleaningPlan:
    issues: list[QualityIssue]
    suggested_actions: list[SuggestedAction]
    estimated_rows_affected: int
    estimated_clean_percentage: float


@dataclass
class AppliedAction:
    column: str
    action: str
    rows_affected: int


@dataclass
class CleaningResult:
    cleaned: Table
    applied_actions: list[AppliedAction]
    rows_removed: int
    rows_modified: int
    quality_score_before: int
    quality_score_after: int


@dataclass(frozen=True)
class ValueRule:
    kind: str  # string | number | date
    allow_null: bool = True
    min: float | None = None
    max: float | None = None
    pattern: str | None = None


SEMANTIC_TYPE_RULES: dict[SemanticType, ValueRule] = {
    SemanticType.USER_ID: ValueRule("string", allow_null=False),
    SemanticType.TIMESTAMP: ValueRule("date", allow_null=False),
    SemanticType.REVENUE: ValueRule("number", min=0),
    SemanticType.PRICE: ValueRule("number", min=0),
    SemanticType.LEVEL: ValueRule("number", min=1),
    SemanticType.SCORE: ValueRule("number", min=0),
    SemanticType.RETENTION_DAY: ValueRule("number", min=0, max=1),
    SemanticType.COUNTRY: ValueRule("string", pattern=r"^[A-Z]{2}$"),
    SemanticType.PLATFORM: ValueRule("string"),
}


def row_fingerprint(row: dict) -> str:
    """Canonical hash of a row, independent of key order."""
    payload = [[str(k), repr(v)] for k, v in sorted(row.items(), key=lambda kv: str(kv[0]))]
    return hashlib.sha256(json.dumps(payload).encode()).hexdigest()[:16]


def _is_numeric(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _violates(value: Any, rule: ValueRule) -> bool:
    """True if a non-missing value breaks its semantic rule."""
    if rule.kind == "number":
        num = value if _is_numeric(value) else None
        if num is None:
            return True
        if rule.min is not None and num < rule.min:
            return True
        if rule.max is not None and num > rule.max:
            return True
        return False
    if rule.kind == "date":
        return to_datetime(value) is None
    if rule.kind == "string":
        if not isinstance(value, str):
            return True
        if rule.pattern and not re.match(rule.pattern, value):
            return True
    return False


def _mode(values: list[Any]) -> Any:
    hashable = [v if not isinstance(v, (list, dict)) else repr(v) for v in values]
    return Counter(hashable).most_common(1)[0][0]


class DataCleaner:
    """Quality analysis and repair over a :class:`Table`."""

    def analyze(self, table: Table, meanings: list[ColumnMeaning]) -> CleaningPlan:
        rows = table.rows
        total = len(rows)
        if total == 0:
            return CleaningPlan(issues=[], suggested_actions=[], estimated_rows_affected=0,
                                estimated_clean_percentage=100.0)

        meaning_by_col = {m.column: m for m in meanings}
        issues: list[QualityIssue] = []

        for col in table.columns:
            values = [row.get(col) for row in rows]
            meaning = meaning_by_col.get(col)
            rule = SEMANTIC_TYPE_RULES.get(meaning.semantic_type) if meaning else None

            issue = self._missing_values(col, values, rule, total)
            if issue:
                issues.append(issue)
            if rule:
                issue = self._type_violations(col, values, rule, total)
                if issue:
                    issues.append(issue)
            issue = self._whitespace(col, values, total)
            if issue:
                issues.append(issue)
            issue = self._outliers(col, values, total)
            if issue:
                issues.append(issue)

        issue = self._duplicates(rows, total)
        if issue:
            issues.append(issue)

        suggested = [
            SuggestedAction(column=i.column, action=i.suggested_fix.action, reason=i.suggested_fix.description)
            for i in issues
            if i.suggested_fix.action != "no_action"
        ]
        affected = min(total, sum(i.affected_rows for i in issues))
        logger.info("Quality analysis: %d issues across %d rows", len(issues), total)
        return CleaningPlan(
            issues=issues,
            suggested_actions=suggested,
            estimated_rows_affected=affected,
            estimated_clean_percentage=round((total - affected) / total * 100, 2),
        )

    def clean(
        self,
        table: Table,
        plan: CleaningPlan,
        approved: Iterable[str] | str = "all",
    ) -> CleaningResult:
        """Apply approved actions; the input table is untouched.

        Cell repairs run first, then row removals, each in plan order.  A
        removal that would lower the quality score is skipped, so the
        score after cleaning is never below the score before.
        """
        approved_set = set(CLEANING_ACTIONS) if approved == "all" else set(approved)
        before = self.calculate_quality_score(table.rows)
        rows = [dict(row) for row in table.rows]
        original_count = len(rows)
        modified: set[int] = set()
        applied: list[AppliedAction] = []

        fixes = [
            i for i in plan.issues
            if i.suggested_fix.action in approved_set and i.suggested_fix.action != "no_action"
        ]
        for issue in fixes:
            if issue.suggested_fix.action in ROW_REMOVAL_ACTIONS:
                continue
            count = self._apply_in_place(rows, issue.column, issue.suggested_fix, modified)
            if count:
                applied.append(AppliedAction(column=issue.column, action=issue.suggested_fix.action,
                                             rows_affected=count))

        for issue in fixes:
            action = issue.suggested_fix.action
            if action not in ROW_REMOVAL_ACTIONS:
                continue
            kept = self._remove(rows, issue.column, action)
            count = len(rows) - len(kept)
            if not count:
                continue
            if self.calculate_quality_score(kept) < self.calculate_quality_score(rows):
                logger.info("Skipping %s on %s: it would lower the quality score", action, issue.column)
                continue
            rows = kept
            applied.append(AppliedAction(column=issue.column, action=action, rows_affected=count))

        cleaned = table.derive(rows, "cleaned")
        after = self.calculate_quality_score(rows)
        logger.info(
            "Cleaning applied %d actions: %d rows removed, %d modified",
            len(applied), original_count - len(rows), len(modified),
        )
        return CleaningResult(
            cleaned=cleaned,
            applied_actions=applied,
            rows_removed=original_count - len(rows),
            rows_modified=len(modified),
            quality_score_before=before,
            quality_score_after=after,
        )

    @staticmethod
    def calculate_quality_score(rows: list[dict]) -> int:
        """0-100: empty cells score 0, untrimmed strings 0.8, anything else 1."""
        if not rows:
            return 0
        total = 0
        clean = 0.0
        for row in rows:
            for value in row.values():
                total += 1
                if is_missing(value):
                    continue
                if isinstance(value, str) and value != value.strip():
                    clean += 0.8
                else:
                    clean += 1
        if total == 0:
            return 0
        return round(clean / total * 100)

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    @staticmethod
    def _missing_values(col: str, values: list, rule: ValueRule | None, total: int) -> QualityIssue | None:
        missing = sum(1 for v in values if is_missing(v))
        if not missing:
            return None
        pct = missing / total * 100
        severity = "high" if pct > 20 else "medium" if pct > 5 else "low"
        if rule is not None and not rule.allow_null:
            fix = CleaningStrategy("remove_rows", f"Remove rows missing required {col}")
        else:
            present = [v for v in values if not is_missing(v)]
            params = {"value": _mode(present)} if present else {}
            fix = CleaningStrategy("fill_mode", f"Fill missing {col} with the most common value", params)
        return QualityIssue(
            column=col, issue_type="missing_values", severity=severity,
            affected_rows=missing, affected_rows_percent=round(pct, 2),
            examples=[], suggested_fix=fix,
        )

    @staticmethod
    def _type_violations(col: str, values: list, rule: ValueRule, total: int) -> QualityIssue | None:
        bad = [v for v in values if not is_missing(v) and _violates(v, rule)]
        if not bad:
            return None
        pct = len(bad) / total * 100
        if rule.kind == "number":
            fix = CleaningStrategy("parse_number", f"Convert {col} values to numbers",
                                   {"min": rule.min, "max": rule.max})
        else:
            fix = CleaningStrategy("no_action", f"{col} values do not match the expected {rule.kind} format")
        return QualityIssue(
            column=col, issue_type="invalid_type", severity="high" if pct > 10 else "medium",
            affected_rows=len(bad), affected_rows_percent=round(pct, 2),
            examples=bad[:MAX_EXAMPLES], suggested_fix=fix,
        )

    @staticmethod
    def _whitespace(col: str, values: list, total: int) -> QualityIssue | None:
        padded = [v for v in values if isinstance(v, str) and v and v != v.strip()]
        if not padded:
            return None
        return QualityIssue(
            column=col, issue_type="whitespace", severity="low",
            affected_rows=len(padded), affected_rows_percent=round(len(padded) / total * 100, 2),
            examples=padded[:MAX_EXAMPLES],
            suggested_fix=CleaningStrategy("trim_whitespace", f"Trim leading/trailing whitespace in {col}"),
        )

    @staticmethod
    def _outliers(col: str, values: list, total: int) -> QualityIssue | None:
        nums = [float(v) for v in values if _is_numeric(v) and not math.isnan(v)]
        if len(nums) < OUTLIER_MIN_VALUES:
            return None
        mean = statistics.fmean(nums)
        std = statistics.pstdev(nums)
        if std == 0:
            return None
        outliers = [x for x in nums if abs(x - mean) > OUTLIER_SIGMA * std]
        if not outliers:
            return None
        return QualityIssue(
            column=col, issue_type="outliers", severity="medium",
            affected_rows=len(outliers), affected_rows_percent=round(len(outliers) / total * 100, 2),
            examples=outliers[:MAX_EXAMPLES],
            suggested_fix=CleaningStrategy(
                "cap_outliers", f"Cap {col} at {OUTLIER_SIGMA:g} standard deviations",
                {"mean": mean, "std_dev": std},
            ),
        )

    @staticmethod
    def _duplicates(rows: list[dict], total: int) -> QualityIssue | None:
        seen: set[str] = set()
        dupes = 0
        for row in rows:
            key = row_fingerprint(row)
            if key in seen:
                dupes += 1
            else:
                seen.add(key)
        if not dupes:
            return None
        return QualityIssue(
            column="*", issue_type="duplicates", severity="medium",
            affected_rows=dupes, affected_rows_percent=round(dupes / total * 100, 2),
            examples=[],
            suggested_fix=CleaningStrategy("remove_duplicates", "Remove exact duplicate rows"),
        )

    # ------------------------------------------------------------------
    # Repair
    # ------------------------------------------------------------------

    @staticmethod
    def _remove(rows: list[dict], col: str, action: str) -> list[dict]:
        if action == "remove_rows":
            return [r for r in rows if not is_missing(r.get(col))]
        seen: set[str] = set()
        kept = []
        for r in rows:
            key = row_fingerprint(r)
            if key not in seen:
                seen.add(key)
                kept.append(r)
        return kept

    @staticmethod
    def _apply_in_place(rows: list[dict], col: str, fix: CleaningStrategy, modified: set[int]) -> int:
        """Mutate the working copies; returns the number of changed rows."""
        count = 0

        def _set(row: dict, value: Any) -> None:
            nonlocal count
            if row.get(col) != value or type(row.get(col)) is not type(value):
                row[col] = value
                modified.add(id(row))
                count += 1

        present = [r.get(col) for r in rows if not is_missing(r.get(col))]

        if fix.action == "trim_whitespace":
            for row in rows:
                value = row.get(col)
                if isinstance(value, str) and value != value.strip():
                    _set(row, value.strip())
        elif fix.action == "parse_number":
            for row in rows:
                value = row.get(col)
                if isinstance(value, str):
                    parsed = parse_number(value)
                    if parsed is not None:
                        _set(row, parsed)
        elif fix.action == "cap_outliers":
            mean, std = fix.params["mean"], fix.params["std_dev"]
            low, high = mean - OUTLIER_SIGMA * std, mean + OUTLIER_SIGMA * std
            for row in rows:
                value = row.get(col)
                if _is_numeric(value) and (value < low or value > high):
                    _set(row, min(max(value, low), high))
        elif fix.action in ("fill_mode", "fill_mean", "fill_median", "fill_value"):
            fill = DataCleaner._fill_value(fix, present)
            if fill is None:
                return 0
            for row in rows:
                if is_missing(row.get(col)):
                    _set(row, fill)
        return count

    @staticmethod
    def _fill_value(fix: CleaningStrategy, present: list[Any]) -> Any:
        # analyze() fixes the value from the full table; removals must not shift it
        if "value" in fix.params or fix.action == "fill_value":
            return fix.params.get("value")
        if not present:
            return None
        if fix.action == "fill_mode":
            return _mode(present)
        nums = sorted(n for n in (to_number(v) for v in present) if n is not None)
        if not nums:
            return None
        if fix.action == "fill_mean":
            return statistics.fmean(nums)
        return statistics.median(nums)
