"""Cohort analysis — group players and compare retention and revenue.

Players are bucketed either by install period (first activity day,
week or month) or by a categorical attribute taken from their first
event (platform, country, acquisition source, or any column).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta

from game_insights.cognitive.schema_analyzer import ColumnMeaning, SemanticType
from game_insights.discovery.metric_calculator import find_column
from game_insights.ingestion.table import Table
from game_insights.utils.values import day_key, days_between, is_missing, to_number

logger = logging.getLogger(__name__)

RETENTION_DAYS = (1, 3, 7, 14, 30)
TREND_THRESHOLD_POINTS = 5.0

DIMENSION_TYPES: dict[str, SemanticType] = {
    "platform": SemanticType.PLATFORM,
    "country": SemanticType.COUNTRY,
    "acquisition_source": SemanticType.ACQUISITION_SOURCE,
}


@dataclass
class CohortDefinition:
    dimension: str  # install_date | platform | country | acquisition_source | custom
    name: str
    granularity: str = "week"  # day | week | month, for install_date
    custom_column: str | None = None


@dataclass
class CohortData:
    value: str
    name: str
    user_count: int
    retention: dict[str, float]
    total_revenue: float
    conversion_rate: float


@dataclass
class CohortComparison:
    best_cohort: str | None = None
    worst_cohort: str | None = None
    best_d7: float | None = None
    worst_d7: float | None = None
    avg_retention: dict[str, float] = field(default_factory=dict)
    insights: list[str] = field(default_factory=list)


@dataclass
class CohortResult:
    definition: CohortDefinition
    cohorts: list[CohortData]
    comparison: CohortComparison
    retention_matrix: dict[str, dict[str, float]]  # cohort -> {"D1": %, ...}
    summary: str


def cohort_label(day: str, granularity: str) -> str:
    """Label an install day as a day, ISO week start, or month cohort."""
    if granularity == "day":
        return day
    if granularity == "month":
        return day[:7]
    d = date.fromisoformat(day)
    return (d - timedelta(days=d.weekday())).isoformat()


class CohortAnalyzer:
    def suggest_dimensions(self, meanings: list[ColumnMeaning]) -> list[CohortDefinition]:
        present = {m.semantic_type for m in meanings}
        suggestions: list[CohortDefinition] = []
        if SemanticType.TIMESTAMP in present:
            suggestions.append(CohortDefinition("install_date", "Weekly Install Cohorts", "week"))
        for dimension, semantic in DIMENSION_TYPES.items():
            if semantic in present:
                suggestions.append(CohortDefinition(dimension, f"{dimension.replace('_', ' ').title()} Cohorts"))
        return suggestions

    def analyze_install_cohorts(
        self,
        table: Table,
        meanings: list[ColumnMeaning],
        granularity: str = "week",
    ) -> CohortResult | None:
        name = {"day": "Daily", "week": "Weekly", "month": "Monthly"}.get(granularity, granularity)
        return self.analyze(table, meanings, CohortDefinition("install_date", f"{name} Install Cohorts", granularity))

    def analyze(
        self,
        table: Table,
        meanings: list[ColumnMeaning],
        definition: CohortDefinition,
    ) -> CohortResult | None:
        """Build cohorts; returns None when user id or timestamp is missing."""
        user_col = find_column(meanings, SemanticType.USER_ID)
        ts_col = find_column(meanings, SemanticType.TIMESTAMP)
        revenue_col = find_column(
            meanings, SemanticType.REVENUE, SemanticType.IAP_REVENUE, SemanticType.PURCHASE_AMOUNT,
        )
        if not user_col or not ts_col:
            return None

        cohort_col: str | None = None
        if definition.dimension == "custom":
            cohort_col = definition.custom_column
        elif definition.dimension in DIMENSION_TYPES:
            cohort_col = find_column(meanings, DIMENSION_TYPES[definition.dimension])
        if definition.dimension != "install_date" and not cohort_col:
            return None

        first_day: dict[str, str] = {}
        cohort_of: dict[str, str] = {}
        activity: dict[str, set[str]] = {}
        revenue: dict[str, float] = {}

        for row in table.rows:
            user = row.get(user_col)
            day = day_key(row.get(ts_col))
            if is_missing(user) or day is None:
                continue
            user = str(user)
            if user not in first_day or day < first_day[user]:
                first_day[user] = day
                if cohort_col:
                    value = row.get(cohort_col)
                    cohort_of[user] = "Unknown" if is_missing(value) else str(value)
                else:
                    cohort_of[user] = cohort_label(day, definition.granularity)
            activity.setdefault(user, set()).add(day)
            if revenue_col:
                amount = to_number(row.get(revenue_col)) or 0.0
                if amount > 0:
                    revenue[user] = revenue.get(user, 0.0) + amount

        if not first_day:
            return None

        reference = max(max(days) for days in activity.values())
        members: dict[str, list[str]] = {}
        for user, value in cohort_of.items():
            members.setdefault(value, []).append(user)

        cohorts: list[CohortData] = []
        for value in sorted(members):
            users = members[value]
            retention: dict[str, float] = {}
            for n in RETENTION_DAYS:
                eligible = [u for u in users if days_between(first_day[u], reference) >= n]
                if not eligible:
                    retention[f"D{n}"] = 0.0
                    continue
                retained = sum(
                    1 for u in eligible
                    if (date.fromisoformat(first_day[u]) + timedelta(days=n)).isoformat() in activity[u]
                )
                retention[f"D{n}"] = round(retained / len(eligible) * 100, 2)

            payers = [u for u in users if revenue.get(u, 0) > 0]
            cohorts.append(CohortData(
                value=value,
                name=f"Cohort {value}",
                user_count=len(users),
                retention=retention,
                total_revenue=round(sum(revenue.get(u, 0.0) for u in users), 2),
                conversion_rate=round(len(payers) / len(users) * 100, 2),
            ))

        comparison = self._compare(cohorts)
        matrix = {c.value: dict(c.retention) for c in cohorts}
        summary = (
            f"Cohort analysis: {len(cohorts)} cohorts over {len(first_day)} players "
            f"grouped by {definition.dimension.replace('_', ' ')}."
        )
        logger.info(summary)
        return CohortResult(
            definition=definition,
            cohorts=cohorts,
            comparison=comparison,
            retention_matrix=matrix,
            summary=summary,
        )

    @staticmethod
    def _compare(cohorts: list[CohortData]) -> CohortComparison:
        comparison = CohortComparison()
        for n in RETENTION_DAYS:
            key = f"D{n}"
            values = [c.retention[key] for c in cohorts if c.retention.get(key, 0) > 0]
            comparison.avg_retention[key] = round(sum(values) / len(values), 2) if values else 0.0

        with_d7 = sorted(
            (c for c in cohorts if c.retention.get("D7", 0) > 0),
            key=lambda c: c.retention["D7"],
            reverse=True,
        )
        if with_d7:
            comparison.best_cohort = with_d7[0].name
            comparison.best_d7 = with_d7[0].retention["D7"]
        if len(with_d7) > 1:
            comparison.worst_cohort = with_d7[-1].name
            comparison.worst_d7 = with_d7[-1].retention["D7"]
            comparison.insights.append(
                f"{comparison.best_cohort} has {comparison.best_d7 - comparison.worst_d7:.1f}% "
                f"higher D7 retention than {comparison.worst_cohort}"
            )

        if len(cohorts) >= 2:
            first, last = cohorts[0], cohorts[-1]
            first_d7, last_d7 = first.retention.get("D7", 0), last.retention.get("D7", 0)
            if first_d7 > 0 and last_d7 > 0 and abs(last_d7 - first_d7) > TREND_THRESHOLD_POINTS:
                trend = last_d7 - first_d7
                word = "improving" if trend > 0 else "declining"
                comparison.insights.append(
                    f"Retention is {word}: {trend:+.1f}% from {first.value} to {last.value}"
                )

        rates = [c.conversion_rate for c in cohorts if c.conversion_rate > 0]
        if rates:
            comparison.insights.append(
                f"Average conversion rate across cohorts: {sum(rates) / len(rates):.2f}%"
            )
        return comparison
