"""Metric calculator — standard mobile-game KPIs from raw event rows.

Computes four independent blocks (retention, engagement, monetization,
progression).  A block is ``None`` when the columns it needs are missing
or no row is usable; values are never zero-filled to look complete.

Retention horizons are measured against the latest activity day present
in the data, not the wall clock, so the same table always yields the same
numbers.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from game_insights.cognitive.schema_analyzer import ColumnMeaning, SemanticType
from game_insights.ingestion.table import Table
from game_insights.utils.values import day_key, days_between, is_missing, to_number

logger = logging.getLogger(__name__)

SPIKE_DROP_POINTS = 20.0
SPIKE_BELOW_AVG_FACTOR = 0.5


@dataclass
class MetricConfig:
    retention_days: tuple[int, ...] = (1, 3, 7, 14, 30)
    rolling_window_days: int = 7
    ltv_projection_days: int = 30


@dataclass
class RetentionMetrics:
    classic: dict[str, float]  # "D1" -> % of eligible users active exactly on day N
    rolling: dict[str, float]  # "D1" -> % of eligible users active on day N or later
    return_rate: float


@dataclass
class EngagementMetrics:
    dau: int
    wau: int
    mau: int
    dau_mau_ratio: float
    avg_sessions_per_user: float
    avg_session_length: float
    total_sessions: int


@dataclass
class MonetizationMetrics:
    total_revenue: float
    arpu: float
    arppu: float
    conversion_rate: float
    paying_users: int
    ltv_projection: float
    revenue_by_source: dict[str, float] = field(default_factory=dict)


@dataclass
class ProgressionMetrics:
    level_completion_rates: dict[str, float]
    max_level_reached: float
    avg_level: float
    difficulty_spikes: list[str]


@dataclass
class DataRange:
    start: str
    end: str


@dataclass
class CalculatedMetrics:
    retention: RetentionMetrics | None
    engagement: EngagementMetrics | None
    monetization: MonetizationMetrics | None
    progression: ProgressionMetrics | None
    data_range: DataRange | None
    confidence: float
    available_metrics: list[str]
    calculated_at: str


def find_column(meanings: list[ColumnMeaning], *types: SemanticType) -> str | None:
    """First column tagged with any of *types*, in the order given."""
    for semantic in types:
        for meaning in meanings:
            if meaning.semantic_type is semantic:
                return meaning.column
    return None


def _user_key(row: dict, col: str) -> str | None:
    value = row.get(col)
    if is_missing(value):
        return None
    return str(value)


class MetricCalculator:
    """Computes :class:`CalculatedMetrics` for one table."""

    def __init__(self, config: MetricConfig | None = None) -> None:
        self.config = config or MetricConfig()

    def calculate(
        self,
        table: Table,
        meanings: list[ColumnMeaning],
        config: MetricConfig | None = None,
    ) -> CalculatedMetrics:
        cfg = config or self.config
        user_col = find_column(meanings, SemanticType.USER_ID)
        ts_col = find_column(meanings, SemanticType.TIMESTAMP)
        session_col = find_column(meanings, SemanticType.SESSION_ID)
        revenue_col = find_column(
            meanings,
            SemanticType.REVENUE,
            SemanticType.IAP_REVENUE,
            SemanticType.PURCHASE_AMOUNT,
            SemanticType.PRICE,
        )
        level_col = find_column(meanings, SemanticType.LEVEL)
        category_col = find_column(meanings, SemanticType.CATEGORY)
        rows = table.rows

        available: list[str] = []
        data_range = self._data_range(rows, ts_col) if ts_col else None

        retention = None
        if user_col and ts_col:
            retention = self.calculate_retention(rows, user_col, ts_col, cfg)
            if retention:
                available.append("retention")

        engagement = None
        if user_col:
            engagement = self.calculate_engagement(rows, user_col, ts_col, session_col)
            if engagement:
                available.append("engagement")

        monetization = None
        if user_col and revenue_col:
            monetization = self.calculate_monetization(
                rows, user_col, revenue_col, retention, cfg, category_col,
            )
            if monetization:
                available.append("monetization")

        progression = None
        if user_col and level_col:
            progression = self.calculate_progression(rows, user_col, level_col)
            if progression:
                available.append("progression")

        drivers = [user_col, ts_col, session_col, revenue_col, level_col]
        confidence = self._confidence(len(rows), drivers)
        logger.info("Metrics calculated: %s (confidence %.2f)", ", ".join(available) or "none", confidence)

        return CalculatedMetrics(
            retention=retention,
            engagement=engagement,
            monetization=monetization,
            progression=progression,
            data_range=data_range,
            confidence=confidence,
            available_metrics=available,
            calculated_at=datetime.now(timezone.utc).isoformat(),
        )

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    def calculate_retention(
        self,
        rows: list[dict],
        user_col: str,
        ts_col: str,
        config: MetricConfig | None = None,
    ) -> RetentionMetrics | None:
        cfg = config or self.config
        activity: dict[str, set[str]] = {}
        for row in rows:
            user = _user_key(row, user_col)
            day = day_key(row.get(ts_col))
            if user is None or day is None:
                continue
            activity.setdefault(user, set()).add(day)

        if not activity:
            return None

        reference = max(max(days) for days in activity.values())
        offsets: dict[str, set[int]] = {}
        first_age: dict[str, int] = {}
        for user, days in activity.items():
            first = min(days)
            offsets[user] = {days_between(first, d) for d in days}
            first_age[user] = days_between(first, reference)

        classic: dict[str, float] = {}
        rolling: dict[str, float] = {}
        for n in cfg.retention_days:
            eligible = [u for u, age in first_age.items() if age >= n]
            if not eligible:
                continue
            exact = sum(1 for u in eligible if n in offsets[u])
            later = sum(1 for u in eligible if any(o >= n for o in offsets[u]))
            classic[f"D{n}"] = round(exact / len(eligible) * 100, 2)
            rolling[f"D{n}"] = round(later / len(eligible) * 100, 2)

        returning = sum(1 for days in activity.values() if len(days) > 1)
        return RetentionMetrics(
            classic=classic,
            rolling=rolling,
            return_rate=round(returning / len(activity) * 100, 2),
        )

    # ------------------------------------------------------------------
    # Engagement
    # ------------------------------------------------------------------

    @staticmethod
    def calculate_engagement(
        rows: list[dict],
        user_col: str,
        ts_col: str | None,
        session_col: str | None,
    ) -> EngagementMetrics | None:
        users: set[str] = set()
        daily: dict[str, set[str]] = {}
        sessions: dict[str, set[str]] = {}

        for row in rows:
            user = _user_key(row, user_col)
            if user is None:
                continue
            users.add(user)
            if ts_col:
                day = day_key(row.get(ts_col))
                if day:
                    daily.setdefault(day, set()).add(user)
            if session_col:
                session = row.get(session_col)
                if not is_missing(session):
                    sessions.setdefault(user, set()).add(str(session))

        if not users:
            return None

        if daily:
            ordered = sorted(daily)
            dau = round(sum(len(daily[d]) for d in ordered) / len(ordered))
            wau = len(set().union(*(daily[d] for d in ordered[-7:])))
            mau = len(set().union(*(daily[d] for d in ordered[-30:])))
        else:
            dau = wau = mau = len(users)

        total_sessions = sum(len(s) for s in sessions.values())
        return EngagementMetrics(
            dau=dau,
            wau=wau,
            mau=mau,
            dau_mau_ratio=round(dau / mau, 2) if mau else 0.0,
            avg_sessions_per_user=round(total_sessions / len(users), 2),
            avg_session_length=0.0,
            total_sessions=total_sessions,
        )

    # ------------------------------------------------------------------
    # Monetization
    # ------------------------------------------------------------------

    def calculate_monetization(
        self,
        rows: list[dict],
        user_col: str,
        revenue_col: str,
        retention: RetentionMetrics | None = None,
        config: MetricConfig | None = None,
        category_col: str | None = None,
    ) -> MonetizationMetrics | None:
        cfg = config or self.config
        users: set[str] = set()
        payers: set[str] = set()
        by_source: dict[str, float] = {}
        total = 0.0

        for row in rows:
            user = _user_key(row, user_col)
            if user is None:
                continue
            users.add(user)
            revenue = to_number(row.get(revenue_col)) or 0.0
            if revenue <= 0:
                continue
            payers.add(user)
            total += revenue
            source_value = row.get(category_col) if category_col else row.get("source")
            source = "unknown" if is_missing(source_value) else str(source_value)
            by_source[source] = by_source.get(source, 0.0) + revenue

        if not users:
            return None

        arpu = total / len(users)
        arppu = total / len(payers) if payers else 0.0
        if retention and retention.classic:
            lifetime = sum(retention.classic.values()) / 100
            ltv = arpu * lifetime * cfg.ltv_projection_days
        else:
            ltv = arpu * cfg.ltv_projection_days

        return MonetizationMetrics(
            total_revenue=round(total, 2),
            arpu=round(arpu, 2),
            arppu=round(arppu, 2),
            conversion_rate=round(len(payers) / len(users) * 100, 2),
            paying_users=len(payers),
            ltv_projection=round(ltv, 2),
            revenue_by_source={k: round(v, 2) for k, v in by_source.items()},
        )

    # ------------------------------------------------------------------
    # Progression
    # ------------------------------------------------------------------

    @staticmethod
    def calculate_progression(
        rows: list[dict],
        user_col: str,
        level_col: str,
    ) -> ProgressionMetrics | None:
        max_level: dict[str, float] = {}
        completions: dict[int, int] = {}

        for row in rows:
            user = _user_key(row, user_col)
            level = to_number(row.get(level_col))
            if user is None or level is None or level <= 0:
                continue
            if level > max_level.get(user, 0):
                max_level[user] = level
            if level > 1:
                prev = int(level) - 1
                completions[prev] = completions.get(prev, 0) + 1

        if not max_level:
            return None

        total_users = len(max_level)
        rates = {
            lvl: round(count / total_users * 100, 2)
            for lvl, count in sorted(completions.items())
        }

        spikes: list[str] = []
        if len(rates) > 2:
            avg_rate = sum(rates.values()) / len(rates)
            ordered = list(rates.items())
            for (_, prev_rate), (lvl, rate) in zip(ordered, ordered[1:]):
                if prev_rate - rate > SPIKE_DROP_POINTS or rate < avg_rate * SPIKE_BELOW_AVG_FACTOR:
                    spikes.append(f"Level {lvl}")

        levels = list(max_level.values())
        return ProgressionMetrics(
            level_completion_rates={f"Level {lvl}": rate for lvl, rate in rates.items()},
            max_level_reached=max(levels),
            avg_level=round(sum(levels) / len(levels), 2),
            difficulty_spikes=spikes,
        )

    # ------------------------------------------------------------------

    @staticmethod
    def _data_range(rows: list[dict], ts_col: str) -> DataRange | None:
        days = [d for d in (day_key(row.get(ts_col)) for row in rows) if d]
        if not days:
            return None
        return DataRange(start=min(days), end=max(days))

    @staticmethod
    def _confidence(row_count: int, drivers: list[str | None]) -> float:
        score = float(sum(1 for col in drivers if col))
        if row_count >= 1000:
            score += 0.5
        if row_count >= 10000:
            score += 0.5
        return round(score / (len(drivers) + 1), 2)
