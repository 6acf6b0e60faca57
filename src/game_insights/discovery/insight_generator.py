"""Insight generator — ranked, business-facing findings for one dataset.

Sources, in order:
    1. Dataset summary templates computed straight from the rows
    2. Benchmark comparisons of calculated metrics
    3. Genre templates guarded by conditions over metrics
    4. Anomaly rollups by severity
    5. An optional external backend (LLM), merged without duplicates
    6. A data-quality warning when too many cells are empty

The list is deduplicated by id and normalized title, ranked by priority
then business impact, filtered by confidence and padded with genre tips
so callers always get at least ``min_insights`` entries.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from dataclasses import asdict, dataclass, field
from typing import Any, Callable

from game_insights.cognitive.domain_knowledge import get_benchmark, get_genre_tips
from game_insights.cognitive.insight_backend import InsightBackend, InsightContext, parse_drafts
from game_insights.cognitive.schema_analyzer import ColumnMeaning, SemanticType
from game_insights.discovery.anomaly_detector import Anomaly
from game_insights.discovery.metric_calculator import CalculatedMetrics, find_column
from game_insights.ingestion.table import Table
from game_insights.utils.values import is_missing, to_number

logger = logging.getLogger(__name__)

IMPACT_RANK = {"high": 0, "medium": 1, "low": 2}
NULL_RATE_THRESHOLD = 10.0
ERROR_RATE_THRESHOLD = 5.0


@dataclass
class Insight:
    id: str
    type: str  # positive | negative | neutral | warning | opportunity
    category: str  # retention | monetization | engagement | progression | quality
    title: str
    description: str
    priority: int = 5
    business_impact: str = "medium"
    recommendation: str | None = None
    revenue_impact: float | None = None
    confidence: float = 0.8
    evidence: list[str] = field(default_factory=list)
    source: str = "template"  # template | metric | external
    actionable: bool = False
    metric: str | None = None
    value: float | str | None = None


def normalize_title(title: str) -> str:
    return re.sub(r"[^a-z0-9]", "", title.lower())


def impact_for_priority(priority: int) -> str:
    if priority >= 8:
        return "high"
    if priority >= 5:
        return "medium"
    return "low"


def _fmt_money(value: float) -> str:
    return f"${value:,.2f}"


# ---------------------------------------------------------------------------
# Genre templates
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class InsightTemplate:
    id: str
    genres: tuple[str, ...] | None  # None = every genre
    condition: Callable[[CalculatedMetrics], bool]
    build: Callable[[CalculatedMetrics], Insight]


def _retention(m: CalculatedMetrics, key: str) -> float | None:
    return m.retention.classic.get(key) if m.retention else None


def _has_spikes(m: CalculatedMetrics) -> bool:
    return bool(m.progression and m.progression.difficulty_spikes)


def _build_spikes(m: CalculatedMetrics) -> Insight:
    spikes = m.progression.difficulty_spikes
    rates = m.progression.level_completion_rates
    worst = min(spikes, key=lambda s: rates.get(s, 100))
    return Insight(
        id="genre-difficulty-spike",
        type="warning",
        category="progression",
        title=f"Difficulty spike at {worst}",
        description=(
            f"{len(spikes)} level(s) show a sharp completion drop; {worst} is completed by "
            f"only {rates.get(worst, 0):.1f}% of players."
        ),
        priority=8,
        business_impact="high",
        recommendation=f"Ease {worst} or offer a booster/hint right before it.",
        confidence=0.75,
        evidence=[f"{s}: {rates.get(s, 0):.1f}% completion" for s in spikes[:5]],
        actionable=True,
        metric="level_completion",
        value=rates.get(worst),
    )


def _low_d7(m: CalculatedMetrics) -> bool:
    d7 = _retention(m, "D7")
    return d7 is not None and d7 < 15


def _build_idle_d7(m: CalculatedMetrics) -> Insight:
    d7 = _retention(m, "D7")
    return Insight(
        id="genre-idle-prestige-pacing",
        type="warning",
        category="retention",
        title="Idle loop loses players in week one",
        description=f"D7 retention is {d7:.1f}%. Idle players usually churn when the first prestige feels too far away.",
        priority=7,
        business_impact="high",
        recommendation="Move the first prestige unlock earlier and boost offline rewards for days 2-6.",
        confidence=0.7,
        actionable=True,
        metric="d7_retention",
        value=d7,
    )


def _sticky(m: CalculatedMetrics) -> bool:
    return bool(m.engagement and m.engagement.dau_mau_ratio >= 0.25)


def _build_sticky(m: CalculatedMetrics) -> Insight:
    ratio = m.engagement.dau_mau_ratio
    return Insight(
        id="genre-habit-loop",
        type="positive",
        category="engagement",
        title="Strong daily habit",
        description=f"DAU/MAU of {ratio:.2f} means players open the game about {ratio * 30:.0f} days a month.",
        priority=6,
        business_impact="medium",
        recommendation="Layer daily quests and streak rewards on top of the existing loop.",
        confidence=0.8,
        metric="dau_mau_ratio",
        value=ratio,
    )


def _whale_heavy(m: CalculatedMetrics) -> bool:
    mon = m.monetization
    return bool(mon and mon.arppu >= 20 and mon.conversion_rate < 3)


def _build_whale_heavy(m: CalculatedMetrics) -> Insight:
    mon = m.monetization
    return Insight(
        id="genre-gacha-whale-concentration",
        type="opportunity",
        category="monetization",
        title="Revenue concentrated in a few spenders",
        description=(
            f"Only {mon.conversion_rate:.1f}% of players pay, but they spend {_fmt_money(mon.arppu)} on average."
        ),
        priority=8,
        business_impact="high",
        recommendation="Add a low-price starter pack to widen the payer base without touching banner pricing.",
        confidence=0.7,
        actionable=True,
        metric="arppu",
        value=mon.arppu,
    )


def _low_d1(m: CalculatedMetrics) -> bool:
    d1 = _retention(m, "D1")
    return d1 is not None and d1 < 35


def _build_br_d1(m: CalculatedMetrics) -> Insight:
    d1 = _retention(m, "D1")
    return Insight(
        id="genre-br-first-match",
        type="warning",
        category="retention",
        title="First matches are not bringing players back",
        description=f"D1 retention is {d1:.1f}%. New battle royale players who die early rarely return.",
        priority=8,
        business_impact="high",
        recommendation="Seed early lobbies with bots and guarantee a kill in the first two matches.",
        confidence=0.7,
        actionable=True,
        metric="d1_retention",
        value=d1,
    )


def _many_sessions(m: CalculatedMetrics) -> bool:
    return bool(m.engagement and m.engagement.avg_sessions_per_user > 5)


def _build_many_sessions(m: CalculatedMetrics) -> Insight:
    spu = m.engagement.avg_sessions_per_user
    return Insight(
        id="genre-session-frequency",
        type="positive",
        category="engagement",
        title="Players queue up again and again",
        description=f"Players average {spu:.1f} sessions each.",
        priority=5,
        business_impact="medium",
        recommendation="Introduce a season pass to monetize this repeat play.",
        confidence=0.8,
        metric="sessions_per_user",
        value=spu,
    )


def _low_conversion_with_levels(m: CalculatedMetrics) -> bool:
    return bool(m.monetization and m.progression and m.monetization.conversion_rate < 2)


def _build_booster_offer(m: CalculatedMetrics) -> Insight:
    conv = m.monetization.conversion_rate
    return Insight(
        id="genre-booster-offer",
        type="opportunity",
        category="monetization",
        title="Booster offers at hard levels",
        description=(
            f"Conversion is {conv:.1f}% while players average level {m.progression.avg_level:.1f}. "
            "Hard levels are the natural moment to sell boosters."
        ),
        priority=7,
        business_impact="medium",
        recommendation="Trigger a discounted booster bundle after the second failure on a level.",
        confidence=0.65,
        actionable=True,
        metric="conversion_rate",
        value=conv,
    )


def _low_return_rate(m: CalculatedMetrics) -> bool:
    return bool(m.retention and m.retention.return_rate < 20)


def _build_low_return(m: CalculatedMetrics) -> Insight:
    rate = m.retention.return_rate
    return Insight(
        id="genre-one-and-done",
        type="negative",
        category="retention",
        title="Most players never come back",
        description=f"Only {rate:.1f}% of players were active on more than one day.",
        priority=9,
        business_impact="high",
        recommendation="Review the first session: time to fun, tutorial length and the first reward.",
        confidence=0.75,
        actionable=True,
        metric="return_rate",
        value=rate,
    )


GENRE_TEMPLATES: list[InsightTemplate] = [
    InsightTemplate("genre-difficulty-spike", ("puzzle", "match3_meta"), _has_spikes, _build_spikes),
    InsightTemplate("genre-idle-prestige-pacing", ("idle",), _low_d7, _build_idle_d7),
    InsightTemplate("genre-habit-loop", ("idle", "puzzle", "match3_meta"), _sticky, _build_sticky),
    InsightTemplate("genre-gacha-whale-concentration", ("gacha_rpg",), _whale_heavy, _build_whale_heavy),
    InsightTemplate("genre-br-first-match", ("battle_royale",), _low_d1, _build_br_d1),
    InsightTemplate("genre-session-frequency", ("battle_royale",), _many_sessions, _build_many_sessions),
    InsightTemplate("genre-booster-offer", ("puzzle", "match3_meta"), _low_conversion_with_levels, _build_booster_offer),
    InsightTemplate("genre-one-and-done", None, _low_return_rate, _build_low_return),
]


class InsightGenerator:
    """Builds the ranked insight list; the backend is optional."""

    def __init__(
        self,
        backend: InsightBackend | None = None,
        min_confidence: float = 0.5,
        max_insights: int = 15,
        min_insights: int = 5,
        benchmarks: dict[str, dict] | None = None,
    ) -> None:
        self.backend = backend
        self.min_confidence = min_confidence
        self.max_insights = max_insights
        self.min_insights = min_insights
        self.benchmarks = benchmarks

    async def generate(
        self,
        table: Table,
        meanings: list[ColumnMeaning],
        game_type: str,
        metrics: CalculatedMetrics | None = None,
        anomalies: list[Anomaly] | None = None,
    ) -> list[Insight]:
        insights = self._collect(table, meanings, game_type, metrics, anomalies)

        if self.backend is not None:
            try:
                context = self.build_context(table, meanings, game_type, metrics, anomalies)
                response = await self.backend.generate_insights(context)
                insights = self._merge_external(insights, response)
            except Exception:
                logger.exception("External insight backend failed, using template insights only")

        return self._finalize(insights, game_type)

    def generate_template_insights(
        self,
        table: Table,
        meanings: list[ColumnMeaning],
        game_type: str,
        metrics: CalculatedMetrics | None = None,
        anomalies: list[Anomaly] | None = None,
    ) -> list[Insight]:
        """Backend-free path; never awaits anything."""
        return self._finalize(self._collect(table, meanings, game_type, metrics, anomalies), game_type)

    # ------------------------------------------------------------------
    # Collection
    # ------------------------------------------------------------------

    def _collect(self, table, meanings, game_type, metrics, anomalies) -> list[Insight]:
        insights: list[Insight] = []
        insights.extend(self._dataset_insights(table, meanings))
        if metrics is not None:
            insights.extend(self._benchmark_insights(metrics))
            insights.extend(self._genre_insights(metrics, game_type))
        if anomalies:
            insights.extend(self._anomaly_insights(anomalies))
        quality = self._quality_insight(table)
        if quality:
            insights.append(quality)
        return insights

    @staticmethod
    def _dataset_insights(table: Table, meanings: list[ColumnMeaning]) -> list[Insight]:
        rows = table.rows
        if not rows:
            return []
        found: list[Insight] = []

        revenue_col = find_column(meanings, SemanticType.REVENUE, SemanticType.IAP_REVENUE)
        if revenue_col:
            total = sum(to_number(r.get(revenue_col)) or 0.0 for r in rows)
            found.append(Insight(
                id="total-revenue", type="positive", category="monetization",
                title="Total Revenue",
                description=f"The dataset contains {_fmt_money(total)} in revenue.",
                priority=7, business_impact="medium", confidence=1.0,
                metric="revenue", value=round(total, 2),
            ))

        user_col = find_column(meanings, SemanticType.USER_ID)
        if user_col:
            users = {str(r.get(user_col)) for r in rows if not is_missing(r.get(user_col))}
            found.append(Insight(
                id="unique-users", type="neutral", category="engagement",
                title="Unique Users",
                description=f"Found {len(users):,} unique users in the dataset.",
                priority=5, business_impact="low", confidence=1.0,
                metric="users", value=len(users),
            ))

        session_col = find_column(meanings, SemanticType.SESSION_ID)
        if user_col and session_col:
            sessions: dict[str, set[str]] = {}
            for r in rows:
                user, session = r.get(user_col), r.get(session_col)
                if is_missing(user) or is_missing(session):
                    continue
                sessions.setdefault(str(user), set()).add(str(session))
            if sessions:
                avg = sum(len(s) for s in sessions.values()) / len(sessions)
                found.append(Insight(
                    id="sessions-per-user", type="positive" if avg > 3 else "neutral",
                    category="engagement", title="Sessions Per User",
                    description=f"Users average {avg:.1f} sessions each.",
                    priority=5, business_impact="medium", confidence=1.0,
                    metric="sessions_per_user", value=round(avg, 2),
                ))

        level_col = find_column(meanings, SemanticType.LEVEL)
        if level_col:
            levels = [lvl for lvl in (to_number(r.get(level_col)) for r in rows) if lvl and lvl > 0]
            if levels:
                avg_level = sum(levels) / len(levels)
                found.append(Insight(
                    id="level-distribution", type="neutral", category="progression",
                    title="Level Progress",
                    description=f"Players range from level 1 to {max(levels):g}. Average: {avg_level:.1f}",
                    priority=4, business_impact="low", confidence=1.0,
                    metric="level", value=round(avg_level, 2),
                ))

        error_col = find_column(meanings, SemanticType.ERROR_TYPE)
        if error_col:
            errors = sum(1 for r in rows if not is_missing(r.get(error_col)))
            rate = errors / len(rows) * 100
            if rate > ERROR_RATE_THRESHOLD:
                found.append(Insight(
                    id="error-alert", type="negative", category="quality",
                    title="High Error Rate",
                    description=f"{rate:.1f}% of events contain errors.",
                    priority=9, business_impact="high", confidence=1.0,
                    recommendation="Investigate the most frequent error types before the next release.",
                    actionable=True, metric="error_rate", value=round(rate, 2),
                ))
        return found

    def _benchmark_insights(self, metrics: CalculatedMetrics) -> list[Insight]:
        found: list[Insight] = []

        if metrics.retention:
            for day in ("D1", "D7", "D30"):
                value = metrics.retention.classic.get(day)
                bench = get_benchmark(f"{day.lower()}_retention", self.benchmarks)
                if value is None or not bench:
                    continue
                found.append(self._compare(
                    insight_id=f"benchmark-{day.lower()}-retention",
                    category="retention",
                    label=f"{day} retention",
                    value=value,
                    bench=bench,
                    unit="%",
                    low_type="warning",
                    recommendation=(
                        f"Target {bench['good']:.0f}% {day} retention; review the day-{day[1:]} "
                        "return hooks (rewards, notifications, content unlocks)."
                    ),
                ))

        mon = metrics.monetization
        if mon:
            bench = get_benchmark("conversion_rate", self.benchmarks)
            if bench:
                insight = self._compare(
                    insight_id="benchmark-conversion",
                    category="monetization",
                    label="Payer conversion",
                    value=mon.conversion_rate,
                    bench=bench,
                    unit="%",
                    low_type="opportunity",
                    recommendation=(
                        f"Lift conversion toward {bench['good']:.0f}% with a first-purchase offer "
                        "shown after the first win."
                    ),
                )
                if mon.conversion_rate < bench["good"] and mon.conversion_rate > 0:
                    users = mon.paying_users / (mon.conversion_rate / 100)
                    extra_payers = users * (bench["good"] - mon.conversion_rate) / 100
                    insight.revenue_impact = round(extra_payers * mon.arppu, 2)
                found.append(insight)

            bench = get_benchmark("arpu", self.benchmarks)
            if bench:
                found.append(self._compare(
                    insight_id="benchmark-arpu",
                    category="monetization",
                    label="ARPU",
                    value=mon.arpu,
                    bench=bench,
                    unit="$",
                    low_type="opportunity",
                    recommendation=f"Raise ARPU toward {_fmt_money(bench['good'])} with rewarded ads or bundles.",
                ))

        if metrics.engagement:
            bench = get_benchmark("dau_mau_ratio", self.benchmarks)
            if bench:
                found.append(self._compare(
                    insight_id="benchmark-stickiness",
                    category="engagement",
                    label="Stickiness (DAU/MAU)",
                    value=metrics.engagement.dau_mau_ratio,
                    bench=bench,
                    unit="ratio",
                    low_type="warning",
                    recommendation=f"Push DAU/MAU above {bench['good']:.2f} with daily login rewards.",
                ))
        return found

    @staticmethod
    def _compare(
        insight_id: str,
        category: str,
        label: str,
        value: float,
        bench: dict,
        unit: str,
        low_type: str,
        recommendation: str,
    ) -> Insight:
        good, poor = bench["good"], bench["poor"]
        shown = f"{value:.2f}" if unit == "ratio" else (_fmt_money(value) if unit == "$" else f"{value:.1f}%")
        good_shown = f"{good:.2f}" if unit == "ratio" else (_fmt_money(good) if unit == "$" else f"{good:.0f}%")
        evidence = [f"{label}: {shown}", f"Benchmark (good): {good_shown}"]

        if value >= good:
            return Insight(
                id=insight_id, type="positive", category=category,
                title=f"{label} above benchmark",
                description=f"{label} is {shown}, at or above the {good_shown} industry benchmark.",
                priority=5, business_impact="medium", confidence=0.85,
                evidence=evidence, source="metric", metric=insight_id, value=value,
            )
        if value <= poor:
            return Insight(
                id=insight_id, type=low_type, category=category,
                title=f"{label} well below benchmark",
                description=f"{label} is {shown}, far below the {good_shown} industry benchmark.",
                priority=9, business_impact="high", confidence=0.85,
                recommendation=recommendation, evidence=evidence, source="metric",
                actionable=True, metric=insight_id, value=value,
            )
        return Insight(
            id=insight_id, type="neutral", category=category,
            title=f"{label} near benchmark",
            description=f"{label} is {shown}, between the poor and good benchmark range (good: {good_shown}).",
            priority=6, business_impact="medium", confidence=0.8,
            recommendation=recommendation, evidence=evidence, source="metric",
            actionable=True, metric=insight_id, value=value,
        )

    @staticmethod
    def _genre_insights(metrics: CalculatedMetrics, game_type: str) -> list[Insight]:
        found: list[Insight] = []
        for template in GENRE_TEMPLATES:
            if template.genres is not None and game_type not in template.genres:
                continue
            try:
                if template.condition(metrics):
                    found.append(template.build(metrics))
            except (TypeError, ValueError, ZeroDivisionError):
                logger.debug("Genre template %s skipped", template.id, exc_info=True)
        return found

    @staticmethod
    def _anomaly_insights(anomalies: list[Anomaly]) -> list[Insight]:
        counts = Counter(a.severity for a in anomalies)
        found: list[Insight] = []
        severe = [a for a in anomalies if a.severity in ("critical", "high")]
        if severe:
            found.append(Insight(
                id="anomalies-severe",
                type="warning",
                category="quality",
                title=f"{len(severe)} significant anomalies detected",
                description=(
                    f"{counts['critical']} critical and {counts['high']} high-severity anomalies, "
                    f"most recently in {severe[0].metric} on {severe[0].timestamp}."
                ),
                priority=9 if counts["critical"] else 8,
                business_impact="high",
                recommendation="Check releases, campaigns and outages around the flagged dates.",
                confidence=0.8,
                evidence=[a.description for a in severe[:3]],
                source="metric",
                actionable=True,
            ))
        minor = counts["medium"] + counts["low"]
        if minor:
            found.append(Insight(
                id="anomalies-minor",
                type="neutral",
                category="quality",
                title=f"{minor} minor metric fluctuations",
                description=f"{counts['medium']} medium and {counts['low']} low-severity deviations from recent trends.",
                priority=4,
                business_impact="low",
                confidence=0.7,
                evidence=[a.description for a in anomalies if a.severity in ("medium", "low")][:3],
                source="metric",
            ))
        return found

    @staticmethod
    def _quality_insight(table: Table) -> Insight | None:
        rows = table.rows
        if not rows:
            return None
        total = len(rows) * max(len(table.columns), 1)
        empty = sum(1 for r in rows for v in r.values() if is_missing(v))
        rate = empty / total * 100
        if rate <= NULL_RATE_THRESHOLD:
            return None
        return Insight(
            id="data-quality",
            type="warning",
            category="quality",
            title="Data Quality Issue",
            description=f"{rate:.1f}% of fields are empty. Consider data cleaning.",
            priority=6,
            business_impact="medium",
            recommendation="Run the cleaning plan before relying on the metrics.",
            confidence=1.0,
            actionable=True,
            metric="null_rate",
            value=round(rate, 2),
        )

    # ------------------------------------------------------------------
    # External backend
    # ------------------------------------------------------------------

    def build_context(
        self,
        table: Table,
        meanings: list[ColumnMeaning],
        game_type: str,
        metrics: CalculatedMetrics | None,
        anomalies: list[Anomaly] | None,
    ) -> InsightContext:
        rows = table.rows
        user_col = find_column(meanings, SemanticType.USER_ID)
        revenue_col = find_column(meanings, SemanticType.REVENUE, SemanticType.IAP_REVENUE)
        level_col = find_column(meanings, SemanticType.LEVEL)
        platform_col = find_column(meanings, SemanticType.PLATFORM)
        country_col = find_column(meanings, SemanticType.COUNTRY)

        snapshot: dict[str, Any] = {"row_count": len(rows)}
        if user_col:
            snapshot["total_users"] = len({str(r.get(user_col)) for r in rows if not is_missing(r.get(user_col))})
        if revenue_col:
            snapshot["total_revenue"] = round(sum(to_number(r.get(revenue_col)) or 0.0 for r in rows), 2)
        if metrics and metrics.data_range:
            snapshot["date_range"] = {"start": metrics.data_range.start, "end": metrics.data_range.end}

        aggregations: dict[str, Any] = {}
        if level_col:
            levels = [lvl for lvl in (to_number(r.get(level_col)) for r in rows) if lvl is not None]
            if levels:
                aggregations["level_stats"] = {
                    "min": min(levels), "max": max(levels), "avg": round(sum(levels) / len(levels), 2),
                }
        if platform_col:
            aggregations["platform_distribution"] = dict(
                Counter(str(r.get(platform_col)) for r in rows if not is_missing(r.get(platform_col)))
            )
        if country_col:
            aggregations["top_countries"] = dict(
                Counter(str(r.get(country_col)) for r in rows if not is_missing(r.get(country_col))).most_common(5)
            )

        return InsightContext(
            game_type=game_type,
            column_meanings=[
                {"column": m.column, "semantic_type": m.semantic_type.value, "confidence": m.confidence}
                for m in meanings
            ],
            metrics=asdict(metrics) if metrics else None,
            anomalies=[asdict(a) for a in (anomalies or [])[:10]],
            snapshot=snapshot,
            aggregations=aggregations,
        )

    @staticmethod
    def _merge_external(insights: list[Insight], response: Any) -> list[Insight]:
        merged = list(insights)
        ids = {i.id for i in merged}
        titles = {normalize_title(i.title) for i in merged}
        added = 0
        for idx, draft in enumerate(parse_drafts(response)):
            insight_id = draft.id or f"external-{idx}-{normalize_title(draft.title)[:24]}"
            key = normalize_title(draft.title)
            if insight_id in ids or key in titles:
                continue
            merged.append(Insight(
                id=insight_id,
                type=draft.type,
                category=draft.category,
                title=draft.title,
                description=draft.description,
                priority=draft.priority,
                business_impact=draft.business_impact or impact_for_priority(draft.priority),
                recommendation=draft.recommendation,
                confidence=draft.confidence,
                evidence=list(draft.evidence),
                source="external",
                actionable=draft.recommendation is not None,
                metric=draft.metric,
                value=draft.value,
            ))
            ids.add(insight_id)
            titles.add(key)
            added += 1
        logger.info("Merged %d external insights", added)
        return merged

    # ------------------------------------------------------------------
    # Post-processing
    # ------------------------------------------------------------------

    def _finalize(self, insights: list[Insight], game_type: str) -> list[Insight]:
        unique: list[Insight] = []
        ids: set[str] = set()
        titles: set[str] = set()
        for insight in insights:
            key = normalize_title(insight.title)
            if insight.id in ids or key in titles:
                continue
            ids.add(insight.id)
            titles.add(key)
            unique.append(insight)

        unique.sort(key=lambda i: (-i.priority, IMPACT_RANK.get(i.business_impact, 3)))
        kept = [i for i in unique if i.confidence >= self.min_confidence]
        dropped = len(unique) - len(kept)
        if dropped:
            logger.debug("Dropped %d low-confidence insights", dropped)

        genre_label = game_type.replace("_", " ")
        for n, tip in enumerate(get_genre_tips(game_type)):
            if len(kept) >= self.min_insights:
                break
            tip_id = f"tip-{game_type}-{n}"
            key = normalize_title(tip)
            if tip_id in ids or key in titles:
                continue
            kept.append(Insight(
                id=tip_id,
                type="neutral",
                category="engagement",
                title=tip,
                description=f"Best practice for {genre_label} games: {tip}.",
                priority=3,
                business_impact="low",
                confidence=0.8,
                source="template",
            ))
            ids.add(tip_id)
            titles.add(key)

        return kept[: max(self.max_insights, self.min_insights)]
