"""Chart selector — recommend visualizations and lay out a dashboard.

Essential charts are always included when their columns exist.  Template
charts are scored by base priority plus genre boosts.  The result is
capped at :data:`MAX_RECOMMENDATIONS` and never holds two charts with the
same (kind, title) pair.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from game_insights.cognitive.schema_analyzer import ColumnMeaning, SemanticType

logger = logging.getLogger(__name__)

MAX_RECOMMENDATIONS = 12
ESSENTIAL_PRIORITY = 10
ESSENTIAL_CONFIDENCE = 0.95
GENRE_BOOST = 2
ALWAYS_SHOW_BOOST = 2

S = SemanticType


@dataclass
class ChartRecommendation:
    chart_type: str
    title: str
    description: str
    columns: list[str]
    priority: int
    confidence: float
    essential: bool
    category: str  # kpi | trend | distribution | funnel | comparison


@dataclass
class DashboardLayout:
    kpis: list[ChartRecommendation] = field(default_factory=list)
    main_charts: list[ChartRecommendation] = field(default_factory=list)
    side_charts: list[ChartRecommendation] = field(default_factory=list)
    secondary_charts: list[ChartRecommendation] = field(default_factory=list)


@dataclass(frozen=True)
class ChartTemplate:
    requires: tuple[SemanticType, ...]
    chart: str
    title: str
    category: str
    description: str
    priority: int = ESSENTIAL_PRIORITY


# ---------------------------------------------------------------------------
# Catalogs
# ---------------------------------------------------------------------------

ESSENTIAL_CHARTS: list[ChartTemplate] = [
    ChartTemplate((S.REVENUE, S.TIMESTAMP), "area", "Revenue Over Time", "trend",
                  "Track revenue trends to identify growth patterns and seasonal effects"),
    ChartTemplate((S.USER_ID, S.TIMESTAMP), "cohort_heatmap", "Retention Cohort Heatmap", "comparison",
                  "Visualize user retention by cohort to identify engagement patterns"),
    ChartTemplate((S.REVENUE, S.USER_ID), "pie", "User Segmentation by Spend", "distribution",
                  "Whale/Dolphin/Minnow breakdown to understand revenue concentration"),
    ChartTemplate((S.FUNNEL_STEP,), "funnel", "Conversion Funnel", "funnel",
                  "Track user progression through key conversion steps"),
    ChartTemplate((S.LEVEL, S.USER_ID), "funnel", "Level Progression Funnel", "funnel",
                  "Identify where players drop off in level progression"),
]

CHART_TEMPLATES: list[ChartTemplate] = [
    # Monetization
    ChartTemplate((S.REVENUE, S.TIMESTAMP), "area", "Revenue Over Time", "trend", "Daily/weekly revenue trends", 10),
    ChartTemplate((S.REVENUE,), "kpi", "Total Revenue", "kpi", "Total revenue in the dataset", 9),
    ChartTemplate((S.REVENUE, S.USER_ID), "bar", "ARPU & ARPPU", "kpi", "Average revenue per user metrics", 9),
    ChartTemplate((S.CATEGORY, S.REVENUE), "bar", "Revenue by Category", "distribution", "Revenue breakdown by product/category", 7),
    ChartTemplate((S.REVENUE, S.COUNTRY), "bar", "Revenue by Country", "distribution", "Geographic revenue distribution", 6),
    # Engagement
    ChartTemplate((S.USER_ID, S.TIMESTAMP), "line", "Daily Active Users", "trend", "DAU trend over time", 9),
    ChartTemplate((S.USER_ID,), "kpi", "Total Users", "kpi", "Total unique users", 8),
    ChartTemplate((S.SESSION_ID,), "kpi", "Total Sessions", "kpi", "Total session count", 7),
    ChartTemplate((S.SESSION_ID, S.USER_ID), "histogram", "Sessions per User", "distribution", "Distribution of session frequency", 6),
    ChartTemplate((S.SESSION_DURATION,), "histogram", "Session Length Distribution", "distribution", "How long sessions typically last", 6),
    # Retention
    ChartTemplate((S.RETENTION_DAY,), "bar", "Retention Curve", "trend", "D1, D7, D30 retention rates", 10),
    ChartTemplate((S.USER_ID, S.TIMESTAMP), "cohort_heatmap", "Retention Cohort Heatmap", "comparison", "Retention by install cohort", 9),
    # Progression
    ChartTemplate((S.LEVEL, S.USER_ID), "histogram", "Level Distribution", "distribution", "Player distribution across levels", 7),
    ChartTemplate((S.LEVEL, S.USER_ID), "funnel", "Level Funnel", "funnel", "Drop-off at each level milestone", 8),
    # Funnels
    ChartTemplate((S.FUNNEL_STEP, S.CONVERSION), "funnel", "Conversion Funnel", "funnel", "Key conversion steps", 9),
    # Audience
    ChartTemplate((S.COUNTRY, S.USER_ID), "pie", "Users by Country", "distribution", "Geographic user distribution", 5),
    ChartTemplate((S.PLATFORM, S.USER_ID), "donut", "Platform Distribution", "distribution", "iOS vs Android breakdown", 6),
    # Items
    ChartTemplate((S.ITEM_ID, S.QUANTITY), "bar", "Top Items", "comparison", "Most purchased/used items", 6),
    ChartTemplate((S.ITEM_ID, S.REVENUE), "bar", "Top Revenue Items", "comparison", "Highest revenue items", 7),
    # Quality
    ChartTemplate((S.ERROR_TYPE,), "pie", "Error Types", "distribution", "Error distribution for debugging", 4),
    # Genre-specific
    ChartTemplate((S.BANNER, S.REVENUE), "bar", "Banner Performance", "comparison", "Revenue by gacha banner", 8),
    ChartTemplate((S.KILLS, S.USER_ID), "histogram", "Kill Distribution", "distribution", "Player kill performance", 6),
    ChartTemplate((S.PLACEMENT,), "histogram", "Match Placement", "distribution", "Where players typically finish", 6),
    ChartTemplate((S.BOOSTER, S.LEVEL), "heatmap", "Booster Usage by Level", "comparison", "Which levels need boosters", 7),
]

GENRE_CHART_BOOSTS: dict[str, tuple[str, ...]] = {
    "puzzle": ("funnel", "histogram", "line", "heatmap"),
    "idle": ("area", "bar", "gauge", "line"),
    "battle_royale": ("scatter", "histogram", "kpi", "bar"),
    "match3_meta": ("funnel", "pie", "bar", "heatmap"),
    "gacha_rpg": ("pie", "donut", "bar", "funnel"),
    "custom": (),
}

GENRE_ALWAYS_SHOW: dict[str, tuple[str, ...]] = {
    "puzzle": ("Level Funnel", "Booster Usage by Level", "Level Distribution"),
    "idle": ("Revenue Over Time", "Session Length Distribution", "Daily Active Users"),
    "battle_royale": ("Match Placement", "Kill Distribution", "Sessions per User"),
    "match3_meta": ("Level Funnel", "Users by Country", "Revenue by Category"),
    "gacha_rpg": ("Banner Performance", "User Segmentation by Spend", "Revenue Over Time"),
    "custom": ("Revenue Over Time", "Daily Active Users", "Total Users"),
}

MAIN_CHART_TYPES = ("line", "area", "bar", "funnel", "cohort_heatmap")
SIDE_CHART_TYPES = ("pie", "donut", "histogram", "scatter")


class ChartSelector:
    """Turns column meanings into ranked chart recommendations."""

    def recommend(self, meanings: list[ColumnMeaning], game_type: str) -> list[ChartRecommendation]:
        present = {m.semantic_type for m in meanings}
        column_for: dict[SemanticType, str] = {}
        for m in meanings:
            column_for.setdefault(m.semantic_type, m.column)

        recs: list[ChartRecommendation] = []
        added: set[tuple[str, str]] = set()

        for tpl in ESSENTIAL_CHARTS:
            if not all(t in present for t in tpl.requires):
                continue
            key = (tpl.chart, tpl.title)
            if key in added:
                continue
            recs.append(ChartRecommendation(
                chart_type=tpl.chart,
                title=tpl.title,
                description=tpl.description,
                columns=[column_for[t] for t in tpl.requires],
                priority=ESSENTIAL_PRIORITY,
                confidence=ESSENTIAL_CONFIDENCE,
                essential=True,
                category=tpl.category,
            ))
            added.add(key)

        boosted_kinds = GENRE_CHART_BOOSTS.get(game_type, ())
        always_show = GENRE_ALWAYS_SHOW.get(game_type, ())

        for tpl in CHART_TEMPLATES:
            if not all(t in present for t in tpl.requires):
                continue
            key = (tpl.chart, tpl.title)
            if key in added:
                continue

            priority = tpl.priority
            if tpl.chart in boosted_kinds:
                priority += GENRE_BOOST
            if tpl.title in always_show:
                priority += ALWAYS_SHOW_BOOST

            matching = [m.confidence for m in meanings if m.semantic_type in tpl.requires]
            confidence = sum(matching) / len(tpl.requires)

            recs.append(ChartRecommendation(
                chart_type=tpl.chart,
                title=tpl.title,
                description=tpl.description,
                columns=[column_for[t] for t in tpl.requires],
                priority=min(priority, 10),
                confidence=round(min(confidence, 1.0), 2),
                essential=tpl.title in always_show,
                category=tpl.category,
            ))
            added.add(key)

        recs.sort(key=lambda r: (not r.essential, -r.priority))
        logger.info("Chart selection: %d candidates for %s", len(recs), game_type)
        return recs[:MAX_RECOMMENDATIONS]

    @staticmethod
    def get_dashboard_layout(recommendations: list[ChartRecommendation]) -> DashboardLayout:
        essential = [r for r in recommendations if r.essential]
        rest = [r for r in recommendations if not r.essential]

        kpis = [r for r in recommendations if r.chart_type == "kpi"][:4]
        main = [r for r in essential + rest if r.chart_type in MAIN_CHART_TYPES][:3]
        side = [r for r in essential + rest if r.chart_type in SIDE_CHART_TYPES][:3]

        used = {r.title for r in kpis + main + side}
        secondary = [r for r in recommendations if r.title not in used and r.priority >= 6][:4]

        return DashboardLayout(kpis=kpis, main_charts=main, side_charts=side, secondary_charts=secondary)

    @staticmethod
    def get_charts_by_category(
        recommendations: list[ChartRecommendation],
        category: str,
    ) -> list[ChartRecommendation]:
        matched = [r for r in recommendations if r.category == category]
        return sorted(matched, key=lambda r: -r.priority)

    @staticmethod
    def get_essential_charts(recommendations: list[ChartRecommendation]) -> list[ChartRecommendation]:
        return [r for r in recommendations if r.essential]

    @staticmethod
    def get_visualization_confidence(recommendations: list[ChartRecommendation]) -> float:
        """60% essential coverage (capped at four charts) + 40% mean confidence."""
        if not recommendations:
            return 0.0
        essential_count = sum(1 for r in recommendations if r.essential)
        avg_confidence = sum(r.confidence for r in recommendations) / len(recommendations)
        coverage = min(essential_count / 4, 1.0)
        return round(coverage * 0.6 + avg_confidence * 0.4, 2)
