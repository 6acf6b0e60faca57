"""Funnel analysis — track how players progress through sequential steps.

Three funnel sources are detected from a table:
    level     players reaching each level (up to MAX_LEVEL_STEPS)
    step      an explicit funnel-step column, ordered by first appearance
    event     genre-specific event sequences matched on the event column
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from game_insights.cognitive.schema_analyzer import ColumnMeaning, SemanticType
from game_insights.discovery.metric_calculator import find_column
from game_insights.ingestion.table import Table
from game_insights.utils.values import is_missing, to_number

logger = logging.getLogger(__name__)

MAX_LEVEL_STEPS = 20
BOTTLENECK_MIN_DROP = 10.0
OPTIMIZE_MIN_DROP = 30.0
MAX_OPTIMIZATIONS = 10


@dataclass
class FunnelStage:
    """Metrics for a single funnel stage."""
    name: str
    count: int
    pct_of_total: float  # % of initial stage count
    conversion_rate: float  # % of previous stage (100% for first)
    drop_off: int  # count lost from previous stage
    drop_off_pct: float  # % lost from previous stage


@dataclass
class Bottleneck:
    stage: str
    drop_off_pct: float
    recommendations: list[str]


@dataclass
class FunnelResult:
    """Complete funnel analysis result."""
    name: str
    kind: str  # progression | conversion | onboarding | custom
    stages: list[FunnelStage]
    initial_count: int
    final_count: int
    overall_conversion: float  # final / initial * 100
    bottleneck: Bottleneck | None
    summary: str


@dataclass
class FunnelOptimization:
    funnel: str
    stage: str
    current_drop_off: float
    potential_lift: float
    priority: str  # high | medium | low
    suggestions: list[str]


@dataclass
class FunnelAnalysisResult:
    funnels: list[FunnelResult] = field(default_factory=list)
    optimizations: list[FunnelOptimization] = field(default_factory=list)
    game_type: str = "custom"


@dataclass(frozen=True)
class FunnelStepPattern:
    name: str
    event_match: tuple[str, ...] = ()
    level_range: tuple[int, int] | None = None


@dataclass(frozen=True)
class GenreFunnel:
    name: str
    kind: str
    steps: tuple[FunnelStepPattern, ...]


P = FunnelStepPattern

GENRE_FUNNELS: dict[str, list[GenreFunnel]] = {
    "puzzle": [
        GenreFunnel("Tutorial Completion", "onboarding", (
            P("Install", ("install", "first_open")),
            P("Tutorial Start", ("tutorial_start", "first_level")),
            P("Tutorial Complete", ("tutorial_complete", "tutorial_end")),
            P("Level 1", level_range=(1, 1)),
        )),
    ],
    "idle": [
        GenreFunnel("Prestige Funnel", "progression", (
            P("Start", ("session_start", "first_open")),
            P("First Milestone", ("milestone", "achievement")),
            P("Prestige", ("prestige", "rebirth", "ascend")),
        )),
    ],
    "gacha_rpg": [
        GenreFunnel("First Pull Journey", "conversion", (
            P("Install", ("install", "first_open")),
            P("Tutorial", ("tutorial_complete",)),
            P("Free Pull", ("gacha_free", "free_pull")),
            P("Paid Pull", ("gacha_paid", "paid_pull", "purchase")),
        )),
    ],
    "battle_royale": [
        GenreFunnel("Match Completion", "progression", (
            P("Queue", ("match_start", "queue")),
            P("Land", ("land", "drop")),
            P("First Kill", ("kill", "elimination")),
            P("Top 10", ("placement",)),
            P("Victory", ("win", "victory")),
        )),
    ],
    "match3_meta": [
        GenreFunnel("Meta Engagement", "progression", (
            P("First Match", level_range=(1, 1)),
            P("Story Chapter 1", ("story", "chapter")),
            P("First Decoration", ("decorate", "customize")),
            P("First Purchase", ("purchase", "iap")),
        )),
    ],
}

OPTIMIZATION_SUGGESTIONS: dict[str, list[str]] = {
    "tutorial": [
        "Simplify tutorial steps",
        "Add skip option for returning users",
        "Reduce tutorial length",
    ],
    "early_level": [
        "Reduce early level difficulty",
        "Add more hints or helpers",
        "Consider softer difficulty curve",
    ],
    "mid_level": [
        "Check for difficulty spike",
        "Add checkpoint or save system",
        "Review level design at this point",
    ],
    "purchase": [
        "Review pricing strategy",
        "Improve value proposition",
        "Consider introductory offers",
    ],
    "retention": [
        "Add push notifications",
        "Implement daily rewards",
        "Review content pacing",
    ],
    "default": [
        "Investigate user feedback",
        "Review analytics for this step",
        "Consider A/B testing improvements",
    ],
}


def suggestion_category(stage_name: str, index: int, total: int) -> str:
    lower = stage_name.lower()
    if "tutorial" in lower or index == 0:
        return "tutorial"
    if "purchase" in lower or "buy" in lower:
        return "purchase"
    if "day" in lower or "return" in lower:
        return "retention"
    if index < total * 0.3:
        return "early_level"
    if index < total * 0.7:
        return "mid_level"
    return "default"


def analyze_funnel(
    stage_counts: list[tuple[str, int]],
    name: str = "Funnel",
    kind: str = "custom",
) -> FunnelResult | None:
    """Analyze a funnel from stage counts.

    Args:
        stage_counts: List of (stage_name, count) tuples in order.
        name: Display name of the funnel.
        kind: Funnel family used for reporting.

    Returns:
        FunnelResult or None if there are fewer than two stages or nobody
        entered the first one.
    """
    if not stage_counts or len(stage_counts) < 2:
        return None

    initial = stage_counts[0][1]
    if initial <= 0:
        return None

    stages: list[FunnelStage] = []
    for i, (stage_name, count) in enumerate(stage_counts):
        count = max(0, count)
        if i == 0:
            conversion, drop_off, drop_pct = 100.0, 0, 0.0
        else:
            prev = max(0, stage_counts[i - 1][1])
            conversion = count / prev * 100 if prev > 0 else 0.0
            drop_off = max(0, prev - count)
            drop_pct = drop_off / prev * 100 if prev > 0 else 0.0
        stages.append(FunnelStage(
            name=stage_name,
            count=count,
            pct_of_total=round(count / initial * 100, 2),
            conversion_rate=round(conversion, 2),
            drop_off=drop_off,
            drop_off_pct=round(drop_pct, 2),
        ))

    final = stages[-1].count
    overall = final / initial * 100
    bottleneck = find_bottleneck(stages)

    summary = f"{name}: {initial} → {final} ({overall:.1f}% overall conversion)."
    if bottleneck:
        summary += f" Biggest drop: {bottleneck.stage} ({bottleneck.drop_off_pct:.1f}% lost)."

    return FunnelResult(
        name=name,
        kind=kind,
        stages=stages,
        initial_count=initial,
        final_count=final,
        overall_conversion=round(overall, 2),
        bottleneck=bottleneck,
        summary=summary,
    )


def find_bottleneck(stages: list[FunnelStage]) -> Bottleneck | None:
    """Largest stage drop-off, ignored below BOTTLENECK_MIN_DROP percent."""
    worst_idx, worst = -1, 0.0
    for i in range(1, len(stages)):
        if stages[i].drop_off_pct > worst:
            worst_idx, worst = i, stages[i].drop_off_pct
    if worst_idx < 0 or worst < BOTTLENECK_MIN_DROP:
        return None
    stage = stages[worst_idx]
    category = suggestion_category(stage.name, worst_idx, len(stages))
    return Bottleneck(stage=stage.name, drop_off_pct=worst, recommendations=OPTIMIZATION_SUGGESTIONS[category])


def funnel_optimizations(funnel: FunnelResult) -> list[FunnelOptimization]:
    """Flag every stage losing more than OPTIMIZE_MIN_DROP percent."""
    found: list[FunnelOptimization] = []
    total = len(funnel.stages)
    for i, stage in enumerate(funnel.stages[1:], start=1):
        if stage.drop_off_pct <= OPTIMIZE_MIN_DROP:
            continue
        priority = "high" if stage.drop_off_pct > 50 else "medium" if stage.drop_off_pct > 40 else "low"
        found.append(FunnelOptimization(
            funnel=funnel.name,
            stage=stage.name,
            current_drop_off=stage.drop_off_pct,
            potential_lift=round(stage.drop_off_pct * 0.5, 2),
            priority=priority,
            suggestions=OPTIMIZATION_SUGGESTIONS[suggestion_category(stage.name, i, total)],
        ))
    return found


class FunnelDetector:
    def detect(
        self,
        table: Table,
        meanings: list[ColumnMeaning],
        game_type: str,
    ) -> FunnelAnalysisResult:
        result = FunnelAnalysisResult(game_type=game_type)
        user_col = find_column(meanings, SemanticType.USER_ID)
        if not user_col:
            return result

        level_col = find_column(meanings, SemanticType.LEVEL)
        step_col = find_column(meanings, SemanticType.FUNNEL_STEP)
        event_col = find_column(meanings, SemanticType.EVENT_NAME)

        if level_col:
            funnel = self.level_funnel(table.rows, user_col, level_col)
            if funnel:
                result.funnels.append(funnel)
        if step_col:
            funnel = self.step_funnel(table.rows, user_col, step_col)
            if funnel:
                result.funnels.append(funnel)
        if event_col:
            for pattern in GENRE_FUNNELS.get(game_type, []):
                funnel = self.event_funnel(table.rows, user_col, event_col, pattern, level_col)
                if funnel and funnel.overall_conversion > 0:
                    result.funnels.append(funnel)

        order = {"high": 0, "medium": 1, "low": 2}
        optimizations = [o for f in result.funnels for o in funnel_optimizations(f)]
        optimizations.sort(key=lambda o: order[o.priority])
        result.optimizations = optimizations[:MAX_OPTIMIZATIONS]
        logger.info("Funnel detection: %d funnels, %d optimizations", len(result.funnels), len(result.optimizations))
        return result

    @staticmethod
    def level_funnel(
        rows: list[dict],
        user_col: str,
        level_col: str,
        max_levels: int = MAX_LEVEL_STEPS,
    ) -> FunnelResult | None:
        """A player at level N is counted for every level 1..N."""
        max_level: dict[str, int] = {}
        for row in rows:
            user = row.get(user_col)
            level = to_number(row.get(level_col))
            if is_missing(user) or level is None or level <= 0:
                continue
            key = str(user)
            max_level[key] = max(max_level.get(key, 0), int(level))

        if not max_level:
            return None

        top = min(max(max_level.values()), max_levels)
        counts = [
            (f"Level {lvl}", sum(1 for m in max_level.values() if m >= lvl))
            for lvl in range(1, top + 1)
        ]
        if len(counts) == 1:
            # A single level still reads as a funnel from total players
            counts.insert(0, ("Players", len(max_level)))
        return analyze_funnel(counts, name="Level Progression", kind="progression")

    @staticmethod
    def step_funnel(rows: list[dict], user_col: str, step_col: str) -> FunnelResult | None:
        users_at: dict[str, set[str]] = {}
        for row in rows:
            user, step = row.get(user_col), row.get(step_col)
            if is_missing(user) or is_missing(step):
                continue
            users_at.setdefault(str(step), set()).add(str(user))
        counts = [(step, len(users)) for step, users in users_at.items()]
        return analyze_funnel(counts, name="Conversion Funnel", kind="conversion")

    @staticmethod
    def event_funnel(
        rows: list[dict],
        user_col: str,
        event_col: str,
        pattern: GenreFunnel,
        level_col: str | None = None,
    ) -> FunnelResult | None:
        reached: list[set[str]] = [set() for _ in pattern.steps]
        for row in rows:
            user = row.get(user_col)
            if is_missing(user):
                continue
            event = str(row.get(event_col) or "").lower()
            level = to_number(row.get(level_col)) if level_col else None
            for i, step in enumerate(pattern.steps):
                if step.event_match and event and any(m in event for m in step.event_match):
                    reached[i].add(str(user))
                elif step.level_range and level is not None:
                    low, high = step.level_range
                    if low <= level <= high:
                        reached[i].add(str(user))
        counts = [(step.name, len(users)) for step, users in zip(pattern.steps, reached)]
        return analyze_funnel(counts, name=pattern.name, kind=pattern.kind)
