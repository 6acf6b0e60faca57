"""Tests for funnel analysis and detection."""

from game_insights.cognitive.schema_analyzer import SchemaAnalyzer
from game_insights.discovery.funnel_analysis import (
    GENRE_FUNNELS,
    FunnelDetector,
    analyze_funnel,
    find_bottleneck,
    funnel_optimizations,
    suggestion_category,
)
from game_insights.ingestion.table import Table


def _detect(records, game_type="custom"):
    table = Table.from_records(records)
    meanings = SchemaAnalyzer().analyze_table(table)
    return FunnelDetector().detect(table, meanings, game_type)


class TestAnalyzeFunnel:
    def test_basic_funnel(self):
        result = analyze_funnel([("Install", 1000), ("Tutorial", 200), ("Purchase", 50)])
        assert result.initial_count == 1000
        assert result.final_count == 50
        assert result.overall_conversion == 5.0
        assert result.kind == "custom"

    def test_needs_two_stages(self):
        assert analyze_funnel([]) is None
        assert analyze_funnel([("A", 100)]) is None

    def test_needs_entrants(self):
        assert analyze_funnel([("A", 0), ("B", 0)]) is None

    def test_stage_math(self):
        result = analyze_funnel([("A", 100), ("B", 70), ("C", 35)])
        b, c = result.stages[1], result.stages[2]
        assert b.conversion_rate == 70.0
        assert b.drop_off == 30
        assert c.drop_off_pct == 50.0
        assert c.pct_of_total == 35.0
        assert result.stages[0].conversion_rate == 100.0

    def test_summary_mentions_bottleneck(self):
        result = analyze_funnel([("A", 100), ("B", 70), ("C", 35)], name="Onboarding")
        assert result.summary.startswith("Onboarding: 100")
        assert "Biggest drop: C" in result.summary


class TestBottleneck:
    def test_largest_drop(self):
        result = analyze_funnel([("A", 100), ("B", 80), ("C", 20)])
        assert result.bottleneck.stage == "C"
        assert result.bottleneck.drop_off_pct == 75.0
        assert result.bottleneck.recommendations

    def test_small_drops_ignored(self):
        result = analyze_funnel([("A", 100), ("B", 95), ("C", 91)])
        assert result.bottleneck is None
        assert find_bottleneck(result.stages) is None


class TestOptimizations:
    def test_priorities(self):
        funnel = analyze_funnel([("A", 100), ("B", 65), ("C", 35), ("D", 10)])
        opts = {o.stage: o for o in funnel_optimizations(funnel)}
        assert "B" in opts and opts["B"].priority == "low"
        assert opts["C"].priority == "medium"
        assert opts["D"].priority == "high"
        assert opts["D"].potential_lift == round(opts["D"].current_drop_off * 0.5, 2)

    def test_suggestion_categories(self):
        assert suggestion_category("Tutorial Done", 2, 5) == "tutorial"
        assert suggestion_category("First Purchase", 3, 5) == "purchase"
        assert suggestion_category("Level 2", 1, 10) == "early_level"
        assert suggestion_category("Level 5", 5, 10) == "mid_level"
        assert suggestion_category("Level 9", 9, 10) == "default"


class TestFunnelDetector:
    def test_level_funnel(self):
        records = [{"user_id": f"u{i}", "level": lvl} for i, lvl in enumerate([1, 2, 2, 3, 3, 3])]
        result = _detect(records)
        funnel = result.funnels[0]
        assert funnel.name == "Level Progression"
        assert [(s.name, s.count) for s in funnel.stages] == [("Level 1", 6), ("Level 2", 5), ("Level 3", 3)]

    def test_single_level_uses_player_stage(self):
        funnel = FunnelDetector.level_funnel([{"u": "a", "l": 1}, {"u": "b", "l": 1}], "u", "l")
        assert [s.name for s in funnel.stages] == ["Players", "Level 1"]

    def test_level_funnel_capped(self):
        funnel = FunnelDetector.level_funnel([{"u": "a", "l": 50}], "u", "l")
        assert len(funnel.stages) == 20

    def test_step_funnel_in_first_seen_order(self):
        records = (
            [{"user_id": f"u{i}", "funnel_step": "open"} for i in range(10)]
            + [{"user_id": f"u{i}", "funnel_step": "signup"} for i in range(4)]
            + [{"user_id": "u0", "funnel_step": "pay"}]
        )
        result = _detect(records)
        funnel = next(f for f in result.funnels if f.kind == "conversion")
        assert [s.name for s in funnel.stages] == ["open", "signup", "pay"]
        assert funnel.overall_conversion == 10.0

    def test_genre_event_funnel(self):
        records = (
            [{"user_id": f"u{i}", "event_name": "match_start"} for i in range(10)]
            + [{"user_id": f"u{i}", "event_name": "land"} for i in range(8)]
            + [{"user_id": f"u{i}", "event_name": "kill"} for i in range(5)]
            + [{"user_id": f"u{i}", "event_name": "placement_top10"} for i in range(3)]
            + [{"user_id": "u0", "event_name": "victory"}]
        )
        result = _detect(records, "battle_royale")
        funnel = next(f for f in result.funnels if f.name == "Match Completion")
        assert [s.count for s in funnel.stages] == [10, 8, 5, 3, 1]
        assert result.game_type == "battle_royale"
        assert result.optimizations

    def test_event_funnel_without_finishers_dropped(self):
        records = [{"user_id": "u1", "event_name": "match_start"}, {"user_id": "u2", "event_name": "land"}]
        result = _detect(records, "battle_royale")
        assert result.funnels == []

    def test_optimizations_sorted_by_priority(self):
        records = [{"user_id": f"u{i}", "level": lvl} for i, lvl in enumerate([1] * 10 + [2] * 4 + [3])]
        result = _detect(records)
        order = {"high": 0, "medium": 1, "low": 2}
        ranks = [order[o.priority] for o in result.optimizations]
        assert ranks == sorted(ranks)

    def test_needs_user_column(self):
        result = _detect([{"level": 1}, {"level": 2}])
        assert result.funnels == []

    def test_every_genre_funnel_has_steps(self):
        for patterns in GENRE_FUNNELS.values():
            for pattern in patterns:
                assert len(pattern.steps) >= 2
