"""Tests for the analysis pipeline orchestrator."""

import random
from datetime import date, timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from game_insights.discovery.data_sampler import DataSampler
from game_insights.discovery.engine import (
    DataPipeline,
    PipelineConfig,
    StageResult,
    _classify_error,
    _StageTracker,
)
from game_insights.discovery.insight_generator import InsightGenerator
from game_insights.ingestion.table import InvalidTableError, Table


def _day(offset):
    return (date(2024, 1, 1) + timedelta(days=offset)).isoformat()


def _telemetry(users=20, days=14):
    records = []
    for u in range(users):
        for d in range(0, days, (u % 3) + 1):
            records.append({
                "user_id": f"u{u}",
                "session_id": f"u{u}-s{d}",
                "timestamp": _day(d),
                "revenue": 4.99 if (u + d) % 7 == 0 else 0,
                "level": min(1 + d // 2, 10),
                "platform": " ios " if u == 0 and d == 0 else ("ios" if u % 2 else "android"),
            })
    return Table.from_records(records, source="events")


def _settings(**overrides):
    values = dict(
        sample_size=500, sampling_strategy="smart", auto_clean=True, min_insight_confidence=0.5,
        max_insights=15, min_insights=5, retention_days=[1, 3, 7], ltv_projection_days=30,
        use_external_insights=False, gemini_api_key="", gemini_model="gemini-2.0-flash", random_seed=1,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


class TestClassifyError:
    def test_rate_limit(self):
        assert _classify_error(RuntimeError("429 Too Many Requests")) == "rate_limit"

    def test_auth(self):
        assert _classify_error(RuntimeError("invalid api_key")) == "auth_error"

    def test_timeout(self):
        assert _classify_error(TimeoutError()) == "timeout"

    def test_parse(self):
        assert _classify_error(ValueError("could not decode JSON")) == "parse_error"

    def test_network(self):
        assert _classify_error(OSError("connection refused")) == "network_error"

    def test_internal(self):
        assert _classify_error(ZeroDivisionError("division by zero")) == "internal_error"


class TestStageTracker:
    def test_records_success_and_failure(self):
        tracker = _StageTracker()
        tracker.ok("sample", 1, 0.0)
        tracker.failed("metrics", RuntimeError("boom"), 0.0)
        results = tracker.results
        assert [r.name for r in results] == ["sample", "metrics"]
        assert results[0].ok and not results[1].ok
        assert results[1].error_type == "internal_error"
        assert tracker.failed_names == ["metrics"]

    def test_stage_result_ok(self):
        assert StageResult("x", value=3).ok
        assert not StageResult("x", error="boom").ok


class TestRun:
    @pytest.mark.asyncio
    async def test_full_run(self):
        table = _telemetry()
        result = await DataPipeline(sampler=DataSampler(random.Random(3))).run(table)

        assert result.stats.original_rows == table.row_count
        assert result.stats.sampled_rows == table.row_count
        assert result.stats.failed_stages == []
        assert result.stats.external_insights_used is False
        assert result.metrics.monetization is not None
        assert result.metrics.retention is not None
        assert result.anomalies is not None
        assert result.cohorts is not None
        assert result.funnels.funnels
        assert result.charts
        assert len(result.insights) >= 5
        names = [s.name for s in result.stages]
        assert names[:3] == ["sample", "schema", "game_type"]
        assert "insights" in names

    @pytest.mark.asyncio
    async def test_auto_clean_trims_whitespace(self):
        result = await DataPipeline().run(_telemetry())
        assert result.cleaning_result is not None
        assert " ios " not in [r["platform"] for r in result.cleaning_result.cleaned.rows]
        assert result.quality_after >= result.quality_before

    @pytest.mark.asyncio
    async def test_clean_disabled(self):
        result = await DataPipeline().run(_telemetry(), PipelineConfig(auto_clean=False))
        assert result.cleaning_plan is not None
        assert result.cleaning_result is None
        assert result.quality_after == result.quality_before

    @pytest.mark.asyncio
    async def test_sampling_large_tables(self):
        table = _telemetry(users=60, days=30)
        result = await DataPipeline(sampler=DataSampler(random.Random(1))).run(
            table, PipelineConfig(sample_size=100),
        )
        assert result.stats.sampled_rows == 100
        assert result.sample.sampling_ratio == pytest.approx(100 / table.row_count)

    @pytest.mark.asyncio
    async def test_game_type_override(self):
        result = await DataPipeline().run(_telemetry(), PipelineConfig(game_type="idle"))
        assert result.game_type == "idle"
        assert result.game_type_confidence == 1.0

    @pytest.mark.asyncio
    async def test_invalid_table_raises(self):
        with pytest.raises(InvalidTableError):
            await DataPipeline().run(Table(columns=["a"], rows=[]))

    @pytest.mark.asyncio
    async def test_failing_stage_isolated(self):
        calculator = MagicMock()
        calculator.calculate.side_effect = RuntimeError("degenerate column")
        result = await DataPipeline(metric_calculator=calculator).run(_telemetry())

        assert result.metrics is None
        assert result.stats.failed_stages == ["metrics"]
        failed = next(s for s in result.stages if s.name == "metrics")
        assert failed.error == "degenerate column"
        assert failed.error_type == "internal_error"
        assert result.cohorts is not None
        assert result.anomalies is not None
        assert result.insights

    @pytest.mark.asyncio
    async def test_external_insights(self):
        backend = AsyncMock()
        backend.generate_insights.return_value = {"insights": [
            {"title": "Android payers churn faster", "description": "Android D7 is half of iOS", "priority": 8},
        ]}
        pipeline = DataPipeline(insight_generator=InsightGenerator(backend=backend))

        result = await pipeline.run(_telemetry(), PipelineConfig(use_external_insights=True))

        assert result.stats.external_insights_used is True
        backend.generate_insights.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_external_disabled_skips_backend(self):
        backend = AsyncMock()
        pipeline = DataPipeline(insight_generator=InsightGenerator(backend=backend))
        await pipeline.run(_telemetry())
        backend.generate_insights.assert_not_awaited()


class TestEntryPoints:
    def test_analyze(self):
        meanings, detection = DataPipeline().analyze(_telemetry())
        assert "user_id" in [m.column for m in meanings]
        assert detection.game_type

    def test_clean(self):
        result = DataPipeline().clean(_telemetry())
        assert result.quality_score_after >= result.quality_score_before

    def test_calculate_metrics(self):
        metrics = DataPipeline().calculate_metrics(_telemetry())
        assert "monetization" in metrics.available_metrics

    def test_recommend_charts(self):
        charts, layout = DataPipeline().recommend_charts(_telemetry())
        assert charts
        assert layout.main_charts

    def test_detect_anomalies(self):
        result = DataPipeline().detect_anomalies(_telemetry())
        assert "revenue" in result.metrics_analyzed

    @pytest.mark.asyncio
    async def test_generate_insights(self):
        insights = await DataPipeline().generate_insights(_telemetry(), use_external=False)
        assert len(insights) >= 5


class TestFromSettings:
    def test_wires_config(self):
        pipeline = DataPipeline.from_settings(_settings(max_insights=7))
        assert pipeline.insight_generator.max_insights == 7
        assert pipeline.insight_generator.backend is None
        assert pipeline.metric_calculator.config.retention_days == (1, 3, 7)

    def test_backend_enabled_with_key(self):
        pipeline = DataPipeline.from_settings(_settings(use_external_insights=True, gemini_api_key="k"))
        assert pipeline.insight_generator.backend.api_key == "k"

    def test_backend_needs_key(self):
        pipeline = DataPipeline.from_settings(_settings(use_external_insights=True))
        assert pipeline.insight_generator.backend is None

    def test_config_from_settings(self):
        config = DataPipeline.config_from_settings(_settings(sample_size=50, auto_clean=False))
        assert config.sample_size == 50
        assert config.auto_clean is False
