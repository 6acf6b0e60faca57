"""Analysis pipeline — one table in, one aggregate result out.

Flow:
    1. Validate the table (fatal on malformed input)
    2. Sample
    3. Infer column meanings
    4. Detect game genre
    5. Quality analysis and, optionally, cleaning
    6. Chart recommendations and dashboard layout
    7. Metrics, anomalies, cohorts, funnels (each isolated)
    8. Insights from whatever the previous stages produced

Optional stages never abort the run: a failure is logged, classified and
recorded as a StageResult, and the corresponding result field stays None.
"""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

from game_insights.cognitive.game_type_detector import DetectionResult, GameTypeDetector
from game_insights.cognitive.insight_backend import GeminiInsightBackend
from game_insights.cognitive.schema_analyzer import ColumnMeaning, SchemaAnalyzer
from game_insights.discovery.anomaly_detector import AnomalyDetectionResult, AnomalyDetector
from game_insights.discovery.chart_selector import ChartRecommendation, ChartSelector, DashboardLayout
from game_insights.discovery.cohort_analysis import CohortAnalyzer, CohortResult
from game_insights.discovery.data_cleaner import CleaningPlan, CleaningResult, DataCleaner
from game_insights.discovery.data_sampler import DataSampler, SampleConfig, SampleResult
from game_insights.discovery.funnel_analysis import FunnelAnalysisResult, FunnelDetector
from game_insights.discovery.insight_generator import Insight, InsightGenerator
from game_insights.discovery.metric_calculator import CalculatedMetrics, MetricCalculator, MetricConfig
from game_insights.ingestion.table import ColumnInfo, Table, build_schema

logger = logging.getLogger(__name__)


def _classify_error(exc: Exception) -> str:
    """Classify an exception into a category for diagnostics."""
    msg = str(exc).lower()
    cls_name = type(exc).__name__.lower()
    if "429" in msg or "quota" in msg or "rate limit" in msg or "resource_exhausted" in msg:
        return "rate_limit"
    if "401" in msg or "403" in msg or "api_key" in msg or "permission" in msg or "unauthorized" in msg:
        return "auth_error"
    if "timeout" in msg or "timed out" in msg or cls_name in ("timeouterror", "readtimeout"):
        return "timeout"
    if "json" in msg or "parse" in msg or "decode" in msg:
        return "parse_error"
    if "connect" in msg or "network" in msg or "dns" in msg or "socket" in msg:
        return "network_error"
    return "internal_error"


def _elapsed_ms(t0: float) -> int:
    return int((time.monotonic() - t0) * 1000)


@dataclass
class StageResult:
    name: str
    value: Any = None
    error: str | None = None
    error_type: str | None = None
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None


class _StageTracker:
    """Records per-stage outcomes for run diagnostics."""

    def __init__(self) -> None:
        self._results: list[StageResult] = []

    def ok(self, name: str, value: Any, t0: float) -> Any:
        self._results.append(StageResult(name=name, value=value, duration_ms=_elapsed_ms(t0)))
        return value

    def failed(self, name: str, exc: Exception, t0: float) -> None:
        self._results.append(StageResult(
            name=name,
            error=str(exc)[:500],
            error_type=_classify_error(exc),
            duration_ms=_elapsed_ms(t0),
        ))

    @property
    def results(self) -> list[StageResult]:
        return list(self._results)

    @property
    def failed_names(self) -> list[str]:
        return [r.name for r in self._results if not r.ok]


@dataclass
class PipelineConfig:
    sample_size: int = 500
    sampling_strategy: str = "smart"
    priority_columns: list[str] | None = None
    auto_clean: bool = True
    approved_actions: str | Iterable[str] = "all"
    use_external_insights: bool = False
    game_type: str | None = None  # skips detection when set
    cohort_granularity: str = "week"


@dataclass
class PipelineStats:
    original_rows: int
    sampled_rows: int
    cleaned_rows: int
    processing_time_ms: int
    external_insights_used: bool
    failed_stages: list[str] = field(default_factory=list)


@dataclass
class PipelineResult:
    sample: SampleResult
    schema: list[ColumnInfo]
    meanings: list[ColumnMeaning]
    game_type: str
    game_type_confidence: float
    game_type_reasons: list[str]
    quality_before: int
    quality_after: int
    cleaning_plan: CleaningPlan | None
    cleaning_result: CleaningResult | None
    charts: list[ChartRecommendation]
    layout: DashboardLayout
    metrics: CalculatedMetrics | None
    anomalies: AnomalyDetectionResult | None
    cohorts: CohortResult | None
    funnels: FunnelAnalysisResult | None
    insights: list[Insight]
    stages: list[StageResult]
    stats: PipelineStats


class DataPipeline:
    """Runs every analysis stage over one table; collaborators are injected."""

    def __init__(
        self,
        sampler: DataSampler | None = None,
        schema_analyzer: SchemaAnalyzer | None = None,
        game_type_detector: GameTypeDetector | None = None,
        cleaner: DataCleaner | None = None,
        chart_selector: ChartSelector | None = None,
        metric_calculator: MetricCalculator | None = None,
        anomaly_detector: AnomalyDetector | None = None,
        cohort_analyzer: CohortAnalyzer | None = None,
        funnel_detector: FunnelDetector | None = None,
        insight_generator: InsightGenerator | None = None,
    ) -> None:
        self.sampler = sampler or DataSampler()
        self.schema_analyzer = schema_analyzer or SchemaAnalyzer()
        self.game_type_detector = game_type_detector or GameTypeDetector()
        self.cleaner = cleaner or DataCleaner()
        self.chart_selector = chart_selector or ChartSelector()
        self.metric_calculator = metric_calculator or MetricCalculator()
        self.anomaly_detector = anomaly_detector or AnomalyDetector()
        self.cohort_analyzer = cohort_analyzer or CohortAnalyzer()
        self.funnel_detector = funnel_detector or FunnelDetector()
        self.insight_generator = insight_generator or InsightGenerator()

    @classmethod
    def from_settings(cls, settings: Any) -> DataPipeline:
        """Wire default collaborators from application settings."""
        rng = random.Random(settings.random_seed) if settings.random_seed is not None else None
        backend = GeminiInsightBackend.from_settings(settings) if settings.use_external_insights else None
        return cls(
            sampler=DataSampler(rng=rng),
            metric_calculator=MetricCalculator(MetricConfig(
                retention_days=tuple(settings.retention_days),
                ltv_projection_days=settings.ltv_projection_days,
            )),
            insight_generator=InsightGenerator(
                backend=backend,
                min_confidence=settings.min_insight_confidence,
                max_insights=settings.max_insights,
                min_insights=settings.min_insights,
            ),
        )

    @staticmethod
    def config_from_settings(settings: Any) -> PipelineConfig:
        return PipelineConfig(
            sample_size=settings.sample_size,
            sampling_strategy=settings.sampling_strategy,
            auto_clean=settings.auto_clean,
            use_external_insights=settings.use_external_insights,
        )

    # ------------------------------------------------------------------
    # Single-stage entry points
    # ------------------------------------------------------------------

    def analyze(self, table: Table) -> tuple[list[ColumnMeaning], DetectionResult]:
        """Column meanings plus the detected genre."""
        meanings = self.schema_analyzer.analyze_table(table)
        return meanings, self.game_type_detector.detect(meanings)

    def clean(
        self,
        table: Table,
        meanings: list[ColumnMeaning] | None = None,
        approved: str | Iterable[str] = "all",
    ) -> CleaningResult:
        meanings = meanings if meanings is not None else self.schema_analyzer.analyze_table(table)
        plan = self.cleaner.analyze(table, meanings)
        return self.cleaner.clean(table, plan, approved)

    def calculate_metrics(self, table: Table, meanings: list[ColumnMeaning] | None = None) -> CalculatedMetrics:
        meanings = meanings if meanings is not None else self.schema_analyzer.analyze_table(table)
        return self.metric_calculator.calculate(table, meanings)

    def recommend_charts(
        self,
        table: Table,
        meanings: list[ColumnMeaning] | None = None,
        game_type: str | None = None,
    ) -> tuple[list[ChartRecommendation], DashboardLayout]:
        if meanings is None or game_type is None:
            detected_meanings, detection = self.analyze(table)
            meanings = meanings if meanings is not None else detected_meanings
            game_type = game_type or detection.game_type
        charts = self.chart_selector.recommend(meanings, game_type)
        return charts, self.chart_selector.get_dashboard_layout(charts)

    def detect_anomalies(self, table: Table, meanings: list[ColumnMeaning] | None = None) -> AnomalyDetectionResult:
        meanings = meanings if meanings is not None else self.schema_analyzer.analyze_table(table)
        return self.anomaly_detector.detect(table, meanings)

    async def generate_insights(
        self,
        table: Table,
        meanings: list[ColumnMeaning] | None = None,
        game_type: str | None = None,
        use_external: bool = True,
    ) -> list[Insight]:
        if meanings is None or game_type is None:
            detected_meanings, detection = self.analyze(table)
            meanings = meanings if meanings is not None else detected_meanings
            game_type = game_type or detection.game_type
        metrics = self.metric_calculator.calculate(table, meanings)
        anomalies = self.anomaly_detector.detect(table, meanings).anomalies
        if use_external:
            return await self.insight_generator.generate(table, meanings, game_type, metrics, anomalies)
        return self.insight_generator.generate_template_insights(table, meanings, game_type, metrics, anomalies)

    # ------------------------------------------------------------------
    # Full run
    # ------------------------------------------------------------------

    def _optional(self, tracker: _StageTracker, name: str, fn: Callable[[], Any]) -> Any:
        t0 = time.monotonic()
        try:
            return tracker.ok(name, fn(), t0)
        except Exception as exc:
            logger.exception("Stage %s failed, continuing", name)
            tracker.failed(name, exc, t0)
            return None

    async def run(self, table: Table, config: PipelineConfig | None = None) -> PipelineResult:
        """Run all stages; raises InvalidTableError for malformed input."""
        config = config or PipelineConfig()
        started = time.monotonic()
        tracker = _StageTracker()

        table.validate()
        logger.info("Pipeline: %d rows, %d columns from %s",
                    table.row_count, len(table.columns), table.metadata.source)

        # Core stages: sampling, schema and genre feed everything else
        t0 = time.monotonic()
        sample = self.sampler.sample(table, SampleConfig(
            max_rows=config.sample_size,
            strategy=config.sampling_strategy,
            priority_columns=config.priority_columns,
        ))
        tracker.ok("sample", sample, t0)
        working = sample.sample

        t0 = time.monotonic()
        schema = build_schema(working)
        meanings = self.schema_analyzer.analyze(schema)
        tracker.ok("schema", meanings, t0)

        t0 = time.monotonic()
        if config.game_type:
            detection = DetectionResult(
                game_type=config.game_type, confidence=1.0, reasons=["Game type set by caller"], scores={},
            )
        else:
            detection = self.game_type_detector.detect(meanings)
        tracker.ok("game_type", detection, t0)
        game_type = detection.game_type
        logger.info("Pipeline: detected %s (%.2f)", game_type, detection.confidence)

        # Quality and cleaning
        quality_before = self.cleaner.calculate_quality_score(working.rows)
        plan = self._optional(tracker, "quality", lambda: self.cleaner.analyze(working, meanings))
        cleaning = None
        if plan is not None and config.auto_clean and plan.suggested_actions:
            cleaning = self._optional(
                tracker, "clean", lambda: self.cleaner.clean(working, plan, config.approved_actions),
            )
        if cleaning is not None:
            working = cleaning.cleaned
            quality_after = cleaning.quality_score_after
        else:
            quality_after = quality_before

        # Charts
        t0 = time.monotonic()
        charts = self.chart_selector.recommend(meanings, game_type)
        layout = self.chart_selector.get_dashboard_layout(charts)
        tracker.ok("charts", charts, t0)

        # Independent analyses
        metrics = self._optional(tracker, "metrics", lambda: self.metric_calculator.calculate(working, meanings))
        anomalies = self._optional(tracker, "anomalies", lambda: self.anomaly_detector.detect(working, meanings))
        cohorts = self._optional(
            tracker, "cohorts",
            lambda: self.cohort_analyzer.analyze_install_cohorts(working, meanings, config.cohort_granularity),
        )
        funnels = self._optional(tracker, "funnels", lambda: self.funnel_detector.detect(working, meanings, game_type))

        # Insights
        t0 = time.monotonic()
        anomaly_list = anomalies.anomalies if anomalies else None
        try:
            if config.use_external_insights:
                insights = await self.insight_generator.generate(working, meanings, game_type, metrics, anomaly_list)
            else:
                insights = self.insight_generator.generate_template_insights(
                    working, meanings, game_type, metrics, anomaly_list,
                )
            tracker.ok("insights", insights, t0)
        except Exception as exc:
            logger.exception("Insight generation failed, continuing")
            tracker.failed("insights", exc, t0)
            insights = []

        stats = PipelineStats(
            original_rows=table.row_count,
            sampled_rows=sample.sample_row_count,
            cleaned_rows=working.row_count,
            processing_time_ms=_elapsed_ms(started),
            external_insights_used=any(i.source == "external" for i in insights),
            failed_stages=tracker.failed_names,
        )
        logger.info(
            "Pipeline complete: %d insights, %d charts, %d failed stages in %dms",
            len(insights), len(charts), len(stats.failed_stages), stats.processing_time_ms,
        )
        return PipelineResult(
            sample=sample,
            schema=schema,
            meanings=meanings,
            game_type=game_type,
            game_type_confidence=detection.confidence,
            game_type_reasons=detection.reasons,
            quality_before=quality_before,
            quality_after=quality_after,
            cleaning_plan=plan,
            cleaning_result=cleaning,
            charts=charts,
            layout=layout,
            metrics=metrics,
            anomalies=anomalies,
            cohorts=cohorts,
            funnels=funnels,
            insights=insights,
            stages=tracker.results,
            stats=stats,
        )
