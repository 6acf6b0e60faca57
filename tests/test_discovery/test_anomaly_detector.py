"""Tests for time-series anomaly detection over daily metrics."""

from datetime import date, timedelta

from game_insights.cognitive.schema_analyzer import SchemaAnalyzer
from game_insights.discovery.anomaly_detector import AnomalyDetector, AnomalyThresholds
from game_insights.ingestion.table import Table


def _day(offset):
    return (date(2024, 1, 1) + timedelta(days=offset)).isoformat()


def _detect(records, thresholds=None):
    table = Table.from_records(records)
    meanings = SchemaAnalyzer().analyze_table(table)
    return AnomalyDetector(thresholds).detect(table, meanings)


def _revenue_series(values):
    return [{"user_id": "u1", "timestamp": _day(i), "revenue": v} for i, v in enumerate(values)]


class TestZScore:
    def test_spike_detected(self):
        values = [100] * 20
        values[14] = 500
        result = _detect(_revenue_series(values))
        top = result.anomalies[0]
        assert top.id == "revenue-zscore-2024-01-15"
        assert top.type == "spike"
        assert top.severity == "critical"
        assert top.value == 500
        assert top.expected_value == 120
        assert "spiked" in top.description
        assert top.possible_causes

    def test_drop_detected(self):
        values = [100] * 20
        values[10] = 0
        result = _detect(_revenue_series(values))
        zscores = [a for a in result.anomalies if "-zscore-" in a.id]
        assert len(zscores) == 1
        assert zscores[0].type == "drop"

    def test_stable_series_has_no_anomalies(self):
        result = _detect(_revenue_series([100] * 20))
        assert result.anomalies == []
        assert result.baseline_stats["revenue"].std_dev == 0

    def test_small_change_ignored(self):
        values = [100, 101, 99, 100, 102, 98, 100, 100, 101, 99]
        values[5] = 110
        result = _detect(_revenue_series(values))
        assert not [a for a in result.anomalies if "-zscore-" in a.id]


class TestMovingAverageAndCusum:
    def test_moving_average_flags_spike(self):
        values = [100] * 20
        values[14] = 500
        ids = {a.id for a in _detect(_revenue_series(values)).anomalies}
        assert "revenue-ma-2024-01-15" in ids

    def test_cusum_trend_change(self):
        values = [100] * 20
        values[14] = 500
        cusum = [a for a in _detect(_revenue_series(values)).anomalies if a.type == "trend_change"]
        assert len(cusum) == 1
        assert cusum[0].severity == "high"
        assert cusum[0].expected_value == 100

    def test_cusum_needs_two_weeks(self):
        values = [100] * 10
        values[8] = 500
        result = _detect(_revenue_series(values))
        assert not [a for a in result.anomalies if a.type == "trend_change"]


class TestDetect:
    def test_sorted_by_severity_then_recent(self):
        values = [100] * 20
        values[14] = 500
        anomalies = _detect(_revenue_series(values)).anomalies
        order = {"critical": 0, "high": 1, "medium": 2, "low": 3}
        ranks = [order[a.severity] for a in anomalies]
        assert ranks == sorted(ranks)
        lows = [a.timestamp for a in anomalies if a.severity == "low"]
        assert lows == sorted(lows, reverse=True)

    def test_ids_unique_and_deterministic(self):
        values = [100] * 20
        values[14] = 500
        first = [a.id for a in _detect(_revenue_series(values)).anomalies]
        second = [a.id for a in _detect(_revenue_series(values)).anomalies]
        assert first == second
        assert len(first) == len(set(first))

    def test_too_few_points(self):
        result = _detect(_revenue_series([100, 500, 100]))
        assert result.anomalies == []
        assert result.metrics_analyzed == ["revenue"]
        assert result.baseline_stats == {}

    def test_needs_timestamp(self):
        result = _detect([{"user_id": "u1", "revenue": 5}] * 10)
        assert result.anomalies == []
        assert result.metrics_analyzed == []
        assert result.time_range is None

    def test_time_range(self):
        result = _detect(_revenue_series([1, 2, 3]))
        assert result.time_range == ("2024-01-01", "2024-01-03")

    def test_error_counts_per_day(self):
        records = []
        for d in range(14):
            errors = 20 if d == 10 else 1
            records += [{"timestamp": _day(d), "error_type": "crash"}] * errors
            records += [{"timestamp": _day(d), "error_type": ""}] * 5
        result = _detect(records)
        assert result.metrics_analyzed == ["error_type"]
        spike = next(a for a in result.anomalies if a.id == "error_type-zscore-2024-01-11")
        assert spike.value == 20

    def test_custom_thresholds(self):
        values = [100] * 20
        values[14] = 500
        result = _detect(_revenue_series(values), AnomalyThresholds(min_data_points=30))
        assert result.anomalies == []
