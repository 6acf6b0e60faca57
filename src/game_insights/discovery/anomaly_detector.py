"""Time-series anomaly scanning over daily-aggregated game metrics.

Three detectors run per metric:
    z-score         point deviates >= 2σ from the series mean
    moving average  point deviates > 30% from the trailing 7-day mean
    CUSUM           cumulative drift from the first week's baseline
"""

from __future__ import annotations

import logging
import statistics
from dataclasses import dataclass, field

from game_insights.cognitive.schema_analyzer import ColumnMeaning, SemanticType
from game_insights.discovery.metric_calculator import find_column
from game_insights.ingestion.table import Table
from game_insights.utils.values import day_key, is_missing, to_number

logger = logging.getLogger(__name__)

SEVERITY_ORDER = {"critical": 0, "high": 1, "medium": 2, "low": 3}

MOVING_AVERAGE_WINDOW = 7
MOVING_AVERAGE_DEVIATION = 0.3
CUSUM_MIN_POINTS = 14
CUSUM_BASELINE_POINTS = 7
CUSUM_THRESHOLD_SHARE = 0.5

DEFAULT_METRICS: tuple[SemanticType, ...] = (
    SemanticType.REVENUE,
    SemanticType.DAU,
    SemanticType.RETENTION_DAY,
    SemanticType.LEVEL,
    SemanticType.ERROR_TYPE,
)

POSSIBLE_CAUSES: dict[str, list[str]] = {
    "revenue": [
        "Promotional event or sale",
        "App store featuring",
        "Marketing campaign launched",
        "Payment provider issues",
        "New IAP content released",
    ],
    "dau": [
        "Marketing campaign effect",
        "App store visibility change",
        "Technical issues (crashes, servers)",
        "Content update released",
    ],
    "retention": [
        "Onboarding flow changed",
        "Game balance adjustment",
        "Technical stability issues",
    ],
    "engagement": [
        "Event or limited-time content",
        "UI/UX changes",
        "Notification strategy change",
    ],
    "error": [
        "New build deployment",
        "Third-party SDK update",
        "Device OS update",
    ],
    "default": [
        "Recent update or change",
        "External factors",
        "Data collection issue",
    ],
}


@dataclass
class AnomalyThresholds:
    low_std_dev: float = 2.0
    medium_std_dev: float = 2.5
    high_std_dev: float = 3.0
    critical_std_dev: float = 4.0
    min_data_points: int = 7
    min_percent_change: float = 20.0


@dataclass
class Anomaly:
    id: str
    metric: str
    type: str  # spike | drop | trend_change
    severity: str  # low | medium | high | critical
    timestamp: str
    value: float
    expected_value: float
    deviation: float
    percent_change: float
    description: str
    possible_causes: list[str] = field(default_factory=list)


@dataclass
class BaselineStats:
    mean: float
    std_dev: float
    median: float


@dataclass
class AnomalyDetectionResult:
    anomalies: list[Anomaly]
    metrics_analyzed: list[str]
    time_range: tuple[str, str] | None
    baseline_stats: dict[str, BaselineStats]


def _cause_category(semantic: SemanticType) -> str:
    name = semantic.value
    if "revenue" in name or "price" in name or "arpu" in name:
        return "revenue"
    if name in ("dau", "mau", "user_id"):
        return "dau"
    if "retention" in name:
        return "retention"
    if "session" in name or name == "level":
        return "engagement"
    if "error" in name:
        return "error"
    return "default"


class AnomalyDetector:
    def __init__(self, thresholds: AnomalyThresholds | None = None) -> None:
        self.thresholds = thresholds or AnomalyThresholds()

    def detect(
        self,
        table: Table,
        meanings: list[ColumnMeaning],
        metrics: tuple[SemanticType, ...] = DEFAULT_METRICS,
    ) -> AnomalyDetectionResult:
        """Scan every configured metric column present in *meanings*."""
        ts_col = find_column(meanings, SemanticType.TIMESTAMP)
        user_col = find_column(meanings, SemanticType.USER_ID)

        anomalies: list[Anomaly] = []
        analyzed: list[str] = []
        baselines: dict[str, BaselineStats] = {}
        time_range = None

        if ts_col:
            days = sorted(d for d in (day_key(r.get(ts_col)) for r in table.rows) if d)
            if days:
                time_range = (days[0], days[-1])

        for semantic in metrics:
            col = find_column(meanings, semantic)
            if not col or not ts_col:
                continue
            analyzed.append(col)

            series = self._aggregate_daily(table.rows, col, ts_col, user_col, semantic)
            if len(series) < self.thresholds.min_data_points:
                continue

            values = [v for _, v in series]
            mean = statistics.fmean(values)
            std = statistics.pstdev(values)
            baselines[col] = BaselineStats(round(mean, 2), round(std, 2), round(statistics.median(values), 2))
            if std == 0:
                continue

            causes = POSSIBLE_CAUSES[_cause_category(semantic)][:3]
            anomalies.extend(self._zscore(series, mean, std, col, causes))
            anomalies.extend(self._moving_average(series, col, causes))
            anomalies.extend(self._cusum(series, col, causes))

        anomalies.sort(key=lambda a: a.timestamp, reverse=True)
        anomalies.sort(key=lambda a: SEVERITY_ORDER[a.severity])
        logger.info("Anomaly detection: %d anomalies over %d metrics", len(anomalies), len(analyzed))
        return AnomalyDetectionResult(
            anomalies=anomalies,
            metrics_analyzed=analyzed,
            time_range=time_range,
            baseline_stats=baselines,
        )

    # ------------------------------------------------------------------

    @staticmethod
    def _aggregate_daily(
        rows: list[dict],
        col: str,
        ts_col: str,
        user_col: str | None,
        semantic: SemanticType,
    ) -> list[tuple[str, float]]:
        """Per-day series: unique users for DAU, error count for errors, else mean."""
        sums: dict[str, float] = {}
        counts: dict[str, int] = {}
        users: dict[str, set[str]] = {}

        for row in rows:
            day = day_key(row.get(ts_col))
            if day is None:
                continue
            if semantic is SemanticType.DAU and user_col:
                user = row.get(user_col)
                if not is_missing(user):
                    users.setdefault(day, set()).add(str(user))
                continue
            if semantic is SemanticType.ERROR_TYPE:
                sums[day] = sums.get(day, 0.0) + (0.0 if is_missing(row.get(col)) else 1.0)
                counts[day] = 1
                continue
            value = to_number(row.get(col))
            if value is None:
                continue
            sums[day] = sums.get(day, 0.0) + value
            counts[day] = counts.get(day, 0) + 1

        if users:
            return sorted((day, float(len(u))) for day, u in users.items())
        return sorted((day, sums[day] / counts[day]) for day in sums)

    def _severity(self, z: float) -> str:
        t = self.thresholds
        z = abs(z)
        if z >= t.critical_std_dev:
            return "critical"
        if z >= t.high_std_dev:
            return "high"
        if z >= t.medium_std_dev:
            return "medium"
        return "low"

    def _zscore(self, series, mean, std, col, causes) -> list[Anomaly]:
        found: list[Anomaly] = []
        for day, value in series:
            z = (value - mean) / std
            if abs(z) < self.thresholds.low_std_dev or mean == 0:
                continue
            pct = (value - mean) / mean * 100
            if abs(pct) < self.thresholds.min_percent_change:
                continue
            kind = "spike" if z > 0 else "drop"
            direction = "spiked" if kind == "spike" else "dropped"
            where = "above" if kind == "spike" else "below"
            found.append(Anomaly(
                id=f"{col}-zscore-{day}",
                metric=col,
                type=kind,
                severity=self._severity(z),
                timestamp=day,
                value=round(value, 2),
                expected_value=round(mean, 2),
                deviation=round(z, 2),
                percent_change=round(pct, 2),
                description=f"{col} {direction} {abs(round(pct))}% {where} baseline on {day}",
                possible_causes=list(causes),
            ))
        return found

    def _moving_average(self, series, col, causes) -> list[Anomaly]:
        found: list[Anomaly] = []
        window = MOVING_AVERAGE_WINDOW
        for i in range(window, len(series)):
            ma = sum(v for _, v in series[i - window:i]) / window
            if ma == 0:
                continue
            day, value = series[i]
            deviation = abs(value - ma) / ma
            pct = (value - ma) / ma * 100
            if deviation <= MOVING_AVERAGE_DEVIATION or abs(pct) < self.thresholds.min_percent_change:
                continue
            found.append(Anomaly(
                id=f"{col}-ma-{day}",
                metric=col,
                type="spike" if value > ma else "drop",
                severity="medium" if deviation > 0.5 else "low",
                timestamp=day,
                value=round(value, 2),
                expected_value=round(ma, 2),
                deviation=round(deviation, 2),
                percent_change=round(pct, 2),
                description=(
                    f"{col} deviated {round(deviation * 100)}% from "
                    f"{window}-period moving average on {day}"
                ),
                possible_causes=list(causes),
            ))
        return found

    @staticmethod
    def _cusum(series, col, causes) -> list[Anomaly]:
        found: list[Anomaly] = []
        if len(series) < CUSUM_MIN_POINTS:
            return found
        baseline = sum(v for _, v in series[:CUSUM_BASELINE_POINTS]) / CUSUM_BASELINE_POINTS
        threshold = baseline * CUSUM_THRESHOLD_SHARE
        if threshold <= 0:
            return found

        pos = neg = 0.0
        for day, value in series[CUSUM_BASELINE_POINTS:]:
            diff = value - baseline
            pos = max(0.0, pos + diff)
            neg = min(0.0, neg + diff)
            if pos <= threshold and abs(neg) <= threshold:
                continue
            direction = "upward" if pos > threshold else "downward"
            found.append(Anomaly(
                id=f"{col}-cusum-{day}",
                metric=col,
                type="trend_change",
                severity="high",
                timestamp=day,
                value=round(value, 2),
                expected_value=round(baseline, 2),
                deviation=round(max(pos, abs(neg)) / threshold, 2),
                percent_change=round((value - baseline) / baseline * 100, 2),
                description=f"Significant {direction} trend change detected in {col} starting {day}",
                possible_causes=list(causes),
            ))
            pos = neg = 0.0
        return found
