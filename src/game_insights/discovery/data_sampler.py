"""Data sampler — reduce large tables to an analysable subset.

Strategies:
    head        first N rows
    tail        last N rows
    random      N distinct rows chosen uniformly
    systematic  every k-th row
    stratified  proportional rows per group of a priority column
    smart       20% head + 10% tail + random interior rows
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass

from game_insights.ingestion.table import Table

logger = logging.getLogger(__name__)

STRATEGIES = ("head", "tail", "random", "systematic", "stratified", "smart")

SMART_HEAD_SHARE = 0.2
SMART_TAIL_SHARE = 0.1


@dataclass
class SampleConfig:
    max_rows: int = 500
    strategy: str = "smart"
    priority_columns: list[str] | None = None


@dataclass
class SampleResult:
    sample: Table
    original_row_count: int
    sample_row_count: int
    sampling_ratio: float
    strategy: str
    coverage: dict[str, int]


class DataSampler:
    """Draws row samples; pass a seeded ``random.Random`` for reproducibility."""

    def __init__(self, rng: random.Random | None = None) -> None:
        self._rng = rng or random.Random()

    def sample(self, table: Table, config: SampleConfig | None = None) -> SampleResult:
        config = config or SampleConfig()
        total = table.row_count

        if total <= config.max_rows:
            return SampleResult(
                sample=table,
                original_row_count=total,
                sample_row_count=total,
                sampling_ratio=1.0,
                strategy="head",
                coverage=self._coverage(table.columns, table.rows),
            )

        if config.strategy not in STRATEGIES:
            raise ValueError(f"unknown sampling strategy: {config.strategy!r}")

        n = max(0, config.max_rows)
        rows = table.rows
        strategy = config.strategy

        if strategy == "head":
            picked = rows[:n]
        elif strategy == "tail":
            picked = rows[total - n:] if n else []
        elif strategy == "random":
            picked = self._random(rows, n)
        elif strategy == "systematic":
            picked = self._systematic(rows, n)
        elif strategy == "stratified":
            picked = self._stratified(rows, n, config.priority_columns)
        else:
            picked = self._smart(rows, n)

        sample = table.derive(picked, "sampled")
        logger.info(
            "Sampled %d of %d rows using %s strategy", len(picked), total, strategy,
        )
        return SampleResult(
            sample=sample,
            original_row_count=total,
            sample_row_count=len(picked),
            sampling_ratio=len(picked) / total,
            strategy=strategy,
            coverage=self._coverage(table.columns, picked),
        )

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    def _random(self, rows: list[dict], n: int) -> list[dict]:
        indices = self._rng.sample(range(len(rows)), n)
        return [rows[i] for i in indices]

    @staticmethod
    def _systematic(rows: list[dict], n: int) -> list[dict]:
        if n == 0:
            return []
        step = max(1, len(rows) // n)
        return [rows[i] for i in range(0, len(rows), step)][:n]

    def _stratified(
        self,
        rows: list[dict],
        n: int,
        priority_columns: list[str] | None,
    ) -> list[dict]:
        if not priority_columns:
            return self._random(rows, n)

        column = priority_columns[0]
        groups: dict[str, list[int]] = {}
        for idx, row in enumerate(rows):
            value = row.get(column)
            key = "null" if value is None or value == "" else str(value)
            groups.setdefault(key, []).append(idx)

        per_group = max(1, n // len(groups))
        chosen: list[int] = []
        used: set[int] = set()
        for members in groups.values():
            take = self._rng.sample(members, min(per_group, len(members)))
            chosen.extend(take)
            used.update(take)

        if len(chosen) < n:
            remaining = [i for i in range(len(rows)) if i not in used]
            chosen.extend(self._rng.sample(remaining, n - len(chosen)))

        return [rows[i] for i in chosen[:n]]

    def _smart(self, rows: list[dict], n: int) -> list[dict]:
        total = len(rows)
        head_n = int(n * SMART_HEAD_SHARE)
        tail_n = int(n * SMART_TAIL_SHARE)
        middle_n = n - head_n - tail_n

        head = list(range(head_n))
        tail = list(range(total - tail_n, total)) if tail_n else []
        interior = range(head_n, total - tail_n)
        middle = self._rng.sample(interior, min(middle_n, len(interior)))

        indices = head + sorted(middle) + tail
        return [rows[i] for i in indices]

    @staticmethod
    def _coverage(columns: list[str], rows: list[dict]) -> dict[str, int]:
        distinct: dict[str, set] = {col: set() for col in columns}
        for row in rows:
            for col in columns:
                value = row.get(col)
                try:
                    distinct[col].add(value)
                except TypeError:
                    distinct[col].add(repr(value))
        return {col: len(values) for col, values in distinct.items()}
