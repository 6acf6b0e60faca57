"""Tests for the data sampler."""

import random

import pytest

from game_insights.discovery.data_sampler import DataSampler, SampleConfig
from game_insights.ingestion.table import Table


def _table(n, groups=None):
    rows = []
    for i in range(n):
        row = {"idx": i}
        if groups:
            row["platform"] = groups[i % len(groups)]
        rows.append(row)
    return Table.from_records(rows, source="test")


def _sampler(seed=7):
    return DataSampler(rng=random.Random(seed))


class TestSmallTables:
    def test_returned_unchanged(self):
        table = _table(10)
        result = _sampler().sample(table, SampleConfig(max_rows=50))
        assert result.sample is table
        assert result.sampling_ratio == 1.0
        assert result.strategy == "head"
        assert result.sample_row_count == 10

    def test_exact_size(self):
        table = _table(50)
        result = _sampler().sample(table, SampleConfig(max_rows=50, strategy="random"))
        assert result.sample is table


class TestStrategies:
    @pytest.mark.parametrize("strategy", ["head", "tail", "random", "systematic", "stratified", "smart"])
    def test_never_exceeds_max_rows(self, strategy):
        result = _sampler().sample(_table(1000, ["ios", "android"]),
                                   SampleConfig(max_rows=100, strategy=strategy, priority_columns=["platform"]))
        assert result.sample_row_count <= 100
        assert result.original_row_count == 1000
        assert result.sampling_ratio == result.sample_row_count / 1000

    def test_head(self):
        result = _sampler().sample(_table(100), SampleConfig(max_rows=5, strategy="head"))
        assert [r["idx"] for r in result.sample.rows] == [0, 1, 2, 3, 4]

    def test_tail(self):
        result = _sampler().sample(_table(100), SampleConfig(max_rows=3, strategy="tail"))
        assert [r["idx"] for r in result.sample.rows] == [97, 98, 99]

    def test_random_distinct(self):
        result = _sampler().sample(_table(100), SampleConfig(max_rows=30, strategy="random"))
        ids = [r["idx"] for r in result.sample.rows]
        assert len(ids) == 30
        assert len(set(ids)) == 30

    def test_systematic_every_kth(self):
        result = _sampler().sample(_table(100), SampleConfig(max_rows=10, strategy="systematic"))
        assert [r["idx"] for r in result.sample.rows] == list(range(0, 100, 10))

    def test_stratified_covers_every_group(self):
        table = _table(300, ["ios", "android", "web"])
        result = _sampler().sample(table, SampleConfig(max_rows=30, strategy="stratified",
                                                       priority_columns=["platform"]))
        platforms = [r["platform"] for r in result.sample.rows]
        assert set(platforms) == {"ios", "android", "web"}
        assert len(platforms) == 30

    def test_stratified_without_priority_column_is_random(self):
        result = _sampler().sample(_table(100), SampleConfig(max_rows=10, strategy="stratified"))
        assert result.sample_row_count == 10

    def test_smart_keeps_head_and_tail(self):
        result = _sampler().sample(_table(1000), SampleConfig(max_rows=100, strategy="smart"))
        ids = [r["idx"] for r in result.sample.rows]
        assert ids[:20] == list(range(20))
        assert ids[-10:] == list(range(990, 1000))
        assert len(ids) == 100
        assert ids == sorted(ids)

    def test_seeded_rng_is_reproducible(self):
        config = SampleConfig(max_rows=20, strategy="random")
        a = _sampler(1).sample(_table(500), config)
        b = _sampler(1).sample(_table(500), config)
        assert [r["idx"] for r in a.sample.rows] == [r["idx"] for r in b.sample.rows]

    def test_unknown_strategy(self):
        with pytest.raises(ValueError, match="unknown sampling strategy"):
            _sampler().sample(_table(100), SampleConfig(max_rows=10, strategy="bogus"))


class TestResult:
    def test_coverage_counts_distinct_values(self):
        result = _sampler().sample(_table(100, ["ios", "android"]), SampleConfig(max_rows=10, strategy="head"))
        assert result.coverage["platform"] == 2
        assert result.coverage["idx"] == 10

    def test_sample_source_tagged(self):
        result = _sampler().sample(_table(100), SampleConfig(max_rows=10, strategy="head"))
        assert result.sample.metadata.source == "test (sampled)"
        assert result.sample.columns == ["idx"]
