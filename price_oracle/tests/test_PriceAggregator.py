"""Unit tests for PriceAggregator."""

import pytest

from price_oracle.src.Observation import Observation
from price_oracle.src.PriceAggregator import (
    AggregationResult,
    PriceAggregator,
    compute_confidence,
    median,
    population_mean,
    population_stddev,
    remove_outliers,
    weighted_average,
)


def obs(price: float, source: str = "a", pair: str = "btc/usd", ts: float = 1000.0) -> Observation:
    base, quote = pair.split("/")
    return Observation(base=base, quote=quote, price=price, timestamp=ts, source=source)


class TestStatisticsHelpers:
    """Test the pure statistics helpers."""

    def test_median_odd(self) -> None:
        """Median of odd number of values is the middle one."""
        assert median([100, 200, 300]) == 200

    def test_median_even(self) -> None:
        """Median of even number of values is the mean of the middle two."""
        assert median([100, 200]) == 150

    def test_median_unsorted(self) -> None:
        """Median should not depend on input order."""
        assert median([300, 100, 200]) == 200

    def test_population_mean(self) -> None:
        """Mean of values."""
        assert population_mean([1.0, 2.0, 3.0]) == 2.0

    def test_population_stddev_divides_by_n(self) -> None:
        """Population stddev divides by N."""
        assert population_stddev([2, 4, 4, 4, 5, 5, 7, 9]) == pytest.approx(2.0)

    def test_population_stddev_single_value(self) -> None:
        """A single value has zero spread."""
        assert population_stddev([42.0]) == 0.0

    def test_weighted_average(self) -> None:
        """Weighted average of (100, 1) and (300, 3) is 250."""
        assert weighted_average([(100, 1), (300, 3)]) == 250

    def test_weighted_average_zero_weight(self) -> None:
        """Zero total weight yields 0.0."""
        assert weighted_average([(100, 0), (300, 0)]) == 0.0


class TestRemoveOutliers:
    """Test z-score outlier removal."""

    def test_two_or_fewer_unchanged(self) -> None:
        """Groups of size <= 2 are never filtered."""
        group = [obs(100, "a"), obs(100000, "b")]
        kept, rejected = remove_outliers(group, 0.1)
        assert kept == group
        assert rejected == []

    def test_identical_prices_no_outliers(self) -> None:
        """Identical prices have zero stddev and no outliers at any threshold."""
        group = [obs(100, s) for s in "abcde"]
        kept, rejected = remove_outliers(group, 0.001)
        assert len(kept) == 5
        assert rejected == []

    def test_three_samples_never_rejected_at_two(self) -> None:
        """With three samples the largest z-score is sqrt(2), below 2.0."""
        for outlier in (150, 500):
            group = [obs(99, "a"), obs(100, "b"), obs(outlier, "c")]
            kept, rejected = remove_outliers(group, 2.0)
            assert len(kept) == 3
            assert rejected == []

    def test_large_group_rejects_outlier(self) -> None:
        """One far-off price among six is rejected."""
        group = [obs(100, s) for s in "abcde"] + [obs(1000, "f")]
        kept, rejected = remove_outliers(group, 2.0)
        assert [o.source for o in rejected] == ["f"]
        assert len(kept) == 5

    def test_order_preserved(self) -> None:
        """Kept observations keep their original order."""
        group = [obs(101, "c"), obs(100, "a"), obs(102, "b")]
        kept, _ = remove_outliers(group, 2.0)
        assert [o.source for o in kept] == ["c", "a", "b"]


class TestComputeConfidence:
    """Test confidence scoring."""

    def test_full_quorum_no_spread(self) -> None:
        """Full quorum with identical prices scores 100."""
        assert compute_confidence(3, 2, 100.0, 0.0) == 100.0

    def test_partial_quorum(self) -> None:
        """Below quorum scales the base score."""
        assert compute_confidence(1, 2, 100.0, 0.0) == 50.0

    def test_penalty_capped(self) -> None:
        """Dispersion penalty is capped at 30."""
        assert compute_confidence(2, 2, 100.0, 100.0) == 70.0

    def test_non_increasing_in_dispersion(self) -> None:
        """Confidence never increases as the coefficient of variation grows."""
        scores = [compute_confidence(3, 2, 100.0, sd) for sd in (0, 0.1, 0.5, 1, 5, 50)]
        assert scores == sorted(scores, reverse=True)
        assert all(s >= 0 for s in scores)

    def test_zero_mean(self) -> None:
        """A zero mean applies the maximum penalty."""
        assert compute_confidence(2, 2, 0.0, 0.0) == 70.0


class TestPriceAggregatorInit:
    """Test PriceAggregator initialization."""

    def test_default_values(self) -> None:
        """Default values follow the documented configuration."""
        agg = PriceAggregator()
        assert agg.min_sources_required == 2
        assert agg.outlier_threshold == 2.0
        assert agg.method == "median"

    def test_invalid_min_sources(self) -> None:
        """min_sources_required < 1 should raise ValueError."""
        with pytest.raises(ValueError, match="min_sources_required must be at least 1"):
            PriceAggregator(min_sources_required=0)

    def test_invalid_outlier_threshold(self) -> None:
        """outlier_threshold <= 0 should raise ValueError."""
        with pytest.raises(ValueError, match="outlier_threshold must be positive"):
            PriceAggregator(outlier_threshold=0)

    def test_invalid_method(self) -> None:
        """Unknown methods should raise ValueError."""
        with pytest.raises(ValueError, match="Unknown aggregation method"):
            PriceAggregator(method="mode")


class TestPriceAggregatorMethods:
    """Test combination methods."""

    def test_median(self) -> None:
        """Median method picks the middle value."""
        agg = PriceAggregator(method="median")
        result = agg.aggregate_pair("btc/usd", [obs(100, "a"), obs(101, "b"), obs(102, "c")])
        assert result.success
        assert result.aggregated.price == 101

    def test_average(self) -> None:
        """Average method takes the arithmetic mean."""
        agg = PriceAggregator(method="average")
        result = agg.aggregate_pair("btc/usd", [obs(100, "a"), obs(101, "b"), obs(105, "c")])
        assert result.aggregated.price == pytest.approx(102.0)

    def test_weighted(self) -> None:
        """Weighted method uses configured per-source weights."""
        agg = PriceAggregator(method="weighted", weights={"b": 3.0})
        result = agg.aggregate_pair("btc/usd", [obs(100, "a"), obs(300, "b")])
        assert result.aggregated.price == 250

    def test_weight_for_default(self) -> None:
        """Unconfigured sources weigh 1.0."""
        assert PriceAggregator().weight_for("unknown") == 1.0


class TestPriceAggregatorAggregatePair:
    """Test per-pair aggregation details."""

    def test_no_observations(self) -> None:
        """Empty input is skipped with no_observations."""
        result = PriceAggregator().aggregate_pair("btc/usd", [])
        assert not result.success
        assert result.error == "no_observations"

    def test_insufficient_sources(self) -> None:
        """Fewer than the quorum is skipped."""
        result = PriceAggregator(min_sources_required=3).aggregate_pair(
            "btc/usd", [obs(100, "a"), obs(101, "b")]
        )
        assert result.error == "insufficient_sources"
        assert result.aggregated is None

    def test_insufficient_after_outlier_removal(self) -> None:
        """Quorum is checked after outliers are dropped."""
        group = [obs(100, s) for s in "abcde"] + [obs(1000, "f")]
        result = PriceAggregator(min_sources_required=6).aggregate_pair("btc/usd", group)
        assert result.error == "insufficient_sources"
        assert [o.source for o in result.rejected] == ["f"]

    def test_aggregated_fields(self) -> None:
        """Aggregated observation carries timestamp, sources and stats."""
        group = [obs(100, "a", ts=10.0), obs(102, "b", ts=30.0), obs(101, "c", ts=20.0)]
        result = PriceAggregator().aggregate_pair("btc/usd", group)
        agg = result.aggregated

        assert agg.pair == "btc/usd"
        assert agg.timestamp == 30.0
        assert agg.contributing_sources == frozenset({"a", "b", "c"})
        assert agg.source_count == 3
        assert agg.standard_deviation == pytest.approx(population_stddev([100, 101, 102]))
        assert 70.0 <= agg.confidence <= 100.0
        assert agg.rejected_outliers == ()

    def test_rejected_outliers_reported(self) -> None:
        """Dropped observations appear on the aggregated value."""
        group = [obs(100, s) for s in "abcde"] + [obs(1000, "f")]
        agg = PriceAggregator().aggregate_pair("btc/usd", group).aggregated
        assert agg.price == 100
        assert "f" not in agg.contributing_sources
        assert [o.source for o in agg.rejected_outliers] == ["f"]


class TestPriceAggregatorAggregate:
    """Test multi-pair aggregation."""

    def test_groups_by_pair(self) -> None:
        """Observations are grouped and aggregated per pair."""
        observations = [
            obs(100, "a", "btc/usd"),
            obs(102, "b", "btc/usd"),
            obs(10, "a", "eth/usd"),
            obs(12, "b", "eth/usd"),
        ]
        result = PriceAggregator().aggregate(observations)
        assert set(result) == {"btc/usd", "eth/usd"}
        assert result["btc/usd"].price == 101
        assert result["eth/usd"].price == 11

    def test_skipped_pairs_omitted(self) -> None:
        """Pairs below quorum are left out of aggregate()."""
        observations = [obs(100, "a", "btc/usd"), obs(102, "b", "btc/usd"), obs(10, "a", "eth/usd")]
        result = PriceAggregator().aggregate(observations)
        assert list(result) == ["btc/usd"]

    def test_aggregate_all_reports_skips(self) -> None:
        """aggregate_all keeps the skip reason for each pair."""
        results = PriceAggregator().aggregate_all([obs(10, "a", "eth/usd")])
        assert isinstance(results["eth/usd"], AggregationResult)
        assert results["eth/usd"].error == "insufficient_sources"
