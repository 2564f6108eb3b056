"""PriceAggregator: Z-score outlier rejection and statistical combination.

Algorithm (per pair):
    1. Group observations by pair
    2. Drop outliers whose z-score exceeds outlier_threshold (groups of
       more than 2 only; identical prices never produce outliers)
    3. Skip the pair if fewer than min_sources_required remain
    4. Combine remaining prices by average, median or weighted average
    5. Report freshest timestamp, population stddev and a confidence score

.. code-block:: python

    >>> aggregator = PriceAggregator(min_sources_required=2, method="median")
    >>> result = aggregator.aggregate_pair("btc/usd", observations)
    >>> result.success
    True
    >>> result.aggregated.price
    100.5
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from statistics import fmean
from statistics import median as _median

from .Observation import AggregatedObservation, Observation

logger = logging.getLogger(__name__)

AGGREGATION_METHODS = ("average", "median", "weighted")

# Confidence penalty: coefficient of variation multiplier and cap.
CONFIDENCE_CV_MULTIPLIER = 50.0
CONFIDENCE_MAX_PENALTY = 30.0


def population_mean(values: Iterable[float]) -> float:
    """Arithmetic mean of the values.

    :param values: Non-empty iterable of numbers.
    :returns: Mean.
    """
    return fmean(values)


def population_stddev(values: Iterable[float]) -> float:
    """Population standard deviation (divides by N, not N-1).

    :param values: Non-empty iterable of numbers.
    :returns: Standard deviation, 0.0 for a single value.
    """
    data = list(values)
    mean = fmean(data)
    variance = sum((v - mean) ** 2 for v in data) / len(data)
    return math.sqrt(variance)


def median(values: Iterable[float]) -> float:
    """Median; mean of the two middle values for even-sized input.

    .. code-block:: python

        >>> median([100, 200, 300])
        200
        >>> median([100, 200])
        150.0
    """
    return _median(list(values))


def weighted_average(prices_and_weights: Iterable[tuple[float, float]]) -> float:
    """Weighted mean of (price, weight) tuples.

    :param prices_and_weights: Iterable of (price, weight).
    :returns: sum(price * weight) / sum(weight), or 0.0 if total weight is zero.
    """
    total_weight = 0.0
    weighted_sum = 0.0
    for price, weight in prices_and_weights:
        total_weight += weight
        weighted_sum += price * weight
    if total_weight == 0:
        return 0.0
    return weighted_sum / total_weight


def remove_outliers(
    observations: list[Observation], threshold: float
) -> tuple[list[Observation], list[Observation]]:
    """Split observations into (kept, rejected) by z-score.

    Groups of two or fewer are returned unchanged. If all prices are
    identical (stddev 0) nothing is rejected.

    :param observations: Observations for a single pair.
    :param threshold: Max allowed z-score (in standard deviations).
    :returns: Tuple of (kept, rejected) lists, original order preserved.
    """
    if len(observations) <= 2:
        return list(observations), []

    prices = [o.price for o in observations]
    mean = population_mean(prices)
    stddev = population_stddev(prices)
    if stddev == 0:
        return list(observations), []

    kept: list[Observation] = []
    rejected: list[Observation] = []
    for obs in observations:
        z_score = abs(obs.price - mean) / stddev
        if z_score > threshold:
            rejected.append(obs)
        else:
            kept.append(obs)
    return kept, rejected


def compute_confidence(
    source_count: int, min_sources_required: int, mean: float, stddev: float
) -> float:
    """Score an aggregation between 0 and 100.

    Rewards quorum size and penalizes disagreement:
    ``max(min(n / min, 1) * 100 - min(cv * 50, 30), 0)`` where cv is the
    coefficient of variation.

    :param source_count: Number of contributing sources.
    :param min_sources_required: Configured quorum.
    :param mean: Mean of contributing prices.
    :param stddev: Population stddev of contributing prices.
    :returns: Confidence score.
    """
    base = min(source_count / min_sources_required, 1.0) * 100
    if mean == 0:
        penalty = CONFIDENCE_MAX_PENALTY
    else:
        coefficient = stddev / abs(mean)
        penalty = min(coefficient * CONFIDENCE_CV_MULTIPLIER, CONFIDENCE_MAX_PENALTY)
    return max(base - penalty, 0.0)


@dataclass
class AggregationResult:
    """Result of aggregating one pair.

    :ivar pair: Pair key.
    :ivar aggregated: Aggregated observation, or None if the pair was skipped.
    :ivar error: Skip reason identifier when aggregated is None.
    :ivar rejected: Observations dropped as outliers.
    """

    pair: str
    aggregated: AggregatedObservation | None
    error: str | None = None
    rejected: list[Observation] = field(default_factory=list)

    @property
    def success(self) -> bool:
        """Check if aggregation produced a value."""
        return self.aggregated is not None


class PriceAggregator:
    """Combines per-source observations into one value per pair.

    :ivar min_sources_required: Quorum after outlier removal.
    :ivar outlier_threshold: Z-score above which an observation is dropped.
    :ivar method: One of "average", "median", "weighted".
    :ivar weights: Static per-source weights for the weighted method.
    """

    def __init__(
        self,
        min_sources_required: int = 2,
        outlier_threshold: float = 2.0,
        method: str = "median",
        weights: Mapping[str, float] | None = None,
    ) -> None:
        """Initialize the aggregator.

        :param min_sources_required: Minimum surviving sources per pair.
        :param outlier_threshold: Outlier cut-off in standard deviations.
        :param method: Price combination method.
        :param weights: Per-source weights (default weight is 1).
        :raises ValueError: If parameters are invalid.
        """
        if min_sources_required < 1:
            raise ValueError("min_sources_required must be at least 1")
        if outlier_threshold <= 0:
            raise ValueError("outlier_threshold must be positive")
        if method not in AGGREGATION_METHODS:
            raise ValueError(
                f"Unknown aggregation method '{method}'. "
                f"Expected one of {', '.join(AGGREGATION_METHODS)}"
            )

        self.min_sources_required = min_sources_required
        self.outlier_threshold = outlier_threshold
        self.method = method
        self.weights = dict(weights or {})

    def weight_for(self, source: str) -> float:
        """Return the configured weight of a source (1.0 if unset)."""
        return self.weights.get(source, 1.0)

    def combine(self, observations: list[Observation]) -> float:
        """Combine cleaned observations with the configured method.

        :param observations: Non-empty list of observations for one pair.
        :returns: Combined price.
        """
        prices = [o.price for o in observations]
        if self.method == "median":
            return median(prices)
        if self.method == "weighted":
            return weighted_average(
                (o.price, self.weight_for(o.source)) for o in observations
            )
        return population_mean(prices)

    def aggregate_pair(
        self, pair: str, observations: list[Observation]
    ) -> AggregationResult:
        """Aggregate the observations of a single pair.

        :param pair: Pair key.
        :param observations: Observations for that pair.
        :returns: AggregationResult with the value or the skip reason.
        """
        if not observations:
            return AggregationResult(pair=pair, aggregated=None, error="no_observations")

        kept, rejected = remove_outliers(observations, self.outlier_threshold)

        if rejected:
            dropped = ", ".join(f"{o.source}=${o.price:.6f}" for o in rejected)
            logger.info(f"{pair}: dropped outliers [{dropped}]")

        if len(kept) < self.min_sources_required:
            logger.warning(
                f"{pair}: insufficient sources after outlier removal "
                f"({len(kept)} < {self.min_sources_required})"
            )
            return AggregationResult(
                pair=pair,
                aggregated=None,
                error="insufficient_sources",
                rejected=rejected,
            )

        prices = [o.price for o in kept]
        mean = population_mean(prices)
        stddev = population_stddev(prices)

        aggregated = AggregatedObservation(
            pair=pair,
            price=self.combine(kept),
            timestamp=max(o.timestamp for o in kept),
            contributing_sources=frozenset(o.source for o in kept),
            source_count=len(kept),
            standard_deviation=stddev,
            confidence=compute_confidence(
                len(kept), self.min_sources_required, mean, stddev
            ),
            rejected_outliers=tuple(rejected),
        )
        return AggregationResult(pair=pair, aggregated=aggregated, rejected=rejected)

    def aggregate_all(
        self, observations: Iterable[Observation]
    ) -> dict[str, AggregationResult]:
        """Group observations by pair and aggregate each group.

        :param observations: Observations for any number of pairs.
        :returns: Dict mapping pair key to its AggregationResult.
        """
        grouped: dict[str, list[Observation]] = {}
        for obs in observations:
            grouped.setdefault(obs.pair, []).append(obs)
        return {
            pair: self.aggregate_pair(pair, group) for pair, group in grouped.items()
        }

    def aggregate(
        self, observations: Iterable[Observation]
    ) -> dict[str, AggregatedObservation]:
        """Aggregate observations into one value per pair that met quorum.

        Pairs that fail quorum after outlier removal are omitted.

        :param observations: Observations for any number of pairs.
        :returns: Dict mapping pair key to AggregatedObservation.
        """
        return {
            pair: result.aggregated
            for pair, result in self.aggregate_all(observations).items()
            if result.aggregated is not None
        }
