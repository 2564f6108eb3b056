"""Observation types produced by sources and by the aggregation engine.

Both types are immutable: an Observation lives for one cycle, an
AggregatedObservation is kept in the controller's price table until the
next successful cycle for its pair replaces it.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class Observation:
    """One source's reading of a pair price.

    :ivar base: Base currency symbol (lowercase).
    :ivar quote: Quote currency symbol (lowercase).
    :ivar price: Reported price.
    :ivar timestamp: Unix timestamp (seconds) of the reading.
    :ivar source: Name of the source that produced it.
    :ivar volume_24h: Optional 24h trading volume.
    :ivar change_24h: Optional 24h price change percentage.
    :ivar market_cap: Optional market capitalization.
    :ivar confidence: Source-reported confidence (0-100).
    """

    base: str
    quote: str
    price: float
    timestamp: float
    source: str
    volume_24h: float | None = None
    change_24h: float | None = None
    market_cap: float | None = None
    confidence: float = 100.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "base", self.base.lower())
        object.__setattr__(self, "quote", self.quote.lower())

    @property
    def pair(self) -> str:
        """Return the pair key ("base/quote")."""
        return f"{self.base}/{self.quote}"


@dataclass(frozen=True)
class AggregatedObservation:
    """Combined value for one pair in one cycle.

    :ivar pair: Pair key ("base/quote").
    :ivar price: Aggregated price.
    :ivar timestamp: Freshest timestamp among contributing observations.
    :ivar contributing_sources: Sources that survived outlier removal.
    :ivar source_count: Number of contributing observations.
    :ivar standard_deviation: Population stddev of contributing prices.
    :ivar confidence: Aggregation confidence (0-100).
    :ivar rejected_outliers: Observations dropped as outliers.
    """

    pair: str
    price: float
    timestamp: float
    contributing_sources: frozenset[str]
    source_count: int
    standard_deviation: float
    confidence: float
    rejected_outliers: tuple[Observation, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class SkipReason:
    """Why a pair produced no commit in a cycle.

    Skips are not errors and never count towards the failure threshold.

    :ivar pair: Pair key.
    :ivar reason: Short identifier (e.g., "insufficient_sources").
    :ivar detail: Optional human-readable detail.
    """

    pair: str
    reason: str
    detail: str = ""
