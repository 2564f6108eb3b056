"""PriceValidator: Structural and freshness screening of raw observations.

Checks, per observation:
    - pair must be a configured active pair (error, observation dropped)
    - price must lie within the pair's [min_price, max_price] (error)
    - age must not exceed max_price_age seconds (warning only)

Per active pair, the number of accepted observations must reach
min_sources_required. Any error invalidates the whole cycle.
"""

from __future__ import annotations

import time
from collections.abc import Iterable
from dataclasses import dataclass, field

from .Observation import Observation
from .PriceAggregator import population_mean, population_stddev
from .TradingPair import TradingPair


@dataclass
class ValidationOutcome:
    """Result of validating one cycle's observations.

    :ivar errors: Hard failures; any entry makes the outcome invalid.
    :ivar warnings: Non-fatal findings (stale data, high dispersion).
    :ivar accepted: Observations that passed error filtering.
    """

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    accepted: list[Observation] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        """True when no errors were recorded."""
        return not self.errors


class PriceValidator:
    """Validates observations against configured pairs.

    :ivar min_sources_required: Minimum accepted observations per pair.
    :ivar max_price_age: Max observation age in seconds before a warning.
    :ivar outlier_threshold: Used to flag high dispersion as a warning.
    """

    def __init__(
        self,
        min_sources_required: int = 2,
        max_price_age: float = 300.0,
        outlier_threshold: float = 2.0,
    ) -> None:
        self.min_sources_required = min_sources_required
        self.max_price_age = max_price_age
        self.outlier_threshold = outlier_threshold

    def validate(
        self,
        observations: Iterable[Observation],
        pairs: Iterable[TradingPair],
        now: float | None = None,
    ) -> ValidationOutcome:
        """Validate observations for the configured pairs.

        :param observations: Raw observations from all sources.
        :param pairs: Configured trading pairs (inactive ones are ignored).
        :param now: Reference Unix time; defaults to time.time().
        :returns: ValidationOutcome with errors, warnings and accepted data.
        """
        if now is None:
            now = time.time()

        active = {p.key: p for p in pairs if p.is_active}
        outcome = ValidationOutcome()
        accepted_by_pair: dict[str, list[Observation]] = {key: [] for key in active}

        for obs in observations:
            pair = active.get(obs.pair)
            if pair is None:
                outcome.errors.append(f"Unsupported trading pair: {obs.pair}")
                continue

            if not pair.in_range(obs.price):
                outcome.errors.append(
                    f"Price out of range for {obs.pair} from {obs.source}: "
                    f"{obs.price} (valid: {pair.min_price}-{pair.max_price})"
                )
                continue

            age = now - obs.timestamp
            if age > self.max_price_age:
                outcome.warnings.append(
                    f"Stale data for {obs.pair} from {obs.source}: {age:.1f}s old"
                )

            accepted_by_pair[obs.pair].append(obs)
            outcome.accepted.append(obs)

        for key, accepted in accepted_by_pair.items():
            if len(accepted) < self.min_sources_required:
                outcome.errors.append(
                    f"Insufficient sources for {key}: "
                    f"{len(accepted)} < {self.min_sources_required}"
                )
                continue

            prices = [o.price for o in accepted]
            mean = population_mean(prices)
            if mean > 0:
                deviation_percent = population_stddev(prices) / mean * 100
                if deviation_percent > self.outlier_threshold * 10:
                    outcome.warnings.append(
                        f"High price deviation for {key}: {deviation_percent:.2f}%"
                    )

        return outcome
