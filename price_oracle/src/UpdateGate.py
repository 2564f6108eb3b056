"""UpdateGate: Withholds ledger commits for insignificant price moves."""

from __future__ import annotations

from .Observation import AggregatedObservation


def change_percent(previous: float, current: float) -> float:
    """Absolute relative change from previous to current, in percent.

    :param previous: Reference price (must be non-zero).
    :param current: New price.
    :returns: |current - previous| / previous * 100.
    """
    return abs(current - previous) / abs(previous) * 100


def should_commit(
    previous: AggregatedObservation | None,
    current: AggregatedObservation,
    deviation_threshold_percent: float,
) -> bool:
    """Decide whether a new aggregated value warrants a ledger commit.

    Commits when there is no previous value for the pair, when the previous
    price is zero, or when the move reaches the threshold.

    .. code-block:: python

        >>> should_commit(None, current, 1.0)
        True
    """
    if previous is None or previous.price == 0:
        return True
    return change_percent(previous.price, current.price) >= deviation_threshold_percent


class UpdateGate:
    """Update gate bound to a configured deviation threshold.

    :ivar deviation_threshold_percent: Minimum move (percent) that commits.
    """

    def __init__(self, deviation_threshold_percent: float = 1.0) -> None:
        if deviation_threshold_percent < 0:
            raise ValueError("deviation_threshold_percent must not be negative")
        self.deviation_threshold_percent = deviation_threshold_percent

    def should_commit(
        self,
        previous: AggregatedObservation | None,
        current: AggregatedObservation,
    ) -> bool:
        """Apply the gate with the configured threshold."""
        return should_commit(previous, current, self.deviation_threshold_percent)
