"""Unit tests for the update gate."""

import pytest

from price_oracle.src.Observation import AggregatedObservation
from price_oracle.src.UpdateGate import UpdateGate, change_percent, should_commit


def agg(price: float) -> AggregatedObservation:
    return AggregatedObservation(
        pair="btc/usd",
        price=price,
        timestamp=1000.0,
        contributing_sources=frozenset({"a", "b"}),
        source_count=2,
        standard_deviation=0.0,
        confidence=100.0,
    )


class TestChangePercent:
    """Test change_percent."""

    def test_up_and_down_are_symmetric(self) -> None:
        """Moves are measured as absolute percentages."""
        assert change_percent(100.0, 101.5) == pytest.approx(1.5)
        assert change_percent(100.0, 98.5) == pytest.approx(1.5)


class TestShouldCommit:
    """Test the gate decision."""

    def test_no_previous(self) -> None:
        """The first value for a pair always commits."""
        assert should_commit(None, agg(100.5), 1.0) is True

    def test_zero_previous(self) -> None:
        """A zero previous price always commits."""
        assert should_commit(agg(0.0), agg(100.0), 1.0) is True

    def test_below_threshold(self) -> None:
        """A 0.5% move below a 1% threshold is withheld."""
        assert should_commit(agg(100.0), agg(100.5), 1.0) is False

    def test_above_threshold(self) -> None:
        """A 1.5% move above a 1% threshold commits."""
        assert should_commit(agg(100.0), agg(101.5), 1.0) is True

    def test_exactly_at_threshold(self) -> None:
        """A move equal to the threshold commits."""
        assert should_commit(agg(100.0), agg(102.0), 2.0) is True

    def test_zero_threshold_commits_unchanged(self) -> None:
        """A zero threshold commits every value."""
        assert should_commit(agg(100.0), agg(100.0), 0.0) is True


class TestUpdateGate:
    """Test the configured gate."""

    def test_uses_configured_threshold(self) -> None:
        """The instance applies its own threshold."""
        gate = UpdateGate(5.0)
        assert gate.should_commit(agg(100.0), agg(104.0)) is False
        assert gate.should_commit(agg(100.0), agg(106.0)) is True

    def test_negative_threshold(self) -> None:
        """Negative thresholds are rejected."""
        with pytest.raises(ValueError):
            UpdateGate(-1.0)
