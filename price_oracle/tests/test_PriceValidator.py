"""Unit tests for PriceValidator."""

import time

from price_oracle.src.Observation import Observation
from price_oracle.src.PriceValidator import PriceValidator
from price_oracle.src.TradingPair import TradingPair

NOW = 10_000.0
BTC = TradingPair("btc", "usd", min_price=1000.0, max_price=1_000_000.0)
ETH = TradingPair("eth", "usd", min_price=100.0, max_price=100_000.0)


def obs(pair: str, price: float, source: str, ts: float = NOW) -> Observation:
    base, quote = pair.split("/")
    return Observation(base=base, quote=quote, price=price, timestamp=ts, source=source)


class TestPriceValidator:
    """Test validation rules."""

    def test_valid_observations(self) -> None:
        """In-range, fresh observations with a quorum pass."""
        observations = [obs("btc/usd", 50000, "a"), obs("btc/usd", 50100, "b")]
        outcome = PriceValidator().validate(observations, [BTC], now=NOW)

        assert outcome.valid
        assert outcome.errors == []
        assert outcome.warnings == []
        assert outcome.accepted == observations

    def test_unsupported_pair(self) -> None:
        """Observations for unconfigured pairs are errors."""
        observations = [
            obs("btc/usd", 50000, "a"),
            obs("btc/usd", 50100, "b"),
            obs("doge/usd", 0.1, "a"),
        ]
        outcome = PriceValidator().validate(observations, [BTC], now=NOW)

        assert not outcome.valid
        assert outcome.errors == ["Unsupported trading pair: doge/usd"]
        assert len(outcome.accepted) == 2

    def test_inactive_pair_is_unsupported(self) -> None:
        """Inactive pairs are treated as unconfigured."""
        inactive = TradingPair("btc", "usd", is_active=False)
        outcome = PriceValidator(min_sources_required=1).validate(
            [obs("btc/usd", 50000, "a")], [inactive], now=NOW
        )
        assert outcome.errors == ["Unsupported trading pair: btc/usd"]

    def test_price_out_of_range(self) -> None:
        """Prices outside the pair bounds are errors."""
        observations = [
            obs("btc/usd", 50000, "a"),
            obs("btc/usd", 50100, "b"),
            obs("btc/usd", 5, "c"),
        ]
        outcome = PriceValidator().validate(observations, [BTC], now=NOW)

        assert not outcome.valid
        assert len(outcome.errors) == 1
        assert outcome.errors[0].startswith("Price out of range for btc/usd from c: 5")
        assert [o.source for o in outcome.accepted] == ["a", "b"]

    def test_stale_is_warning_only(self) -> None:
        """Old observations only produce a warning."""
        observations = [obs("btc/usd", 50000, "a", ts=NOW - 600), obs("btc/usd", 50100, "b")]
        outcome = PriceValidator(max_price_age=300).validate(observations, [BTC], now=NOW)

        assert outcome.valid
        assert outcome.warnings == ["Stale data for btc/usd from a: 600.0s old"]
        assert len(outcome.accepted) == 2

    def test_insufficient_sources(self) -> None:
        """Each active pair needs min_sources_required accepted observations."""
        observations = [obs("btc/usd", 50000, "a"), obs("btc/usd", 50100, "b"), obs("eth/usd", 3000, "a")]
        outcome = PriceValidator().validate(observations, [BTC, ETH], now=NOW)

        assert outcome.errors == ["Insufficient sources for eth/usd: 1 < 2"]

    def test_missing_pair_counts_as_insufficient(self) -> None:
        """An active pair with no observations at all is an error."""
        observations = [obs("btc/usd", 50000, "a"), obs("btc/usd", 50100, "b")]
        outcome = PriceValidator().validate(observations, [BTC, ETH], now=NOW)

        assert outcome.errors == ["Insufficient sources for eth/usd: 0 < 2"]

    def test_high_deviation_warning(self) -> None:
        """Dispersion above threshold*10 percent is a warning."""
        observations = [obs("btc/usd", 10000, "a"), obs("btc/usd", 20000, "b")]
        outcome = PriceValidator(outlier_threshold=2.0).validate(observations, [BTC], now=NOW)

        assert outcome.valid
        assert outcome.warnings == ["High price deviation for btc/usd: 33.33%"]

    def test_default_now(self) -> None:
        """now defaults to the current time."""
        observations = [obs("btc/usd", 50000, "a", ts=time.time()), obs("btc/usd", 50100, "b", ts=time.time())]
        outcome = PriceValidator().validate(observations, [BTC])
        assert outcome.warnings == []
