"""TradingPair: Configured asset pair tracked by the oracle.

A pair carries the price bounds used by validation and the number of decimal
places used when the aggregated price is committed on-chain. Pairs are set
once at startup and never mutated.

.. code-block:: python

    >>> pair = TradingPair.from_string("BTC/USD")
    >>> pair.key
    'btc/usd'
    >>> pair.symbol
    'BTCUSD'
    >>> pair.scale_price(64123.456)
    6412346
"""

from __future__ import annotations

from dataclasses import dataclass

# Default validation bounds (min_price, max_price, decimal_places) per pair.
DEFAULT_PAIR_LIMITS: dict[str, tuple[float, float, int]] = {
    "btc/usd": (1000.0, 1_000_000.0, 2),
    "eth/usd": (100.0, 100_000.0, 2),
    "ton/usd": (0.1, 1000.0, 4),
}

# Bounds for pairs with no explicit limits configured.
FALLBACK_PAIR_LIMITS: tuple[float, float, int] = (0.000001, 1_000_000.0, 6)


@dataclass(frozen=True)
class TradingPair:
    """A base/quote asset combination with validation bounds.

    :ivar base: Base currency symbol (lowercase).
    :ivar quote: Quote currency symbol (lowercase).
    :ivar symbol: Exchange-style ticker (e.g., "BTCUSD").
    :ivar is_active: Inactive pairs are skipped entirely.
    :ivar min_price: Minimum valid price (inclusive).
    :ivar max_price: Maximum valid price (inclusive).
    :ivar decimal_places: Precision of the committed price.
    """

    base: str
    quote: str
    symbol: str = ""
    is_active: bool = True
    min_price: float = FALLBACK_PAIR_LIMITS[0]
    max_price: float = FALLBACK_PAIR_LIMITS[1]
    decimal_places: int = FALLBACK_PAIR_LIMITS[2]

    def __post_init__(self) -> None:
        """Normalize symbols and check bounds."""
        object.__setattr__(self, "base", self.base.lower())
        object.__setattr__(self, "quote", self.quote.lower())
        if not self.symbol:
            object.__setattr__(
                self, "symbol", f"{self.base.upper()}{self.quote.upper()}"
            )
        if self.min_price > self.max_price:
            raise ValueError(
                f"min_price {self.min_price} exceeds max_price {self.max_price} "
                f"for {self.key}"
            )
        if self.decimal_places < 0:
            raise ValueError("decimal_places must not be negative")

    @property
    def key(self) -> str:
        """Return the pair identifier used as the key throughout the oracle."""
        return f"{self.base}/{self.quote}"

    def __str__(self) -> str:
        return self.key

    def in_range(self, price: float) -> bool:
        """Check whether a price lies within the configured bounds.

        :param price: Price to check.
        :returns: True if min_price <= price <= max_price.
        """
        return self.min_price <= price <= self.max_price

    def scale_price(self, price: float) -> int:
        """Convert a price to its fixed-point on-chain representation.

        :param price: Price as float.
        :returns: Price multiplied by 10**decimal_places, rounded.
        """
        return int(round(price * (10 ** self.decimal_places)))

    @classmethod
    def from_string(
        cls,
        pair_str: str,
        limits: dict[str, tuple[float, float, int]] | None = None,
    ) -> TradingPair:
        """Parse a pair string in format "base/quote".

        Bounds are taken from ``limits`` if present, then from
        DEFAULT_PAIR_LIMITS, then from FALLBACK_PAIR_LIMITS.

        :param pair_str: Pair string like "btc/usd".
        :param limits: Optional mapping of pair key to (min, max, decimals).
        :returns: New TradingPair instance.
        :raises ValueError: If pair string format is invalid.

        .. code-block:: python

            >>> TradingPair.from_string("eth/usd").max_price
            100000.0
        """
        parts = pair_str.strip().lower().split("/")
        if len(parts) != 2 or not parts[0] or not parts[1]:
            raise ValueError(
                f"Invalid pair format '{pair_str}'. Expected 'base/quote' (e.g., 'btc/usd')"
            )
        key = f"{parts[0]}/{parts[1]}"
        merged = dict(DEFAULT_PAIR_LIMITS)
        if limits:
            merged.update(limits)
        min_price, max_price, decimals = merged.get(key, FALLBACK_PAIR_LIMITS)
        return cls(
            parts[0],
            parts[1],
            min_price=min_price,
            max_price=max_price,
            decimal_places=decimals,
        )


def parse_pair_limits(limits_str: str | None) -> dict[str, tuple[float, float, int]]:
    """Parse a comma-separated pair limits string.

    Format: pair=min:max[:decimals]
    Example: btc/usd=1000:1000000:2,ton/usd=0.1:1000

    :param limits_str: Limits string, or None.
    :returns: Dict mapping pair key to (min_price, max_price, decimal_places).
    :raises ValueError: If an entry is malformed.
    """
    if not limits_str:
        return {}

    limits: dict[str, tuple[float, float, int]] = {}
    for item in limits_str.split(","):
        item = item.strip()
        if not item:
            continue
        if "=" not in item:
            raise ValueError(f"Invalid pair limit '{item}'. Expected pair=min:max")
        pair, bounds = item.split("=", 1)
        fields = bounds.split(":")
        if len(fields) not in (2, 3):
            raise ValueError(f"Invalid pair limit '{item}'. Expected pair=min:max")
        decimals = int(fields[2]) if len(fields) == 3 else FALLBACK_PAIR_LIMITS[2]
        limits[pair.strip().lower()] = (float(fields[0]), float(fields[1]), decimals)
    return limits
