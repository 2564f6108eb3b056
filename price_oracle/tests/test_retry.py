"""Unit tests for retry_delay."""

import pytest

from price_oracle.src.retry import retry_delay


class TestRetryDelay:
    """Test the fetch retry backoff."""

    def test_doubles_per_attempt(self) -> None:
        """Delay doubles with each attempt."""
        delays = [retry_delay(a, jitter=lambda: 0.0) for a in range(1, 6)]
        assert delays == [1.0, 2.0, 4.0, 8.0, 16.0]

    def test_capped(self) -> None:
        """Delay is capped at 30 seconds before jitter."""
        assert retry_delay(6, jitter=lambda: 0.0) == 30.0
        assert retry_delay(50, jitter=lambda: 0.0) == 30.0

    def test_jitter_adds_up_to_ten_percent(self) -> None:
        """Jitter adds at most 10% on top of the base delay."""
        assert retry_delay(3, jitter=lambda: 0.5) == pytest.approx(4.2)
        assert retry_delay(6, jitter=lambda: 0.999) < 33.0

    def test_default_jitter_in_bounds(self) -> None:
        """Random jitter stays within the documented range."""
        for _ in range(50):
            assert 2.0 <= retry_delay(2) < 2.2

    def test_invalid_attempt(self) -> None:
        """Attempts start at 1."""
        with pytest.raises(ValueError, match="attempt must be at least 1"):
            retry_delay(0)
