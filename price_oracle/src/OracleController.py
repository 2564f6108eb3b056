"""OracleController: Lifecycle of the periodic update cycle.

One cycle runs fetch (with retry), validation, aggregation, the update gate
and the ledger commit, in that order. Cycles never overlap. The controller
owns the last-known-good price table and the run counters, and stops itself
when too many cycles fail in a row.

States::

    STOPPED -> STARTING -> RUNNING -> STOPPING -> STOPPED
                              \\
                               -> FAILED (circuit breaker)

Collaborators are injected, so every stage can be replaced in tests:

.. code-block:: python

    controller = OracleController(
        pairs=[TradingPair.from_string("btc/usd")],
        fetch=FetchCoordinator(fetchers),
        validator=PriceValidator(),
        aggregator=PriceAggregator(),
        gate=UpdateGate(1.0),
        ledger=ledger_client,
    )
    await controller.run()
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import random
import threading
import time
from collections import deque
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Awaitable, Callable, Protocol

from .CycleScheduler import CycleScheduler
from .errors import ControllerStateError, FetchError, LedgerError, ValidationError
from .Observation import AggregatedObservation, Observation, SkipReason
from .retry import retry_delay

if TYPE_CHECKING:
    from .ledger import LedgerClient
    from .PriceValidator import ValidationOutcome
    from .TradingPair import TradingPair
    from .UpdateGate import UpdateGate

logger = logging.getLogger(__name__)

# Commit handle recorded for pairs withheld by the update gate.
SKIPPED = "skipped"

# Number of most recent cycle outcomes considered by get_health().
HEALTH_WINDOW_CYCLES = 10

FetchStrategy = Callable[[list["TradingPair"]], Awaitable[list[Observation]]]


class Validator(Protocol):
    def validate(
        self, observations: list[Observation], pairs: list[TradingPair], now: float | None = None
    ) -> ValidationOutcome: ...


class Aggregator(Protocol):
    def aggregate(self, observations: list[Observation]) -> dict[str, AggregatedObservation]: ...


class State(str, Enum):
    """Lifecycle states of the controller."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    FAILED = "failed"


class Health(str, Enum):
    """Overall health levels reported by get_health()."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass(frozen=True)
class ControllerState:
    """Snapshot of the controller counters.

    :ivar state: Current lifecycle state.
    :ivar total_cycles: Cycles attempted since construction.
    :ivar consecutive_failures: Failed cycles since the last success.
    :ivar total_failures: Failed cycles since construction.
    :ivar last_success_at: Unix time of the last successful cycle.
    :ivar last_error: Message of the most recent failure.
    """

    state: State = State.STOPPED
    total_cycles: int = 0
    consecutive_failures: int = 0
    total_failures: int = 0
    last_success_at: float | None = None
    last_error: str | None = None

    @property
    def is_running(self) -> bool:
        return self.state == State.RUNNING

    def as_dict(self) -> dict:
        return {
            "state": self.state.value,
            "is_running": self.is_running,
            "total_cycles": self.total_cycles,
            "consecutive_failures": self.consecutive_failures,
            "total_failures": self.total_failures,
            "last_success_at": self.last_success_at,
            "last_error": self.last_error,
        }


@dataclass(frozen=True)
class PriceTable:
    """Last-known-good prices.

    :ivar latest: Most recent aggregated observation per pair.
    :ivar committed: Most recent aggregated observation written to the
        ledger per pair. The update gate compares against this one.
    """

    latest: Mapping[str, AggregatedObservation] = field(
        default_factory=lambda: MappingProxyType({})
    )
    committed: Mapping[str, AggregatedObservation] = field(
        default_factory=lambda: MappingProxyType({})
    )

    def updated(
        self,
        latest: Mapping[str, AggregatedObservation],
        committed: Mapping[str, AggregatedObservation],
    ) -> PriceTable:
        """Return a new table with the given entries merged in."""
        return PriceTable(
            latest=MappingProxyType({**self.latest, **latest}),
            committed=MappingProxyType({**self.committed, **committed}),
        )


@dataclass
class CycleResult:
    """Outcome of one update cycle.

    :ivar started_at: Unix time the cycle began.
    :ivar trigger: What started the cycle ("startup", "scheduled", "manual").
    :ivar duration_ms: Wall time of the cycle in milliseconds.
    :ivar per_pair: Aggregated value or skip reason per pair key.
    :ivar commit_hashes: Commit handle, or "skipped", per aggregated pair.
    :ivar warnings: Non-fatal findings from validation.
    :ivar error: Failure message if the cycle failed.
    """

    started_at: float
    trigger: str
    duration_ms: float = 0.0
    per_pair: dict[str, AggregatedObservation | SkipReason] = field(default_factory=dict)
    commit_hashes: dict[str, str] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class HealthReport:
    """Result of a health query.

    :ivar status: Overall health level.
    :ivar reason: Why the status is not healthy, if it is not.
    :ivar last_error: Most recent cycle error, if any.
    :ivar last_success_at: Unix time of the last successful cycle.
    :ivar recent_failures: Failed cycles within the recent window.
    """

    status: Health
    reason: str | None
    last_error: str | None
    last_success_at: float | None
    recent_failures: int

    def as_dict(self) -> dict:
        return {
            "status": self.status.value,
            "reason": self.reason,
            "last_error": self.last_error,
            "last_success_at": self.last_success_at,
            "recent_failures": self.recent_failures,
        }


class OracleController:
    """Runs the update cycle on a fixed interval with a circuit breaker.

    :ivar pairs: Configured trading pairs.
    :ivar update_interval: Seconds between cycle starts.
    :ivar retry_attempts: Fetch attempts per cycle, and the number of
        consecutive failed cycles that trips the breaker.
    """

    def __init__(
        self,
        pairs: list[TradingPair],
        fetch: FetchStrategy,
        validator: Validator,
        aggregator: Aggregator,
        gate: UpdateGate,
        ledger: LedgerClient,
        update_interval: float = 300.0,
        retry_attempts: int = 3,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
        jitter: Callable[[], float] = random.random,
    ) -> None:
        """Initialize the controller.

        :param pairs: Trading pairs to maintain.
        :param fetch: Coroutine function returning observations for pairs.
        :param validator: Object with validate(observations, pairs, now).
        :param aggregator: Object with aggregate(observations).
        :param gate: Object with should_commit(previous, current).
        :param ledger: Ledger client with async submit().
        :param update_interval: Seconds between cycle starts (default: 300).
        :param retry_attempts: Fetch attempts and breaker threshold (default: 3).
        :param sleep: Awaitable sleep used between fetch attempts.
        :param clock: Source of Unix time.
        :param jitter: Source of uniform values in [0, 1) for retry delays.
        :raises ValueError: If the interval or retry count is invalid.
        """
        if update_interval <= 0:
            raise ValueError("update_interval must be positive")
        if retry_attempts < 1:
            raise ValueError("retry_attempts must be at least 1")
        if not pairs:
            raise ValueError("At least one trading pair must be specified")

        self.pairs = list(pairs)
        self.update_interval = update_interval
        self.retry_attempts = retry_attempts

        self._fetch = fetch
        self._validator = validator
        self._aggregator = aggregator
        self._gate = gate
        self._ledger = ledger
        self._sleep = sleep
        self._clock = clock
        self._jitter = jitter

        self._pairs_by_key = {p.key: p for p in self.pairs}
        self._cycle_lock = asyncio.Lock()
        self._scheduler = CycleScheduler(self._scheduled_cycle)
        self._stopped = asyncio.Event()

        # Single writer (the cycle); readers take the guard to grab a snapshot
        self._guard = threading.Lock()
        self._state = ControllerState()
        self._prices = PriceTable()
        self._recent: deque[bool] = deque(maxlen=HEALTH_WINDOW_CYCLES)
        self._last_result: CycleResult | None = None

    # ---- lifecycle ----------------------------------------------------

    async def start(self) -> CycleResult:
        """Run the first cycle and, if it succeeds, start the schedule.

        :returns: Result of the startup cycle.
        :raises ControllerStateError: If already running or starting.
        :raises OracleError: The startup cycle's error; state returns to STOPPED.
        """
        with self._guard:
            if self._state.state in (State.RUNNING, State.STARTING):
                raise ControllerStateError(
                    f"Cannot start controller in state {self._state.state.value}"
                )
            self._state = dataclasses.replace(
                self._state, state=State.STARTING, consecutive_failures=0
            )
        self._stopped.clear()
        logger.info(
            f"Starting oracle controller for {', '.join(self._pairs_by_key)} "
            f"(interval {self.update_interval}s)"
        )

        started_at = self._clock()
        try:
            result = await self._run_cycle("startup")
        except Exception:
            self._set_state(State.STOPPED)
            raise

        if self.state != State.STARTING:
            # stop() arrived during the startup cycle
            return result

        self._set_state(State.RUNNING)
        self._arm_next(started_at)
        logger.info("Oracle controller running")
        return result

    def stop(self) -> None:
        """Stop scheduling further cycles.

        Idempotent. An in-flight cycle is not aborted; the controller
        reaches STOPPED once it finishes.
        """
        self._scheduler.cancel()
        with self._guard:
            current = self._state.state
            if current in (State.STOPPED, State.FAILED):
                return
            in_flight = self._cycle_lock.locked()
            new_state = State.STOPPING if in_flight else State.STOPPED
            self._state = dataclasses.replace(self._state, state=new_state)
        logger.info(f"Oracle controller {new_state.value}")
        if new_state == State.STOPPED:
            self._stopped.set()

    async def run(self) -> None:
        """Start, then wait until the controller stops or the breaker trips."""
        await self.start()
        await self._stopped.wait()

    async def force_update(self) -> CycleResult:
        """Run one cycle now, leaving the schedule's phase untouched.

        :returns: Result of the cycle.
        :raises OracleError: If the cycle fails.
        """
        return await self._run_cycle("manual")

    # ---- queries ------------------------------------------------------

    @property
    def state(self) -> State:
        return self._state.state

    @property
    def is_running(self) -> bool:
        return self._state.is_running

    @property
    def last_result(self) -> CycleResult | None:
        """Result of the most recently finished cycle."""
        return self._last_result

    def get_state(self) -> ControllerState:
        """Snapshot of the controller counters."""
        with self._guard:
            return self._state

    def get_price_table(self) -> PriceTable:
        """Snapshot of both latest and committed prices."""
        with self._guard:
            return self._prices

    def get_prices(self) -> Mapping[str, AggregatedObservation]:
        """Latest aggregated observation per pair key."""
        return self.get_price_table().latest

    def get_price(self, pair_key: str) -> AggregatedObservation | None:
        """Latest aggregated observation for one pair, or None."""
        return self.get_prices().get(pair_key.lower())

    def get_health(self) -> HealthReport:
        """Classify the controller as healthy, degraded or unhealthy."""
        with self._guard:
            state = self._state
            recent_failures = sum(1 for ok in self._recent if not ok)

        def report(status: Health, reason: str | None) -> HealthReport:
            return HealthReport(
                status=status,
                reason=reason,
                last_error=state.last_error,
                last_success_at=state.last_success_at,
                recent_failures=recent_failures,
            )

        if not state.is_running:
            return report(Health.UNHEALTHY, f"Oracle is {state.state.value}")

        now = self._clock()
        if state.last_success_at is None or (
            now - state.last_success_at > 2 * self.update_interval
        ):
            return report(Health.DEGRADED, "stale")

        if recent_failures > self.retry_attempts / 2:
            return report(Health.DEGRADED, "high error rate")

        return report(Health.HEALTHY, None)

    # ---- cycle --------------------------------------------------------

    async def _scheduled_cycle(self) -> None:
        if self.state != State.RUNNING:
            return
        started_at = self._clock()
        try:
            await self._run_cycle("scheduled")
        except Exception as e:
            # Nothing awaits a scheduled cycle
            logger.error(f"Scheduled update cycle failed: {e}")
        self._arm_next(started_at)

    def _arm_next(self, cycle_started_at: float) -> None:
        if self.state != State.RUNNING:
            return
        self._scheduler.arm(cycle_started_at + self.update_interval - self._clock())

    async def _run_cycle(self, trigger: str) -> CycleResult:
        async with self._cycle_lock:
            result = CycleResult(started_at=self._clock(), trigger=trigger)
            try:
                await self._cycle(result)
            except Exception as e:
                result.error = str(e)
                result.duration_ms = (self._clock() - result.started_at) * 1000
                self._last_result = result
                self._record_failure(e)
                raise
            else:
                result.duration_ms = (self._clock() - result.started_at) * 1000
                self._last_result = result
                self._record_success()
                committed = sum(1 for h in result.commit_hashes.values() if h != SKIPPED)
                logger.info(
                    f"Update cycle ({trigger}) complete in {result.duration_ms:.0f}ms: "
                    f"{len(result.commit_hashes)} aggregated, {committed} committed"
                )
                return result
            finally:
                self._finish_stop()

    async def _cycle(self, result: CycleResult) -> None:
        active = [p for p in self.pairs if p.is_active]
        observations = await self._fetch_with_retry(active)

        outcome = self._validator.validate(observations, active, now=self._clock())
        for warning in outcome.warnings:
            logger.warning(warning)
        result.warnings.extend(outcome.warnings)
        if not outcome.valid:
            for error in outcome.errors:
                logger.error(error)
            raise ValidationError(
                f"Price validation failed: {'; '.join(outcome.errors)}",
                metadata={"errors": list(outcome.errors)},
            )

        aggregated = self._aggregator.aggregate(outcome.accepted)
        for pair in active:
            if pair.key in aggregated:
                result.per_pair[pair.key] = aggregated[pair.key]
            else:
                result.per_pair[pair.key] = SkipReason(pair.key, "insufficient_sources")

        committed: dict[str, AggregatedObservation] = {}
        try:
            for key, current in aggregated.items():
                previous = self.get_price_table().committed.get(key)
                if not self._gate.should_commit(previous, current):
                    logger.debug(f"{key}: change below threshold, commit withheld")
                    result.commit_hashes[key] = SKIPPED
                    continue
                result.commit_hashes[key] = await self._commit(key, current)
                committed[key] = current
        finally:
            with self._guard:
                self._prices = self._prices.updated(aggregated, committed)

    async def _fetch_with_retry(self, pairs: list[TradingPair]) -> list[Observation]:
        last_error: FetchError | None = None
        for attempt in range(1, self.retry_attempts + 1):
            try:
                return await self._fetch(pairs)
            except FetchError as e:
                last_error = e
                if attempt < self.retry_attempts:
                    delay = retry_delay(attempt, self._jitter)
                    logger.warning(
                        f"Fetch attempt {attempt}/{self.retry_attempts} failed: {e}. "
                        f"Retrying in {delay:.1f}s"
                    )
                    await self._sleep(delay)
        raise last_error or FetchError("Fetch stage produced no result")

    async def _commit(self, key: str, current: AggregatedObservation) -> str:
        pair = self._pairs_by_key[key]
        try:
            handle = await self._ledger.submit(
                pair,
                current.price,
                current.timestamp,
                sorted(current.contributing_sources),
                current.confidence,
            )
        except LedgerError:
            raise
        except Exception as e:
            raise LedgerError(f"Failed to commit {key}: {e}", metadata={"pair": key}) from e
        logger.info(
            f"{key}: committed ${current.price:.6f} from "
            f"{current.source_count} sources (confidence {current.confidence:.1f}): {handle}"
        )
        return handle

    # ---- bookkeeping --------------------------------------------------

    def _set_state(self, state: State) -> None:
        with self._guard:
            self._state = dataclasses.replace(self._state, state=state)
        if state in (State.STOPPED, State.FAILED):
            self._stopped.set()

    def _finish_stop(self) -> None:
        if self.state == State.STOPPING:
            self._set_state(State.STOPPED)
            logger.info("Oracle controller stopped")

    def _record_success(self) -> None:
        with self._guard:
            self._recent.append(True)
            self._state = dataclasses.replace(
                self._state,
                total_cycles=self._state.total_cycles + 1,
                consecutive_failures=0,
                last_success_at=self._clock(),
            )

    def _record_failure(self, error: Exception) -> None:
        with self._guard:
            self._recent.append(False)
            self._state = dataclasses.replace(
                self._state,
                total_cycles=self._state.total_cycles + 1,
                consecutive_failures=self._state.consecutive_failures + 1,
                total_failures=self._state.total_failures + 1,
                last_error=str(error),
            )
            state = self._state

        logger.error(
            f"Update cycle failed ({state.consecutive_failures} consecutive): {error}"
        )
        if state.state == State.RUNNING and state.consecutive_failures >= self.retry_attempts:
            self._scheduler.cancel()
            self._set_state(State.FAILED)
            logger.error(
                f"Circuit breaker tripped after {state.consecutive_failures} "
                "consecutive failures; controller stopped"
            )
