"""
Quorum Price Oracle - Aggregation, Validation and Lifecycle Module

This module turns raw price observations from multiple off-chain sources
into committed on-chain prices:
- TradingPair: Configured pair with validation bounds and on-chain precision
- PriceValidator: Range, freshness and quorum screening of observations
- PriceAggregator: Outlier rejection and average/median/weighted combination
- UpdateGate: Withholds commits for insignificant price moves
- OracleController: Periodic update cycle with retry and circuit breaker
- FetchCoordinator / SourceManager: Concurrent fetching with per-source backoff
- PriceOracle: Wires sources, pipeline stages and the ledger together
- fetchers: Modular price fetcher implementations
- ledger: On-chain commit clients
"""

from .errors import (
    ControllerStateError,
    FetchError,
    LedgerError,
    OracleError,
    ValidationError,
)
from .FetchCoordinator import FetchCoordinator
from .Observation import AggregatedObservation, Observation, SkipReason
from .OracleController import (
    ControllerState,
    CycleResult,
    Health,
    HealthReport,
    OracleController,
    State,
)
from .PriceAggregator import AggregationResult, PriceAggregator
from .PriceOracle import PriceOracle
from .PriceValidator import PriceValidator, ValidationOutcome
from .SourceManager import SourceManager, SourceStatus
from .TradingPair import TradingPair
from .UpdateGate import UpdateGate

__all__ = [
    "AggregatedObservation",
    "AggregationResult",
    "ControllerState",
    "ControllerStateError",
    "CycleResult",
    "FetchCoordinator",
    "FetchError",
    "Health",
    "HealthReport",
    "LedgerError",
    "Observation",
    "OracleController",
    "OracleError",
    "PriceAggregator",
    "PriceOracle",
    "PriceValidator",
    "SkipReason",
    "SourceManager",
    "SourceStatus",
    "State",
    "TradingPair",
    "UpdateGate",
    "ValidationError",
    "ValidationOutcome",
]
