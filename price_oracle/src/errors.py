"""Error taxonomy shared by the oracle core and its adapters.

Hard errors derive from OracleError and bubble up to the OracleController,
which counts them as cycle failures. Aggregation and gate skips are not
errors and never appear here.
"""

from __future__ import annotations

from typing import Any


class OracleError(Exception):
    """Base exception for oracle errors.

    :ivar code: Machine-readable error code.
    :ivar metadata: Optional structured context for logging.
    """

    code = "ORACLE_ERROR"

    def __init__(self, message: str, metadata: dict[str, Any] | None = None):
        """Initialize the error.

        :param message: Human-readable error message.
        :param metadata: Optional structured context.
        """
        super().__init__(message)
        self.metadata = metadata or {}


class FetchError(OracleError):
    """Raised when price sources are unreachable or return malformed data."""

    code = "FETCH_ERROR"


class ValidationError(OracleError):
    """Raised when fetched observations are present but semantically invalid."""

    code = "VALIDATION_ERROR"


class LedgerError(OracleError):
    """Raised when committing a value to the ledger fails."""

    code = "LEDGER_ERROR"


class ControllerStateError(OracleError):
    """Raised on an illegal lifecycle transition (e.g. starting twice)."""

    code = "STATE_ERROR"
