"""Ledger client interfaces.

A LedgerClient commits aggregated prices to the oracle contract. How a built
transaction reaches the chain is delegated to a TransactionSubmitter: the ROFL
appd signs and submits in production, while localnet sends directly through
Web3 with a well-known test account.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from ..errors import LedgerError

if TYPE_CHECKING:
    from web3.types import TxParams

    from ..TradingPair import TradingPair

__all__ = ["LedgerClient", "LedgerError", "TransactionSubmitter"]


class TransactionSubmitter(ABC):
    """Signs and submits prepared transactions.

    Implementations are blocking; async callers run them in a worker thread.
    """

    @abstractmethod
    def submit_tx(self, tx: TxParams) -> str:
        """Submit a transaction.

        :param tx: Transaction parameters (to, data, gas, value, gasPrice).
        :returns: Commit handle identifying the submission.
        :raises LedgerError: If the transaction was rejected or failed.
        """
        pass


class LedgerClient(ABC):
    """Commits aggregated prices to the ledger."""

    @abstractmethod
    async def submit(
        self,
        pair: TradingPair,
        price: float,
        timestamp: float,
        contributing_sources: list[str],
        confidence: float,
    ) -> str:
        """Commit one aggregated price.

        :param pair: Trading pair; its decimal_places define the on-chain scale.
        :param price: Aggregated price.
        :param timestamp: Unix time of the freshest contributing observation.
        :param contributing_sources: Names of the sources behind the price.
        :param confidence: Aggregation confidence (0-100).
        :returns: Commit handle (transaction hash or submission fingerprint).
        :raises LedgerError: If the commit failed.
        """
        pass

    @abstractmethod
    async def get_balance(self) -> int:
        """Balance of the submitting account in the chain's base unit.

        :raises LedgerError: If the balance cannot be read.
        """
        pass

    @abstractmethod
    async def health_check(self) -> dict:
        """Check connectivity to the ledger.

        :returns: Dict with "status" ("healthy" or "unhealthy") and "details".
        """
        pass
