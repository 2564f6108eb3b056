"""Ledger clients for committing aggregated prices on-chain."""

from .appd import AppdSubmitter
from .base import LedgerClient, LedgerError, TransactionSubmitter
from .localnet import LocalnetSubmitter
from .sapphire import (
    DEFAULT_ORACLE_ADDRESS,
    NETWORKS,
    ORACLE_ABI,
    SapphireLedgerClient,
    connect,
)

__all__ = [
    "AppdSubmitter",
    "DEFAULT_ORACLE_ADDRESS",
    "LedgerClient",
    "LedgerError",
    "LocalnetSubmitter",
    "NETWORKS",
    "ORACLE_ABI",
    "SapphireLedgerClient",
    "TransactionSubmitter",
    "connect",
]
