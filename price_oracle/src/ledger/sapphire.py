"""SapphireLedgerClient: Commits prices to the oracle contract on Sapphire."""

from __future__ import annotations

import asyncio
import logging
import os
from typing import TYPE_CHECKING

from eth_account import Account
from eth_account.signers.local import LocalAccount
from sapphirepy import sapphire
from web3 import Web3
from web3.middleware import SignAndSendRawMiddlewareBuilder

from ..errors import LedgerError
from .appd import AppdSubmitter
from .base import LedgerClient, TransactionSubmitter
from .localnet import LocalnetSubmitter

if TYPE_CHECKING:
    from web3.contract import Contract

    from ..TradingPair import TradingPair

logger = logging.getLogger(__name__)

NETWORKS: dict[str, str] = {
    "sapphire": "https://sapphire.oasis.io",
    "sapphire-testnet": "https://testnet.sapphire.oasis.io",
    "sapphire-localnet": "http://localhost:8545",
}

# Predeployed price oracle contract addresses based on the network.
DEFAULT_ORACLE_ADDRESS: dict[str, str | None] = {
    "sapphire": None,
    "sapphire-testnet": None,
    "sapphire-localnet": "0x5FbDB2315678afecb367f032d93F642f64180aa3",
}

# Well-known localnet test account used for signing
LOCALNET_PRIVATE_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"

ORACLE_ABI: list[dict] = [
    {
        "type": "function",
        "name": "updatePrice",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "pair", "type": "string"},
            {"name": "price", "type": "uint256"},
            {"name": "timestamp", "type": "uint64"},
            {"name": "sources", "type": "string[]"},
            {"name": "confidence", "type": "uint8"},
        ],
        "outputs": [],
    },
    {
        "type": "function",
        "name": "getPrice",
        "stateMutability": "view",
        "inputs": [{"name": "pair", "type": "string"}],
        "outputs": [
            {"name": "price", "type": "uint256"},
            {"name": "timestamp", "type": "uint64"},
            {"name": "confidence", "type": "uint8"},
        ],
    },
]


def connect(network_name: str, rpc_url: str | None = None) -> Web3:
    """Create a Sapphire-wrapped Web3 instance for a network.

    :param network_name: Network name (sapphire, sapphire-testnet,
        sapphire-localnet) or a raw RPC URL.
    :param rpc_url: Optional RPC URL override (also read from RPC_URL).
    :returns: Configured Web3 instance.
    """
    # RPC_URL env var overrides the default for the network
    url = rpc_url or os.environ.get("RPC_URL") or NETWORKS.get(network_name, network_name)

    w3 = Web3(Web3.HTTPProvider(url))
    if network_name == "sapphire-localnet":
        account: LocalAccount = Account.from_key(LOCALNET_PRIVATE_KEY)
        w3.middleware_onion.add(SignAndSendRawMiddlewareBuilder.build(account))
        w3.eth.default_account = account.address
    return sapphire.wrap(w3)


class SapphireLedgerClient(LedgerClient):
    """Ledger client for the price oracle contract.

    Prices are scaled to integers with the pair's decimal_places and the
    confidence is rounded to a whole percent.

    :ivar network_name: Target network name.
    :ivar w3: Web3 instance.
    :ivar contract: Oracle contract instance.
    :ivar submitter: Transaction submitter (appd or localnet).
    :ivar account_address: Address whose balance is reported, if known.
    """

    def __init__(
        self,
        network_name: str,
        oracle_address: str | None = None,
        w3: Web3 | None = None,
        submitter: TransactionSubmitter | None = None,
        account_address: str | None = None,
        appd_url: str = "",
        rpc_url: str | None = None,
    ) -> None:
        """Initialize the ledger client.

        :param network_name: Network to connect to.
        :param oracle_address: Oracle contract address; defaults per network.
        :param w3: Optional Web3 instance; created with connect() if omitted.
        :param submitter: Optional submitter; localnet submits directly,
            other networks go through the ROFL appd.
        :param account_address: Optional address for balance queries.
        :param appd_url: Optional appd URL or socket path override.
        :param rpc_url: Optional RPC URL override.
        :raises ValueError: If no oracle address is known for the network.
        """
        self.network_name = network_name
        oracle_address = oracle_address or DEFAULT_ORACLE_ADDRESS.get(network_name)
        if not oracle_address:
            raise ValueError(f"No oracle contract address for network {network_name}")

        self.w3 = w3 or connect(network_name, rpc_url)
        self.contract: Contract = self.w3.eth.contract(
            address=Web3.to_checksum_address(oracle_address), abi=ORACLE_ABI
        )

        if submitter is None:
            if network_name == "sapphire-localnet":
                submitter = LocalnetSubmitter(self.w3)
            else:
                submitter = AppdSubmitter(appd_url)
        self.submitter = submitter
        self.account_address = account_address or self.w3.eth.default_account or None

    def build_update_tx(
        self,
        pair: TradingPair,
        price: float,
        timestamp: float,
        contributing_sources: list[str],
        confidence: float,
    ) -> dict:
        """Build the updatePrice transaction for one pair.

        :returns: Transaction parameters ready for the submitter.
        """
        return self.contract.functions.updatePrice(
            pair.key,
            pair.scale_price(price),
            int(timestamp),
            list(contributing_sources),
            max(0, min(100, int(round(confidence)))),
        ).build_transaction({"gasPrice": self.w3.eth.gas_price})

    async def submit(
        self,
        pair: TradingPair,
        price: float,
        timestamp: float,
        contributing_sources: list[str],
        confidence: float,
    ) -> str:
        try:
            tx = await asyncio.to_thread(
                self.build_update_tx, pair, price, timestamp, contributing_sources, confidence
            )
            handle = await asyncio.to_thread(self.submitter.submit_tx, tx)
        except LedgerError:
            raise
        except Exception as e:
            raise LedgerError(
                f"Failed to submit {pair.key}: {e}", metadata={"pair": pair.key}
            ) from e

        logger.debug(f"{pair.key}: submitted price {price} ({handle})")
        return handle

    async def get_balance(self) -> int:
        if not self.account_address:
            raise LedgerError("No account address configured for balance queries")
        try:
            return int(await asyncio.to_thread(self.w3.eth.get_balance, self.account_address))
        except Exception as e:
            raise LedgerError(f"Failed to get balance: {e}") from e

    async def health_check(self) -> dict:
        try:
            block_number = await asyncio.to_thread(lambda: self.w3.eth.block_number)
            details: dict = {
                "network": self.network_name,
                "latest_block": block_number,
                "oracle_address": self.contract.address,
            }
            if self.account_address:
                details["account_address"] = self.account_address
                details["balance"] = str(await self.get_balance())
            return {"status": "healthy", "details": details}
        except Exception as e:
            logger.warning(f"Ledger health check failed: {e}")
            return {
                "status": "unhealthy",
                "details": {"reason": "Health check failed", "error": str(e)},
            }
