"""LocalnetSubmitter: Direct Web3 submission for local development."""

import logging

from web3 import Web3
from web3.types import TxParams

from ..errors import LedgerError
from .base import TransactionSubmitter

logger = logging.getLogger(__name__)


class LocalnetSubmitter(TransactionSubmitter):
    """Sends transactions straight to a localnet node.

    The Web3 instance must sign with its default account (see
    connect() in sapphire.py).

    :ivar w3: Web3 instance for transaction submission.
    """

    def __init__(self, w3: Web3) -> None:
        self.w3 = w3

    def submit_tx(self, tx: TxParams) -> str:
        """Submit a transaction directly via Web3 and wait for its receipt.

        :param tx: Transaction parameters.
        :returns: Transaction hash, 0x-prefixed.
        :raises LedgerError: If the transaction reverted.
        """
        tx_hash = self.w3.eth.send_transaction(tx)
        tx_receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash)
        handle = Web3.to_hex(tx_receipt["transactionHash"])

        if tx_receipt["status"] != 1:
            raise LedgerError(f"Transaction {handle} reverted", metadata={"tx_hash": handle})

        logger.debug(f"Transaction {handle} mined in block {tx_receipt['blockNumber']}")
        return handle
