"""AppdSubmitter: Transaction submission through the ROFL appd daemon."""

import json
import logging
import time
from typing import Any

import cbor2
import httpx
from web3 import Web3
from web3.types import TxParams

from ..errors import LedgerError
from .base import TransactionSubmitter

logger = logging.getLogger(__name__)

# Retry configuration for appd requests
MAX_RETRIES = 10
BACKOFF_BASE = 1.0
BACKOFF_MAX = 5.0


class AppdSubmitter(TransactionSubmitter):
    """Submits transactions via the appd sign-submit endpoint.

    Communicates with the ROFL appd via Unix domain socket or HTTP. The appd
    does not report a transaction hash, so the returned commit handle is a
    keccak fingerprint of the call data and the submission time in
    milliseconds. Resubmitting identical call data yields a new handle.

    :cvar ROFL_SOCKET_PATH: Default Unix socket path for appd.
    :ivar url: Optional HTTP URL or socket path override.
    :ivar max_retries: Attempts per appd request.
    """

    ROFL_SOCKET_PATH = "/run/rofl-appd.sock"

    def __init__(self, url: str = "", max_retries: int = MAX_RETRIES) -> None:
        """Initialize the appd submitter.

        :param url: Optional URL or socket path. Empty uses default socket.
        :param max_retries: Attempts per appd request (default: 10).
        """
        self.url = url
        self.max_retries = max_retries

    def _build_transport(self) -> httpx.HTTPTransport | None:
        """Build HTTP transport for appd requests."""
        if self.url and not self.url.startswith("http"):
            logger.debug("Using HTTP socket: %s", self.url)
            return httpx.HTTPTransport(uds=self.url)
        if not self.url:
            logger.debug("Using unix domain socket: %s", self.ROFL_SOCKET_PATH)
            return httpx.HTTPTransport(uds=self.ROFL_SOCKET_PATH)
        return None

    def _appd_post(self, path: str, payload: Any) -> httpx.Response:
        """Make a POST request to the appd with retry and backoff.

        :param path: API endpoint path.
        :param payload: JSON payload.
        :returns: HTTP response.
        :raises LedgerError: If max retries exceeded.
        """
        transport = self._build_transport()
        base_url = self.url if self.url and self.url.startswith("http") else "http://localhost"

        with httpx.Client(transport=transport) as client:
            for attempt in range(self.max_retries):
                try:
                    logger.debug(
                        "POST %s payload=%s (attempt %d)",
                        path,
                        json.dumps(payload),
                        attempt + 1,
                    )
                    response = client.post(base_url + path, json=payload, timeout=None)
                    if response.is_success:
                        return response
                    logger.warning(
                        "appd POST %s failed: %s %s (attempt %d/%d)",
                        path,
                        response.status_code,
                        response.reason_phrase,
                        attempt + 1,
                        self.max_retries,
                    )
                except httpx.RequestError as exc:
                    logger.warning(
                        "appd POST %s error: %s (attempt %d/%d)",
                        path,
                        exc,
                        attempt + 1,
                        self.max_retries,
                    )
                if attempt + 1 < self.max_retries:
                    time.sleep(min(BACKOFF_BASE * (1.5 ** attempt), BACKOFF_MAX))

        raise LedgerError(
            f"appd POST {path} failed after {self.max_retries} attempts",
            metadata={"path": path},
        )

    @staticmethod
    def build_payload(tx: TxParams) -> dict:
        """Translate Web3 transaction params into an appd sign-submit payload.

        :param tx: Transaction parameters including data, to, gas, value.
        :returns: JSON payload for /rofl/v1/tx/sign-submit.
        """
        # Strip 0x prefix from hex strings and normalize to lowercase
        data_hex = str(tx["data"]).removeprefix("0x").lower()

        to_hex = ""
        if tx.get("to"):
            to_hex = str(tx["to"]).removeprefix("0x").lower()

        return {
            "tx": {
                "kind": "eth",
                "data": {
                    "gas_limit": int(tx["gas"]),
                    "to": to_hex,
                    "value": str(tx.get("value", 0)),
                    "data": data_hex,
                },
            },
            "encrypted": False,
        }

    def submit_tx(self, tx: TxParams) -> str:
        """Submit a transaction via the ROFL appd sign-submit endpoint.

        :param tx: Transaction parameters including data, to, gas, value.
        :returns: Keccak fingerprint of the call data and submission time, 0x-prefixed.
        :raises LedgerError: If the appd rejects the call or it reverts.
        """
        payload = self.build_payload(tx)
        result = self._appd_post("/rofl/v1/tx/sign-submit", payload).json()

        if result.get("data"):
            call_result = cbor2.loads(bytes.fromhex(result["data"]))
            if isinstance(call_result, dict) and "fail" in call_result:
                raise LedgerError(
                    f"Transaction failed: {call_result['fail']}",
                    metadata={"to": payload["tx"]["data"]["to"]},
                )
            logger.debug(f"appd call result: {call_result}")

        submitted_ms = int(time.time() * 1000)
        fingerprint = Web3.keccak(hexstr=payload["tx"]["data"]["data"] + f"{submitted_ms:016x}")
        return Web3.to_hex(fingerprint)
