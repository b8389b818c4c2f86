# app/paygate/chain.py
"""
Chain query capability used by the transaction verifier.

ChainClient is the interface the verifier depends on; JsonRpcChainClient
implements it over plain Ethereum JSON-RPC. Every call is bounded by a
timeout, and transient failures (network errors, 5xx, RPC error objects)
are retried with exponential backoff. Exhausting the retries raises
ChainRPCUnavailable, never an empty success.
"""
import itertools
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional

import requests
from requests.exceptions import RequestException

from app.paygate.errors import ChainRPCUnavailable

logger = logging.getLogger(__name__)


class ChainClient(ABC):
    """Read-only view of a single EVM chain."""

    @abstractmethod
    def get_transaction(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        """Return the transaction object, or None if the node does not know it."""

    @abstractmethod
    def get_transaction_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        """Return the receipt, or None if the transaction is not yet mined."""

    @abstractmethod
    def get_block_number(self) -> int:
        """Return the latest block number."""


class JsonRpcChainClient(ChainClient):
    """ChainClient over HTTP JSON-RPC."""

    def __init__(
        self,
        rpc_url: str,
        timeout: float = 10.0,
        max_retries: int = 3,
        backoff_seconds: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.rpc_url = rpc_url
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self._sleep = sleep
        self._request_ids = itertools.count(1)

    def get_transaction(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        return self._call("eth_getTransactionByHash", [tx_hash])

    def get_transaction_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        return self._call("eth_getTransactionReceipt", [tx_hash])

    def get_block_number(self) -> int:
        result = self._call("eth_blockNumber", [])
        if not isinstance(result, str):
            raise ChainRPCUnavailable(f"Invalid eth_blockNumber result: {result!r}")
        return int(result, 16)

    def _call(self, method: str, params: List[Any]) -> Any:
        """
        Make one JSON-RPC call, retrying transient failures.

        Raises:
            ChainRPCUnavailable: If every attempt failed
        """
        last_error: Optional[str] = None

        for attempt in range(self.max_retries + 1):
            if attempt > 0:
                delay = self.backoff_seconds * (2 ** (attempt - 1))
                logger.debug(f"Retrying {method} in {delay:.2f}s (attempt {attempt + 1})")
                self._sleep(delay)

            try:
                response = requests.post(
                    self.rpc_url,
                    json={
                        "jsonrpc": "2.0",
                        "method": method,
                        "params": params,
                        "id": next(self._request_ids),
                    },
                    timeout=self.timeout,
                )
                response.raise_for_status()
                payload = response.json()
            except RequestException as e:
                last_error = str(e)
                logger.warning(f"RPC {method} failed: {e}")
                continue
            except ValueError as e:
                last_error = f"invalid JSON: {e}"
                logger.warning(f"RPC {method} returned invalid JSON: {e}")
                continue

            if "error" in payload:
                last_error = f"RPC error: {payload['error']}"
                logger.warning(f"RPC {method} returned error: {payload['error']}")
                continue

            if "result" not in payload:
                last_error = "Invalid RPC response: missing 'result' field"
                logger.warning(f"RPC {method}: {last_error}")
                continue

            return payload["result"]

        logger.error(f"RPC {method} unavailable after {self.max_retries + 1} attempts: {last_error}")
        raise ChainRPCUnavailable(
            f"Chain RPC unavailable: {last_error}",
            details={"method": method, "attempts": self.max_retries + 1},
        )
