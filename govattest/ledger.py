"""
Ledger read capability for govattest.

The pipeline only ever reads from a ledger node: runtime bytecode at an
address, the chain id, and (optionally) the current block number.
"""

import itertools
import logging
from abc import ABC, abstractmethod
from typing import Any, List, Optional, Union

import requests
from eth_utils import is_address, to_checksum_address

from .errors import NetworkReadFailure, SchemaMismatch
from .logging_config import audit_log

logger = logging.getLogger(__name__)

BlockTag = Union[str, int]


def checksum_address(address: str) -> str:
    """Validate and checksum an address."""
    if not isinstance(address, str) or not is_address(address):
        raise SchemaMismatch(f"Invalid address: {address!r}")
    return to_checksum_address(address)


class LedgerReader(ABC):
    """Read-only interface to a ledger node."""

    @abstractmethod
    def get_runtime_bytecode(self, address: str) -> bytes:
        """Runtime bytecode at address (empty bytes when no code is deployed)."""
        pass

    @abstractmethod
    def get_chain_id(self) -> int:
        pass

    def get_block_number(self) -> Optional[int]:
        """Current block number, or None when the node does not expose it."""
        return None

    @property
    def endpoint(self) -> Optional[str]:
        return None


class JsonRpcLedgerClient(LedgerReader):
    """
    Ethereum JSON-RPC client over HTTP.

    Reads may be pinned to a block number so that every read in one run
    observes the same chain state.
    """

    def __init__(
        self,
        rpc_url: str,
        timeout: float = 30.0,
        block: BlockTag = "latest",
        session: Optional[requests.Session] = None
    ):
        self._rpc_url = rpc_url
        self._timeout = timeout
        self._block = block
        self._session = session or requests.Session()
        self._ids = itertools.count(1)

    @property
    def endpoint(self) -> str:
        return self._rpc_url

    @property
    def block_tag(self) -> str:
        if isinstance(self._block, int):
            return hex(self._block)
        return self._block

    def _call(self, method: str, params: List[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        logger.debug("rpc %s %s", method, params)
        try:
            response = self._session.post(self._rpc_url, json=payload, timeout=self._timeout)
            response.raise_for_status()
            body = response.json()
        except (requests.RequestException, ValueError) as e:
            audit_log.network_failure(self._rpc_url, method, str(e))
            raise NetworkReadFailure(
                f"RPC {method} failed: {e}", {"rpc_url": self._rpc_url, "method": method}
            ) from e

        if not isinstance(body, dict):
            audit_log.network_failure(self._rpc_url, method, "malformed response")
            raise NetworkReadFailure(f"RPC {method} returned a malformed response")
        if body.get("error"):
            error = body["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            audit_log.network_failure(self._rpc_url, method, str(message))
            raise NetworkReadFailure(
                f"RPC {method} error: {message}",
                {"rpc_url": self._rpc_url, "method": method, "error": error},
            )
        if "result" not in body:
            audit_log.network_failure(self._rpc_url, method, "missing result")
            raise NetworkReadFailure(f"RPC {method} response has no result")
        return body["result"]

    def get_runtime_bytecode(self, address: str) -> bytes:
        result = self._call("eth_getCode", [checksum_address(address), self.block_tag])
        if result is None:
            return b""
        return _hex_to_bytes(result, "eth_getCode")

    def get_chain_id(self) -> int:
        return _hex_to_int(self._call("eth_chainId", []), "eth_chainId")

    def get_block_number(self) -> Optional[int]:
        if isinstance(self._block, int):
            return self._block
        return _hex_to_int(self._call("eth_blockNumber", []), "eth_blockNumber")


def _hex_to_bytes(value: Any, method: str) -> bytes:
    if not isinstance(value, str) or not value.startswith("0x"):
        raise NetworkReadFailure(f"RPC {method} returned non-hex data")
    try:
        return bytes.fromhex(value[2:])
    except ValueError as e:
        raise NetworkReadFailure(f"RPC {method} returned invalid hex") from e


def _hex_to_int(value: Any, method: str) -> int:
    if not isinstance(value, str):
        raise NetworkReadFailure(f"RPC {method} returned {type(value).__name__}")
    try:
        return int(value, 16)
    except ValueError as e:
        raise NetworkReadFailure(f"RPC {method} returned invalid quantity") from e
