"""Shared fixtures for the govattest test suite."""

import json
from pathlib import Path
from typing import Dict, Optional

from govattest.ledger import LedgerReader, checksum_address
from govattest.errors import NetworkReadFailure

# Well-known eth-account documentation key; never holds funds.
TEST_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
TEST_ADDRESS = "0x2c7536E3605D9C16a7a3D7b1898e529396a65c23"

OTHER_KEY = "0x" + "11" * 32

ISSUED_AT = "2026-02-10T04:15:44.207Z"


class FakeLedger(LedgerReader):
    """In-memory ledger keyed by checksummed address."""

    def __init__(self, code: Optional[Dict[str, bytes]] = None, chain_id: int = 84532,
                 block_number: Optional[int] = 1234, fail: bool = False):
        self.code = {checksum_address(a): c for a, c in (code or {}).items()}
        self.chain_id = chain_id
        self.block_number = block_number
        self.fail = fail
        self.calls = []

    @property
    def endpoint(self) -> str:
        return "memory://ledger"

    def get_runtime_bytecode(self, address: str) -> bytes:
        self.calls.append(("getCode", address))
        if self.fail:
            raise NetworkReadFailure("ledger unavailable")
        return self.code.get(checksum_address(address), b"")

    def get_chain_id(self) -> int:
        if self.fail:
            raise NetworkReadFailure("ledger unavailable")
        return self.chain_id

    def get_block_number(self) -> Optional[int]:
        return self.block_number


def write_json(path: Path, data, indent: Optional[int] = 2) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=indent) + "\n", encoding="utf-8")
    return path
