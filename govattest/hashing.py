"""
govattest Digest Engine

Content digests (sha256) for off-chain artifacts and code digests
(keccak256) for on-chain runtime bytecode, under one representation:

    {"alg": "sha256" | "keccak256", "value": "0x<lowercase hex>"}
"""

import hashlib
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Union

from eth_utils import keccak

from .canonicalization import canonicalize
from .errors import MissingArtifact, SchemaMismatch

SHA256 = "sha256"
KECCAK256 = "keccak256"
SUPPORTED_ALGORITHMS = (SHA256, KECCAK256)


def normalize_hex(value: str) -> str:
    """Lowercase and 0x-prefix a hex string."""
    if value is None:
        return ""
    value = str(value).strip().lower()
    return value if value.startswith("0x") else f"0x{value}"


@dataclass(frozen=True)
class Digest:
    """A content or code digest."""
    alg: str
    value: str

    def __post_init__(self):
        if self.alg not in SUPPORTED_ALGORITHMS:
            raise SchemaMismatch(f"Unsupported digest algorithm: {self.alg}")
        object.__setattr__(self, "value", normalize_hex(self.value))

    @property
    def hex(self) -> str:
        """Digest value without the 0x prefix."""
        return self.value[2:]

    def matches(self, other: "Digest") -> bool:
        return self.alg == other.alg and self.value == other.value

    def to_dict(self) -> Dict[str, str]:
        return {"alg": self.alg, "value": self.value}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Digest":
        if not isinstance(data, dict) or "alg" not in data or "value" not in data:
            raise SchemaMismatch("Digest must be an object with 'alg' and 'value'")
        return cls(alg=data["alg"], value=data["value"])


def _as_bytes(data: Union[bytes, str]) -> bytes:
    if isinstance(data, str):
        return data.encode('utf-8')
    return bytes(data)


def content_digest(data: Union[bytes, str]) -> Digest:
    """SHA-256 over the exact bytes given (strings are UTF-8 encoded)."""
    return Digest(SHA256, hashlib.sha256(_as_bytes(data)).hexdigest())


def code_digest(data: Union[bytes, str]) -> Digest:
    """Keccak-256 over runtime bytecode."""
    return Digest(KECCAK256, keccak(_as_bytes(data)).hex())


def value_digest(value: Any) -> Digest:
    """
    Digest of a structured value.

    value_digest(x) = sha256(canonicalize(x))
    """
    return content_digest(canonicalize(value))


def file_digest(path: Union[str, Path], *, chunk_size: int = 1024 * 1024) -> Digest:
    """SHA-256 over a file's raw bytes."""
    p = Path(path)
    if not p.is_file():
        raise MissingArtifact(f"File not found: {p}", {"path": str(p)})
    h = hashlib.sha256()
    with p.open("rb") as f:
        for chunk in iter(lambda: f.read(chunk_size), b""):
            h.update(chunk)
    return Digest(SHA256, h.hexdigest())


def digests_equal(a: str, b: str) -> bool:
    """Compare two hex digest strings ignoring case and 0x prefix."""
    return bool(a) and bool(b) and normalize_hex(a) == normalize_hex(b)


def manifest_line(digest: Digest, target: str) -> str:
    """One "<hex>  <target>" line of a sha256 manifest (no newline)."""
    return f"{digest.hex}  {target}"
