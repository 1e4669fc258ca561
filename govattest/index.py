"""
Attestation index for govattest.

The index is an ordered, append-only registry of attestation files.
Entries are only ever added; existing entries are never edited or removed.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from .attestation import AttestationType
from .errors import SchemaMismatch
from .util import PathLike, load_json, write_json_artifact

logger = logging.getLogger(__name__)

INDEX_SCHEMA = "attestation-index-v1"


@dataclass(frozen=True)
class IndexEntry:
    """One registered attestation; path points at the attestation file."""
    id: str
    type: str
    path: str
    verify_args: Optional[List[str]] = None

    @property
    def is_seal(self) -> bool:
        return self.type == AttestationType.INDEX.value

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"id": self.id, "type": self.type, "path": self.path}
        if self.verify_args:
            d["verifyArgs"] = list(self.verify_args)
        return d

    @classmethod
    def from_dict(cls, data: Dict[str, Any], position: int = 0) -> "IndexEntry":
        if not isinstance(data, dict):
            raise SchemaMismatch(f"index entry {position} must be an object")
        for key in ("id", "type", "path"):
            if not isinstance(data.get(key), str) or not data[key]:
                raise SchemaMismatch(f"index entry {position} missing '{key}'")
        args = data.get("verifyArgs")
        if args is not None and (
            not isinstance(args, list) or not all(isinstance(a, str) for a in args)
        ):
            raise SchemaMismatch(f"index entry {position} verifyArgs must be a list of strings")
        return cls(id=data["id"], type=data["type"], path=data["path"], verify_args=args)


@dataclass
class AttestationIndex:
    """Ordered registry of attestations, including sealing entries."""
    entries: List[IndexEntry] = field(default_factory=list)
    schema: str = INDEX_SCHEMA

    def __len__(self) -> int:
        return len(self.entries)

    def ids(self) -> List[str]:
        return [e.id for e in self.entries]

    def append(self, entry: IndexEntry) -> IndexEntry:
        if entry.id in self.ids():
            raise SchemaMismatch(f"Duplicate index entry id: {entry.id}", {"id": entry.id})
        self.entries.append(entry)
        return entry

    def seal_entries(self) -> List[IndexEntry]:
        return [e for e in self.entries if e.is_seal]

    def last_seal(self) -> Optional[IndexEntry]:
        """The authoritative seal: the last sealing entry, if any."""
        seals = self.seal_entries()
        return seals[-1] if seals else None

    def to_dict(self) -> Dict[str, Any]:
        return {"schema": self.schema, "entries": [e.to_dict() for e in self.entries]}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AttestationIndex":
        if not isinstance(data, dict) or data.get("schema") != INDEX_SCHEMA:
            found = data.get("schema") if isinstance(data, dict) else None
            raise SchemaMismatch(
                f"attestation index schema mismatch: {found}",
                {"expected": INDEX_SCHEMA, "found": found},
            )
        entries = data.get("entries")
        if not isinstance(entries, list):
            raise SchemaMismatch("attestation index entries missing or not an array")
        index = cls(schema=data["schema"])
        for i, raw in enumerate(entries):
            index.append(IndexEntry.from_dict(raw, i))
        return index


def load_index(path: PathLike) -> AttestationIndex:
    return AttestationIndex.from_dict(load_json(path))


def save_index(index: AttestationIndex, path: PathLike) -> bytes:
    """Atomically rewrite the index file; returns the bytes written."""
    body = write_json_artifact(Path(path), index.to_dict())
    logger.debug("index %s saved with %d entries", path, len(index))
    return body


def append_entry(path: PathLike, entry: IndexEntry) -> AttestationIndex:
    """Load, append one entry, and save; a missing index is created empty."""
    p = Path(path)
    index = load_index(p) if p.exists() else AttestationIndex()
    index.append(entry)
    save_index(index, p)
    return index
