"""
Utility functions for govattest.

Atomic file writes, JSON artifact loading, and time/timestamp helpers.
"""

import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Union

from .canonicalization import parse_json_bytes, storage_encode
from .errors import AttestationError, ImmutableArtifact, MissingArtifact, SchemaMismatch

PathLike = Union[str, Path]


def atomic_write_bytes(path: PathLike, data: bytes, *, overwrite: bool = True) -> Path:
    """
    Write bytes via temp file + rename so readers never see a partial file.

    With overwrite=False an existing target raises ImmutableArtifact.
    """
    path = Path(path)
    if not overwrite and path.exists():
        raise ImmutableArtifact(
            f"Refusing to overwrite existing artifact: {path}", {"path": str(path)}
        )
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")
    try:
        with tmp.open("wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(str(tmp), str(path))
    except BaseException:
        if tmp.exists():
            tmp.unlink()
        raise
    return path


def atomic_write_text(path: PathLike, text: str, *, overwrite: bool = True) -> Path:
    return atomic_write_bytes(path, text.encode("utf-8"), overwrite=overwrite)


def write_json_artifact(path: PathLike, obj: Any, *, overwrite: bool = True) -> bytes:
    """Write obj in storage encoding and return the bytes written."""
    body = storage_encode(obj)
    atomic_write_bytes(path, body, overwrite=overwrite)
    return body


def read_bytes(path: PathLike) -> bytes:
    p = Path(path)
    if not p.is_file():
        raise MissingArtifact(f"File not found: {p}", {"path": str(p)})
    return p.read_bytes()


def load_json(path: PathLike) -> Any:
    """Load a JSON artifact; missing files and bad JSON become typed errors."""
    raw = read_bytes(path)
    try:
        return parse_json_bytes(raw)
    except (UnicodeDecodeError, ValueError) as e:
        if isinstance(e, AttestationError):
            raise
        raise SchemaMismatch(f"Invalid JSON in {path}: {e}", {"path": str(path)}) from e


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def iso_utc(dt: Optional[datetime] = None) -> str:
    """ISO-8601 UTC with millisecond precision and Z suffix (2026-02-10T04:15:44.207Z)."""
    dt = (dt or utc_now()).astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def parse_issued_at(value: Optional[str]) -> str:
    """Normalize a user-supplied ISO-8601 timestamp (default: now)."""
    if not value:
        return iso_utc()
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(text)
    except ValueError as e:
        raise SchemaMismatch(f"Invalid ISO-8601 timestamp: {value}") from e
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return iso_utc(dt)


def filename_stamp(dt: Optional[datetime] = None) -> str:
    """Filesystem-safe UTC stamp, e.g. 2026-02-07T19-30-49Z."""
    dt = (dt or utc_now()).astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H-%M-%SZ")


def stamp_from_iso(iso: str) -> str:
    return iso.replace(":", "-").replace(".", "-")


def posix_rel(path: PathLike, start: Optional[PathLike] = None) -> str:
    """Relative POSIX path when possible, else the absolute POSIX path."""
    p = Path(path).resolve()
    base = Path(start).resolve() if start is not None else Path.cwd().resolve()
    try:
        return p.relative_to(base).as_posix()
    except ValueError:
        return p.as_posix()
