"""
govattest Canonical JSON Encoding

Two encodings are produced from the same key-sorted tree and must never be
confused:

- compact encoding (`canonicalize`): input to every digest computation
- storage encoding (`storage_encode`): pretty-printed, for files on disk

Both render scalars exactly as JSON.stringify does (RFC 8785 / JCS): keys
sorted by UTF-16 code units, numbers in ECMAScript form (1e-7, not 1e-07),
so digests agree with manifests produced by JavaScript tooling.

digest(x) is always computed over the compact encoding. The only exception
is the index seal, which records its storage format explicitly (see
sealing.py).
"""

import json
import math
from typing import Any, Dict, List, Set, Union

import jcs

from .errors import (
    CanonicalizationError,
    CircularReference,
    NonFiniteNumber,
    SchemaMismatch,
    UnsafeInteger,
)

# Largest integer every JSON consumer represents exactly (2**53 - 1).
MAX_SAFE_INTEGER = 9007199254740991

STORAGE_INDENT = 2


def canonicalize(obj: Any) -> bytes:
    """
    Convert an object to its compact canonical encoding.

    Rules:
    - Object keys sorted by UTF-16 code units
    - No whitespace between tokens
    - UTF-8, no BOM, minimal escaping
    - Numbers in ECMAScript Number::toString form
    - Arrays keep their order
    - Non-finite numbers rejected
    - Integers beyond 2**53 - 1 must be given as decimal strings
    - Structural cycles rejected

    Returns:
        UTF-8 encoded bytes of canonical JSON
    """
    return jcs.canonicalize(_canonicalize_value(obj, set()))


def canonicalize_str(obj: Any) -> str:
    """Return canonical JSON as string."""
    return canonicalize(obj).decode('utf-8')


def storage_encode(obj: Any) -> bytes:
    """
    Key-sorted, 2-space indented JSON with a single trailing newline.

    Same layout as JSON.stringify(value, null, 2) + "\\n". Used for on-disk
    readability of attestations, indexes, bundles and summaries. Never hash
    this form unless the format is recorded alongside the digest.
    """
    canonical = _canonicalize_value(obj, set())
    return (_pretty(canonical, 0) + "\n").encode('utf-8')


def storage_encode_str(obj: Any) -> str:
    return storage_encode(obj).decode('utf-8')


def _scalar(value: Any) -> str:
    return jcs.canonicalize(value).decode('utf-8')


def _pretty(value: Any, level: int) -> str:
    if isinstance(value, dict):
        if not value:
            return "{}"
        pad = " " * (STORAGE_INDENT * (level + 1))
        items = [f"{pad}{_scalar(k)}: {_pretty(v, level + 1)}" for k, v in value.items()]
        open_, close = "{", "}"
    elif isinstance(value, list):
        if not value:
            return "[]"
        pad = " " * (STORAGE_INDENT * (level + 1))
        items = [pad + _pretty(v, level + 1) for v in value]
        open_, close = "[", "]"
    else:
        return _scalar(value)
    return open_ + "\n" + ",\n".join(items) + "\n" + " " * (STORAGE_INDENT * level) + close


def _canonicalize_value(value: Any, active: Set[int]) -> Any:
    """Recursively canonicalize a value."""
    if value is None:
        return None
    elif isinstance(value, bool):
        return value
    elif isinstance(value, int):
        return _canonicalize_int(value)
    elif isinstance(value, float):
        return _canonicalize_float(value)
    elif isinstance(value, str):
        return value
    elif isinstance(value, dict):
        return _enter(value, active, _canonicalize_object)
    elif isinstance(value, (list, tuple)):
        return _enter(value, active, _canonicalize_array)
    else:
        raise CanonicalizationError(
            f"Cannot canonicalize type: {type(value).__name__}",
            {"type": type(value).__name__},
        )


def _enter(container: Any, active: Set[int], fn) -> Any:
    # `active` holds the containers on the current path only, so shared
    # (non-cyclic) sub-structures are still allowed.
    marker = id(container)
    if marker in active:
        raise CircularReference("Circular reference detected during canonicalization")
    active.add(marker)
    try:
        return fn(container, active)
    finally:
        active.discard(marker)


def _canonicalize_int(value: int) -> int:
    if abs(value) > MAX_SAFE_INTEGER:
        raise UnsafeInteger(
            "Integer exceeds safe range; supply it as a decimal string",
            {"value": str(value)},
        )
    return value


def _canonicalize_float(value: float) -> Union[int, float]:
    if not math.isfinite(value):
        raise NonFiniteNumber(f"Non-finite number: {value}")
    # Integral floats render as integers (1.0 -> 1, -0.0 -> 0).
    if value.is_integer() and abs(value) <= MAX_SAFE_INTEGER:
        return int(value)
    return value


def _canonicalize_object(obj: Dict[str, Any], active: Set[int]) -> Dict[str, Any]:
    """Canonicalize an object by sorting keys by UTF-16 code units."""
    for k in obj:
        if not isinstance(k, str):
            raise CanonicalizationError(
                f"Object keys must be strings, got {type(k).__name__}"
            )
    return {k: _canonicalize_value(obj[k], active) for k in sorted(obj, key=_utf16_key)}


def _utf16_key(key: str) -> bytes:
    return key.encode("utf-16-be", "surrogatepass")


def _canonicalize_array(arr: Union[List, tuple], active: Set[int]) -> List:
    return [_canonicalize_value(item, active) for item in arr]


def parse_json_bytes(data: bytes) -> Any:
    """Parse JSON bytes, rejecting NaN/Infinity literals."""
    def _reject_constant(name: str):
        raise NonFiniteNumber(f"Non-finite number literal: {name}")

    try:
        return json.loads(data.decode('utf-8'), parse_constant=_reject_constant)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise SchemaMismatch(f"Invalid JSON: {e}") from e
