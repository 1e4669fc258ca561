"""
govattest Self-Referential Index Sealing

An index seal attests to the index that lists it. Hashing "the index
including its own seal" is circular, so the seal digest covers

    {schema, entries: [e for e in entries if e.type != "index-attestation"]}

serialized in the storage encoding (2-space indent, trailing newline).
That is the one digest in the system not taken over the compact encoding,
and the rule is recorded inside every seal so verifiers can detect drift.

Because every sealing entry is dropped uniformly, appending further seals
never changes the sealed object.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

from .attestation import (
    Attestation,
    AttestationType,
    CanonicalRule,
    Subject,
    SubjectKind,
)
from .canonicalization import storage_encode
from .errors import AttestationError, FailureCode, MissingArtifact, SchemaMismatch
from .hashing import SHA256, Digest, content_digest
from .index import AttestationIndex, IndexEntry
from .logging_config import audit_log
from .util import (
    PathLike,
    filename_stamp,
    load_json,
    parse_issued_at,
    posix_rel,
    write_json_artifact,
)
from .verifier import CheckResult, VerificationResult

logger = logging.getLogger(__name__)

SEAL_RULE = CanonicalRule(rule="exclude-index-attestations", format="pretty-2-space", newline=True)

CHECK_INDEX = "index-schema"
CHECK_SEAL_ENTRY = "seal-entry"
CHECK_SEAL_RULE = "seal-rule"
CHECK_SEAL_DIGEST = "index-digest"


def canonical_index_object(index: Union[AttestationIndex, Dict[str, Any]]) -> Dict[str, Any]:
    """
    The part of an index a seal covers.

    Raw dicts are filtered as parsed so that fields this version does not
    model still count toward the digest.
    """
    data = index.to_dict() if isinstance(index, AttestationIndex) else index
    AttestationIndex.from_dict(data)
    return {
        "schema": data["schema"],
        "entries": [
            e for e in data["entries"]
            if e.get("type") != AttestationType.INDEX.value
        ],
    }


def index_seal_digest(index: Union[AttestationIndex, Dict[str, Any]]) -> Digest:
    return content_digest(storage_encode(canonical_index_object(index)))


def seal_index(
    index_path: PathLike,
    out_dir: PathLike,
    issued_at: Optional[str] = None,
    append: bool = True,
    base_dir: Optional[PathLike] = None
) -> Attestation:
    """
    Seal the index at index_path.

    Writes index-attestation-<stamp>.attestation.json under out_dir and,
    unless append=False, registers it as a new sealing entry in the index.

    Returns:
        The (unsigned) index attestation
    """
    base = Path(base_dir) if base_dir is not None else Path.cwd()
    index_file = _resolve(index_path, base)
    raw_index = load_json(index_file)
    index = AttestationIndex.from_dict(raw_index)
    digest = index_seal_digest(raw_index)

    issued = parse_issued_at(issued_at)
    suffix = stamp = filename_stamp()
    n = 1
    while f"index-seal-{suffix}" in index.ids():
        n += 1
        suffix = f"{stamp}-{n}"
    seal_id = f"index-seal-{suffix}"

    attestation = Attestation(
        type=AttestationType.INDEX,
        issued_at=issued,
        id=seal_id,
        subject=Subject(
            kind=SubjectKind.ATTESTATION_INDEX,
            locator=posix_rel(index_file, base),
            digest=digest,
            canonical_rule=SEAL_RULE,
        ),
    )

    out_file = _resolve(out_dir, base) / f"index-attestation-{suffix}.attestation.json"
    write_json_artifact(out_file, attestation.to_dict(), overwrite=False)

    if append:
        entry = index.append(IndexEntry(
            id=seal_id,
            type=AttestationType.INDEX.value,
            path=posix_rel(out_file, base),
        ))
        # Rewrite from the parsed dict so unmodelled entry fields survive.
        raw_index["entries"].append(entry.to_dict())
        write_json_artifact(index_file, raw_index)

    audit_log.index_sealed(str(index_file), digest.value, str(out_file))
    return attestation


def verify_seal_attestation(attestation: Attestation, index_path: PathLike) -> VerificationResult:
    """Check one seal against the current contents of an index file."""
    result = VerificationResult(target=str(index_path))

    rule = attestation.subject.canonical_rule
    if attestation.type != AttestationType.INDEX or attestation.subject.kind != SubjectKind.ATTESTATION_INDEX:
        result.add(CheckResult.fail(
            CHECK_SEAL_RULE, FailureCode.SCHEMA_MISMATCH,
            f"not an index seal: {attestation.type.value}/{attestation.subject.kind.value}",
        ))
    elif rule != SEAL_RULE:
        result.add(CheckResult.fail(
            CHECK_SEAL_RULE, FailureCode.UNSUPPORTED_SEALING_RULE,
            f"unsupported sealing rule: {rule.to_dict() if rule else None}",
        ))
    elif attestation.subject.digest.alg != SHA256:
        result.add(CheckResult.fail(
            CHECK_SEAL_RULE, FailureCode.UNSUPPORTED_SEALING_RULE,
            f"unsupported seal digest algorithm: {attestation.subject.digest.alg}",
        ))
    else:
        result.add(CheckResult.ok(CHECK_SEAL_RULE, f"{rule.rule} {rule.format}"))

    try:
        computed = index_seal_digest(load_json(index_path))
    except AttestationError as e:
        result.add(CheckResult.fail(CHECK_SEAL_DIGEST, e.code, str(e)))
        return result

    claimed = attestation.subject.digest
    detail = f"computed={computed.value} claimed={claimed.value}"
    if computed.matches(claimed):
        result.add(CheckResult.ok(CHECK_SEAL_DIGEST, detail))
    else:
        result.add(CheckResult.fail(CHECK_SEAL_DIGEST, FailureCode.DIGEST_MISMATCH, detail))
    return result


def verify_seal(index_path: PathLike, base_dir: Optional[PathLike] = None) -> VerificationResult:
    """
    Verify the authoritative (last) seal of an index.

    Earlier seals are historical record and are not checked.
    """
    base = Path(base_dir) if base_dir is not None else Path.cwd()
    index_file = _resolve(index_path, base)
    result = VerificationResult(target=str(index_path))

    try:
        index = AttestationIndex.from_dict(load_json(index_file))
    except AttestationError as e:
        result.add(CheckResult.fail(CHECK_INDEX, e.code, str(e)))
        return result
    result.add(CheckResult.ok(CHECK_INDEX, f"{index.schema} ({len(index)} entries)"))

    seal = index.last_seal()
    if seal is None:
        result.add(CheckResult.fail(
            CHECK_SEAL_ENTRY, FailureCode.MISSING_ARTIFACT, "index has no index-attestation entry"
        ))
        return result

    try:
        attestation = load_seal(seal, base)
    except AttestationError as e:
        result.add(CheckResult.fail(CHECK_SEAL_ENTRY, e.code, str(e)))
        return result
    result.add(CheckResult.ok(CHECK_SEAL_ENTRY, f"{seal.id} -> {seal.path}"))

    result.checks.extend(verify_seal_attestation(attestation, index_file).checks)
    logger.debug("seal %s of %s: %s", seal.id, index_path, "PASS" if result.passed else "FAIL")
    return result


def load_seal(entry: IndexEntry, base_dir: Path) -> Attestation:
    path = _resolve(entry.path, base_dir)
    if not path.is_file():
        raise MissingArtifact(f"Seal attestation not found: {entry.path}", {"id": entry.id})
    attestation = Attestation.from_dict(load_json(path))
    if attestation.type != AttestationType.INDEX:
        raise SchemaMismatch(f"Entry {entry.id} is not an index attestation")
    return attestation


def _resolve(path: PathLike, base: Path) -> Path:
    p = Path(path)
    return p if p.is_absolute() else base / p
