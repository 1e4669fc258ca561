"""
govattest Batch Verifier

Walks an attestation index and verifies every entry:

- ordinary entries through AttestationVerifier, with options taken from the
  entry's verifyArgs (the same flags verify-attestation accepts)
- the last sealing entry through verify_seal(); earlier seals are reported
  as SKIPPED (superseded)

One summary artifact is written per run, plus a sha256 sidecar for it.
"""

import argparse
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .errors import AttestationError, FailureCode, SchemaMismatch
from .hashing import content_digest, file_digest, manifest_line
from .index import AttestationIndex, IndexEntry
from .logging_config import audit_log, log_fields
from .sealing import index_seal_digest, verify_seal
from .util import (
    PathLike,
    atomic_write_text,
    iso_utc,
    load_json,
    posix_rel,
    read_bytes,
    stamp_from_iso,
    write_json_artifact,
)
from .verifier import AttestationVerifier, CheckResult, VerificationResult

logger = logging.getLogger(__name__)

SUMMARY_SCHEMA = "attestation-batch-verify-summary-v1"

STATUS_PASS = "PASS"
STATUS_FAIL = "FAIL"
STATUS_SKIPPED = "SKIPPED"


class BatchPolicy(str, Enum):
    """How a batch run reacts to a failing entry."""
    FAIL_FAST = "fail-fast"
    COLLECT_ALL = "collect-all"


class _VerifyArgsParser(argparse.ArgumentParser):
    """ArgumentParser that raises instead of exiting."""

    def error(self, message):
        raise SchemaMismatch(f"invalid verifyArgs: {message}")


def verify_args_parser() -> argparse.ArgumentParser:
    parser = _VerifyArgsParser(prog="verifyArgs", add_help=False)
    parser.add_argument("--attestation")
    parser.add_argument("--manifest")
    parser.add_argument("--expected-signer")
    return parser


@dataclass
class EntryResult:
    """Outcome of one index entry."""
    position: int
    entry: IndexEntry
    status: str
    checks: List[CheckResult] = field(default_factory=list)
    attestation_path: Optional[str] = None
    attestation_digest: Optional[str] = None
    reason: str = ""

    @property
    def passed(self) -> bool:
        return self.status != STATUS_FAIL

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "id": self.entry.id,
            "type": self.entry.type,
            "status": self.status,
            "attestationPath": self.attestation_path or self.entry.path,
        }
        if self.attestation_digest:
            d["sha256"] = self.attestation_digest
        if self.entry.verify_args:
            d["verifyArgs"] = list(self.entry.verify_args)
        if self.reason:
            d["reason"] = self.reason
        d["checks"] = [c.to_dict() for c in self.checks]
        failed = [c.code.value for c in self.checks if not c.passed and c.code is not None]
        if failed:
            d["failureCodes"] = failed
        return d


@dataclass
class BatchResult:
    """Aggregated outcome of a batch run."""
    policy: BatchPolicy
    index_path: str
    index_digest: str
    index_seal_digest: Optional[str]
    total: int
    started_at: str
    finished_at: str = ""
    results: List[EntryResult] = field(default_factory=list)
    # Under FAIL_FAST the failing entry is held here, not in results.
    failed_at: Optional[EntryResult] = None
    summary_path: Optional[Path] = None

    @property
    def passed(self) -> bool:
        return (
            self.failed_at is None
            and all(r.passed for r in self.results)
            and len(self.results) == self.total
        )

    @property
    def overall_status(self) -> str:
        return STATUS_PASS if self.passed else STATUS_FAIL

    @property
    def verified(self) -> int:
        return sum(1 for r in self.results if r.status == STATUS_PASS)

    def failed_results(self) -> List[EntryResult]:
        failed = [r for r in self.results if not r.passed]
        if self.failed_at is not None:
            failed.append(self.failed_at)
        return failed

    def to_dict(self) -> Dict[str, Any]:
        d = {
            "schema": SUMMARY_SCHEMA,
            "policy": self.policy.value,
            "startedAt": self.started_at,
            "finishedAt": self.finished_at,
            "index": {
                "path": self.index_path,
                "digest": self.index_digest,
                "count": self.total,
            },
            "indexDigest": self.index_seal_digest,
            "perEntryResults": [r.to_dict() for r in self.results],
        }
        if self.failed_at is not None:
            d["failedAt"] = self.failed_at.to_dict()
        d["overallStatus"] = self.overall_status
        return d


class BatchVerifier:
    """
    Verify every entry of an index under an explicit policy.

    FAIL_FAST stops at the first failing entry and writes a partial
    summary: perEntryResults holds the entries that ran before it and the
    failing entry is reported once, under failedAt. COLLECT_ALL runs every entry; errors for a single entry
    (missing files, bad JSON, canonicalization errors) become failed
    results and never abort the run.
    """

    def __init__(
        self,
        verifier: AttestationVerifier,
        evidence_root: PathLike,
        policy: BatchPolicy = BatchPolicy.COLLECT_ALL,
        base_dir: Optional[PathLike] = None
    ):
        self.verifier = verifier
        self.evidence_root = Path(evidence_root)
        self.policy = BatchPolicy(policy)
        self.base_dir = Path(base_dir) if base_dir is not None else Path.cwd()

    def run(
        self,
        index_path: PathLike,
        progress: Optional[Callable[[str], None]] = None,
        write_summary: bool = True
    ) -> BatchResult:
        index_file = self._resolve(index_path)
        raw_bytes = read_bytes(index_file)
        raw_index = load_json(index_file)
        index = AttestationIndex.from_dict(raw_index)
        if not index.entries:
            raise SchemaMismatch(f"Index contains no entries: {index_path}")

        batch = BatchResult(
            policy=self.policy,
            index_path=posix_rel(index_file, self.base_dir),
            index_digest=content_digest(raw_bytes).value,
            index_seal_digest=index_seal_digest(raw_index).value,
            total=len(index),
            started_at=iso_utc(),
        )
        last_seal = index.last_seal()

        for i, entry in enumerate(index.entries):
            label = f"[{i + 1}/{len(index)}] {entry.id} ({entry.type}) ..."
            if entry.is_seal and entry is not last_seal:
                result = EntryResult(i, entry, STATUS_SKIPPED, reason="superseded")
            elif entry.is_seal:
                result = self._verify_seal_entry(i, entry, index_file)
            else:
                result = self._verify_entry(i, entry)

            if result.status == STATUS_SKIPPED:
                line = f"{label} SKIPPED (superseded)"
            else:
                line = f"{label} {'OK' if result.passed else 'FAIL'}"
            if progress:
                progress(line)
            logger.debug("%s", line, extra=log_fields(entry_id=entry.id, status=result.status))

            if not result.passed and self.policy == BatchPolicy.FAIL_FAST:
                batch.failed_at = result
                logger.warning("fail-fast: stopping at %s", entry.id)
                break
            batch.results.append(result)

        batch.finished_at = iso_utc()
        if write_summary:
            batch.summary_path = self.write_summary(batch)

        audit_log.batch_complete(
            str(index_path), self.policy.value, batch.overall_status,
            batch.verified, batch.total,
            str(batch.summary_path) if batch.summary_path else None,
        )
        return batch

    def _verify_entry(self, position: int, entry: IndexEntry) -> EntryResult:
        try:
            options = verify_args_parser().parse_args(entry.verify_args or ["--attestation", entry.path])
        except AttestationError as e:
            return EntryResult(position, entry, STATUS_FAIL,
                               checks=[CheckResult.fail("verify-args", e.code, str(e))])

        attestation_path = options.attestation or entry.path
        try:
            outcome = self.verifier.verify_file(
                self._resolve(attestation_path),
                expected_signer=options.expected_signer,
                artifact_path=self._resolve(options.manifest) if options.manifest else None,
            )
        except AttestationError as e:
            outcome = VerificationResult(target=attestation_path)
            outcome.add(CheckResult.fail("verify", e.code, str(e)))
        return self._entry_result(position, entry, outcome, attestation_path)

    def _verify_seal_entry(self, position: int, entry: IndexEntry, index_file: Path) -> EntryResult:
        outcome = verify_seal(index_file, base_dir=self.base_dir)
        return self._entry_result(position, entry, outcome, entry.path)

    def _entry_result(self, position: int, entry: IndexEntry, outcome: VerificationResult,
                      attestation_path: str) -> EntryResult:
        path = self._resolve(attestation_path)
        digest = None
        if path.is_file():
            digest = file_digest(path).value
        result = EntryResult(
            position,
            entry,
            STATUS_PASS if outcome.passed else STATUS_FAIL,
            checks=list(outcome.checks),
            attestation_path=posix_rel(path, self.base_dir),
            attestation_digest=digest,
        )
        if not outcome.passed:
            result.reason = ", ".join(outcome.failure_codes()) or FailureCode.SCHEMA_MISMATCH.value
        return result

    def write_summary(self, batch: BatchResult) -> Path:
        """Write the summary and its "<hex>  <name>" sidecar atomically."""
        out_dir = self._resolve(self.evidence_root) / "batch"
        out = out_dir / f"attestation-verify-all-{stamp_from_iso(batch.finished_at)}.json"
        body = write_json_artifact(out, batch.to_dict())
        sidecar = out.with_name(out.name + ".sha256")
        atomic_write_text(sidecar, manifest_line(content_digest(body), out.name) + "\n")
        return out

    def _resolve(self, path: PathLike) -> Path:
        p = Path(path)
        return p if p.is_absolute() else self.base_dir / p
