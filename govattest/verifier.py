"""
govattest Attestation Verifier

Enables third parties to confirm an attestation after the fact, without the
tool that created it. Everything the signer computed is recomputed here:

1. subject digest from the locator's current bytes
2. preimage (and its digest) from the claimed digest and protocol tag
3. signer address recovered from (preimage, signature)
4. optionally, the recovered signer against a caller-supplied address

All checks run; failures are collected, never short-circuited.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from eth_keys.exceptions import BadSignature, ValidationError as KeyValidationError

from .attestation import MANIFEST_RULE, Attestation, SubjectKind
from .canonicalization import canonicalize, parse_json_bytes
from .config import DEFAULT_PROTOCOL_TAG
from .errors import AttestationError, FailureCode
from .hashing import Digest, code_digest, content_digest
from .ledger import LedgerReader, checksum_address
from .signing import build_preimage, recover_signer
from .util import PathLike, load_json, read_bytes

logger = logging.getLogger(__name__)


@dataclass
class CheckResult:
    """Outcome of a single verification check."""
    name: str
    passed: bool
    detail: str = ""
    code: Optional[FailureCode] = None

    def to_dict(self) -> Dict[str, Any]:
        d = {"name": self.name, "pass": self.passed, "detail": self.detail}
        if self.code is not None:
            d["code"] = self.code.value
        return d

    @classmethod
    def ok(cls, name: str, detail: str = "") -> "CheckResult":
        return cls(name=name, passed=True, detail=detail)

    @classmethod
    def fail(cls, name: str, code: FailureCode, detail: str = "") -> "CheckResult":
        return cls(name=name, passed=False, detail=detail, code=code)


@dataclass
class VerificationResult:
    """Result of verifying one target (attestation, seal, or evidence manifest)."""
    target: str
    checks: List[CheckResult] = field(default_factory=list)
    recovered_signer: Optional[str] = None

    @property
    def passed(self) -> bool:
        return bool(self.checks) and all(c.passed for c in self.checks)

    def failures(self) -> List[CheckResult]:
        return [c for c in self.checks if not c.passed]

    def failure_codes(self) -> List[str]:
        return [c.code.value for c in self.failures() if c.code is not None]

    def add(self, check: CheckResult) -> CheckResult:
        self.checks.append(check)
        return check

    def to_dict(self) -> Dict[str, Any]:
        d = {
            "target": self.target,
            "pass": self.passed,
            "checks": [c.to_dict() for c in self.checks],
        }
        if self.recovered_signer:
            d["recoveredSigner"] = self.recovered_signer
        return d

    def render_report(self, title: str = "Verify Attestation") -> str:
        lines = ["", f"== {title} ==", f"target: {self.target}"]
        for c in self.checks:
            status = "✓ PASS" if c.passed else "✗ FAIL"
            lines.append(f"{status}  {c.name}")
            if c.detail:
                lines.append(f"       {c.detail}")
            if not c.passed and c.code is not None:
                lines.append(f"       code: {c.code.value}")
        lines.append("")
        lines.append("RESULT: ✓ PASS" if self.passed else "RESULT: ✗ FAIL")
        return "\n".join(lines)


def run_check(name: str, fn: Callable[[], CheckResult]) -> CheckResult:
    """Run a check, turning typed pipeline errors into a failed result."""
    try:
        return fn()
    except AttestationError as e:
        return CheckResult.fail(name, e.code, str(e))


def compare_digest(name: str, claimed: Digest, computed: Digest, code: FailureCode) -> CheckResult:
    detail = f"computed={computed.value} claimed={claimed.value}"
    if computed.matches(claimed):
        return CheckResult.ok(name, detail)
    if computed.alg != claimed.alg:
        detail = f"algorithm mismatch: computed={computed.alg} claimed={claimed.alg}"
    return CheckResult.fail(name, code, detail)


class AttestationVerifier:
    """
    Independent attestation verifier.

    Manifest and raw-file subjects are verified with no network access and
    no writes. Runtime-bytecode subjects need a LedgerReader.
    """

    CHECK_SCHEMA = "schema"
    CHECK_SUBJECT = "subject-digest"
    CHECK_PREIMAGE = "preimage-digest"
    CHECK_SIGNER = "signer-recovery"
    CHECK_EXPECTED = "expected-signer"

    def __init__(
        self,
        protocol_tag: str = DEFAULT_PROTOCOL_TAG,
        ledger: Optional[LedgerReader] = None,
        base_dir: Optional[PathLike] = None
    ):
        self.protocol_tag = protocol_tag
        self.ledger = ledger
        self.base_dir = Path(base_dir) if base_dir is not None else Path.cwd()

    def verify_file(
        self,
        attestation_path: PathLike,
        expected_signer: Optional[str] = None,
        artifact_path: Optional[PathLike] = None
    ) -> VerificationResult:
        path = self._resolve(attestation_path)
        try:
            data = load_json(path)
        except AttestationError as e:
            result = VerificationResult(target=str(attestation_path))
            result.add(CheckResult.fail(self.CHECK_SCHEMA, e.code, str(e)))
            return result
        return self.verify(data, expected_signer, artifact_path, target=str(attestation_path))

    def verify(
        self,
        attestation: Union[Attestation, Dict[str, Any]],
        expected_signer: Optional[str] = None,
        artifact_path: Optional[PathLike] = None,
        target: Optional[str] = None
    ) -> VerificationResult:
        """
        Verify an attestation.

        Args:
            attestation: Parsed attestation or its JSON dict
            expected_signer: Address the signer must equal (optional)
            artifact_path: Override for the subject locator (optional)
            target: Label used in reports

        Returns:
            VerificationResult with one CheckResult per check
        """
        result = VerificationResult(target=target or "<attestation>")

        if isinstance(attestation, dict):
            try:
                attestation = Attestation.from_dict(attestation)
            except AttestationError as e:
                result.add(CheckResult.fail(self.CHECK_SCHEMA, e.code, str(e)))
                return result
        result.add(CheckResult.ok(self.CHECK_SCHEMA, f"{attestation.schema} {attestation.type.value}"))

        if attestation.subject.kind == SubjectKind.ATTESTATION_INDEX:
            from .sealing import verify_seal_attestation

            index_path = self._resolve(artifact_path or attestation.subject.locator)
            seal_result = verify_seal_attestation(attestation, index_path)
            result.checks.extend(seal_result.checks)
            return result

        result.add(run_check(
            self.CHECK_SUBJECT, lambda: self._check_subject(attestation, artifact_path)
        ))

        signature = attestation.signature
        if signature is None:
            result.add(CheckResult.fail(
                self.CHECK_PREIMAGE, FailureCode.SCHEMA_MISMATCH, "attestation is unsigned"
            ))
            result.add(CheckResult.fail(
                self.CHECK_SIGNER, FailureCode.SCHEMA_MISMATCH, "attestation is unsigned"
            ))
        else:
            preimage = build_preimage(self.protocol_tag, attestation.subject.kind, attestation.subject.digest)
            result.add(self._check_preimage(preimage, attestation))
            result.add(self._check_signer(preimage, attestation, result))

        if expected_signer:
            result.add(self._check_expected(expected_signer, result.recovered_signer))

        logger.debug("verified %s: %s", result.target, "PASS" if result.passed else "FAIL")
        return result

    def _check_subject(self, attestation: Attestation, artifact_path: Optional[PathLike]) -> CheckResult:
        subject = attestation.subject
        claimed = subject.digest

        if subject.kind == SubjectKind.RUNTIME_BYTECODE:
            if self.ledger is None:
                return CheckResult.fail(
                    self.CHECK_SUBJECT,
                    FailureCode.NETWORK_READ_FAILURE,
                    "runtime-bytecode subject requires a ledger client",
                )
            code = self.ledger.get_runtime_bytecode(checksum_address(subject.locator))
            return compare_digest(self.CHECK_SUBJECT, claimed, code_digest(code),
                                  FailureCode.DIGEST_MISMATCH)

        raw = read_bytes(self._resolve(artifact_path or subject.locator))

        if subject.kind == SubjectKind.CANONICAL_MANIFEST:
            if subject.canonical_rule is not None and subject.canonical_rule != MANIFEST_RULE:
                return CheckResult.fail(
                    self.CHECK_SUBJECT,
                    FailureCode.SCHEMA_MISMATCH,
                    f"unsupported canonical rule: {subject.canonical_rule.to_dict()}",
                )
            computed = content_digest(canonicalize(parse_json_bytes(raw)))
        else:
            computed = content_digest(raw)
        return compare_digest(self.CHECK_SUBJECT, claimed, computed, FailureCode.DIGEST_MISMATCH)

    def _check_preimage(self, preimage: str, attestation: Attestation) -> CheckResult:
        signature = attestation.signature
        computed = content_digest(preimage)
        claimed = signature.preimage_digest
        if signature.preimage != preimage:
            return CheckResult.fail(
                self.CHECK_PREIMAGE,
                FailureCode.PREIMAGE_MISMATCH,
                f"recorded preimage differs from rebuilt preimage {preimage!r}",
            )
        return compare_digest(self.CHECK_PREIMAGE, claimed, computed, FailureCode.PREIMAGE_MISMATCH)

    def _check_signer(self, preimage: str, attestation: Attestation,
                      result: VerificationResult) -> CheckResult:
        signature = attestation.signature
        try:
            recovered = recover_signer(preimage, signature.value)
        except (ValueError, TypeError, BadSignature, KeyValidationError) as e:
            return CheckResult.fail(
                self.CHECK_SIGNER, FailureCode.SIGNATURE_MISMATCH,
                f"signature recovery failed: {type(e).__name__}: {e}",
            )
        result.recovered_signer = recovered

        try:
            claimed = checksum_address(signature.signer)
        except AttestationError:
            return CheckResult.fail(
                self.CHECK_SIGNER, FailureCode.SIGNATURE_MISMATCH,
                f"recorded signer is not an address: {signature.signer!r}",
            )
        detail = f"recovered={recovered} claimed={claimed}"
        if recovered == claimed:
            return CheckResult.ok(self.CHECK_SIGNER, detail)
        return CheckResult.fail(self.CHECK_SIGNER, FailureCode.SIGNATURE_MISMATCH, detail)

    def _check_expected(self, expected_signer: str, recovered: Optional[str]) -> CheckResult:
        try:
            expected = checksum_address(expected_signer)
        except AttestationError:
            return CheckResult.fail(
                self.CHECK_EXPECTED, FailureCode.UNEXPECTED_SIGNER,
                f"expected signer is not an address: {expected_signer!r}",
            )
        detail = f"expected={expected} recovered={recovered or '(none)'}"
        if recovered and recovered == expected:
            return CheckResult.ok(self.CHECK_EXPECTED, detail)
        return CheckResult.fail(self.CHECK_EXPECTED, FailureCode.UNEXPECTED_SIGNER, detail)

    def _resolve(self, path: PathLike) -> Path:
        p = Path(path)
        return p if p.is_absolute() else self.base_dir / p
