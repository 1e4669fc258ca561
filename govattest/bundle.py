"""
govattest Evidence Bundle Builder

Binds an off-chain evidence document to the live on-chain code it
describes:

- source digests: sha256 of the raw file and of its canonical form
- contract digests: keccak256 of runtime bytecode fetched from a ledger node
- a manifest of "<hex>  <target>" lines for the bundle, the raw source and
  the canonical source ("<path>::canonical")

verify_evidence() is the dual: every manifest line is recomputed from
current bytes, and every contract in the bundle is re-fetched, so a
redeployed or upgraded contract fails verification.
"""

import logging
import platform
import re
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .canonicalization import canonicalize, parse_json_bytes
from .config import PipelineConfig
from .errors import AttestationError, FailureCode, SchemaMismatch
from .hashing import Digest, code_digest, content_digest, digests_equal, manifest_line
from .ledger import LedgerReader, checksum_address
from .logging_config import audit_log
from .util import (
    PathLike,
    atomic_write_text,
    filename_stamp,
    load_json,
    posix_rel,
    read_bytes,
    write_json_artifact,
)
from .verifier import CheckResult, VerificationResult, run_check

logger = logging.getLogger(__name__)

BUNDLE_SCHEMA = "governance-evidence-bundle@1.0.0"
CANONICAL_SUFFIX = "::canonical"
MANIFEST_LINE = re.compile(r"^([a-fA-F0-9]{64})  (.+)$")

FIXED_INVARIANTS = (
    "INV:contracts.solidityUnmodified",
    "INV:oneCommandVerificationAvailable",
)


def _address_of(value: Any) -> Optional[str]:
    if isinstance(value, str):
        return value
    if isinstance(value, dict) and isinstance(value.get("address"), str):
        return value["address"]
    return None


def resolve_contracts(evidence: Any, deployments_path: Optional[PathLike] = None) -> Dict[str, str]:
    """
    Named contract addresses to digest.

    Taken from evidence["contracts"] (string or {"address": ...} values);
    when that yields nothing, from a deployments file holding either a
    "contracts" map or a flat name -> address map.
    """
    out: Dict[str, str] = {}

    contracts = evidence.get("contracts") if isinstance(evidence, dict) else None
    if isinstance(contracts, dict):
        for name, value in contracts.items():
            address = _address_of(value)
            if address:
                out[name] = address
    if out:
        return out

    if deployments_path is None or not Path(deployments_path).is_file():
        return out

    deployments = load_json(deployments_path)
    if not isinstance(deployments, dict):
        raise SchemaMismatch(f"Deployments file must hold an object: {deployments_path}")
    if isinstance(deployments.get("contracts"), dict):
        for name, value in deployments["contracts"].items():
            address = _address_of(value)
            if address:
                out[name] = address
    else:
        for name, value in deployments.items():
            if isinstance(value, str) and value.startswith("0x"):
                out[name] = value
            elif _address_of(value):
                out[name] = _address_of(value)
    return out


def build_invariants(evidence: Any) -> Dict[str, List[Dict[str, Any]]]:
    """INV:<key> assertions from evidence invariants (or checks), plus fixed ones."""
    assertions = []
    inv = None
    if isinstance(evidence, dict):
        inv = evidence.get("invariants") or evidence.get("checks")
    if isinstance(inv, dict):
        for key, expected in inv.items():
            assertions.append({"id": f"INV:{key}", "expected": expected})
    for inv_id in FIXED_INVARIANTS:
        assertions.append({"id": inv_id, "expected": True})
    return {"assertions": assertions}


def parse_manifest(text: str) -> List[Tuple[str, str]]:
    """Parse manifest text into (hex, target) pairs; blank lines are ignored."""
    entries = []
    for n, line in enumerate(text.splitlines(), start=1):
        if not line.strip():
            continue
        m = MANIFEST_LINE.match(line)
        if not m:
            raise SchemaMismatch(f"Malformed manifest line {n}: {line!r}", {"line": n})
        entries.append((m.group(1), m.group(2)))
    return entries


@dataclass
class BundleResult:
    bundle_path: Path
    manifest_path: Path
    bundle: Dict[str, Any]


class EvidenceBundleBuilder:
    """
    Build evidence bundles.

    Any ledger read failure aborts the build with NetworkReadFailure; there
    is no retry.
    """

    def __init__(self, ledger: LedgerReader, config: PipelineConfig, base_dir: Optional[PathLike] = None):
        self.ledger = ledger
        self.config = config
        self.base_dir = Path(base_dir) if base_dir is not None else Path.cwd()

    def build(self, evidence_path: PathLike, deployments_path: Optional[PathLike] = None) -> BundleResult:
        source = self._resolve(evidence_path)
        raw = read_bytes(source)
        evidence = parse_json_bytes(raw)

        deployments = self._resolve(deployments_path or self.config.deployments_path)
        contracts = resolve_contracts(evidence, deployments)
        logger.info("digesting %d contract(s) via %s", len(contracts), self.ledger.endpoint)

        chain_id = self.ledger.get_chain_id()
        block_number = self.ledger.get_block_number()

        contract_digests: Dict[str, Any] = {}
        for name, address in contracts.items():
            address = checksum_address(address)
            code = self.ledger.get_runtime_bytecode(address)
            contract_digests[name] = {
                "address": address,
                "codeDigest": code_digest(code).to_dict(),
                "byteLength": len(code),
            }

        source_locator = posix_rel(source, self.base_dir)
        bundle = {
            "schema": BUNDLE_SCHEMA,
            "source": {
                "path": source_locator,
                "rawDigest": content_digest(raw).to_dict(),
                "canonicalDigest": content_digest(canonicalize(evidence)).to_dict(),
            },
            "environment": {
                "chainId": chain_id,
                "rpcUrl": self.ledger.endpoint,
                "blockNumber": block_number,
                "python": platform.python_version(),
                "platform": sys.platform,
            },
            "contracts": contract_digests,
            "invariants": build_invariants(evidence),
            "evidence": evidence,
        }

        stamp = filename_stamp()
        out_dir = self._resolve(self.config.evidence_root) / "bundles"
        bundle_path = out_dir / f"governance-evidence-bundle-{stamp}.json"
        body = write_json_artifact(bundle_path, bundle, overwrite=False)

        lines = [
            manifest_line(content_digest(body), posix_rel(bundle_path, self.base_dir)),
            manifest_line(content_digest(raw), source_locator),
            manifest_line(content_digest(canonicalize(evidence)), source_locator + CANONICAL_SUFFIX),
        ]
        manifest_path = out_dir / f"manifest-{stamp}.sha256.txt"
        atomic_write_text(manifest_path, "\n".join(lines) + "\n", overwrite=False)

        audit_log.bundle_built(str(bundle_path), str(manifest_path), chain_id, len(contract_digests))
        return BundleResult(bundle_path, manifest_path, bundle)

    def _resolve(self, path: PathLike) -> Path:
        p = Path(path)
        return p if p.is_absolute() else self.base_dir / p


def verify_evidence(
    manifest_path: PathLike,
    ledger: Optional[LedgerReader],
    base_dir: Optional[PathLike] = None
) -> VerificationResult:
    """
    Re-verify a bundle manifest and the contracts its bundle names.

    All checks are collected. Targets are resolved relative to base_dir
    (default: working directory).
    """
    base = Path(base_dir) if base_dir is not None else Path.cwd()

    def resolve(path: str) -> Path:
        p = Path(path)
        return p if p.is_absolute() else base / p

    result = VerificationResult(target=str(manifest_path))
    try:
        entries = parse_manifest(read_bytes(resolve(str(manifest_path))).decode("utf-8"))
    except AttestationError as e:
        result.add(CheckResult.fail("manifest", e.code, str(e)))
        audit_log.evidence_verified(str(manifest_path), False, failed_checks=["manifest"])
        return result
    except UnicodeDecodeError as e:
        result.add(CheckResult.fail("manifest", FailureCode.SCHEMA_MISMATCH, str(e)))
        audit_log.evidence_verified(str(manifest_path), False, failed_checks=["manifest"])
        return result
    result.add(CheckResult.ok("manifest", f"{len(entries)} line(s)"))

    bundle: Optional[Dict[str, Any]] = None
    for expected, target in entries:
        name = f"sha256 {target}"

        def check_line(expected=expected, target=target, name=name) -> CheckResult:
            if target.endswith(CANONICAL_SUFFIX):
                source = target[:-len(CANONICAL_SUFFIX)]
                computed = content_digest(canonicalize(parse_json_bytes(read_bytes(resolve(source)))))
            else:
                computed = content_digest(read_bytes(resolve(target)))
            detail = f"computed={computed.hex} expected={expected}"
            if digests_equal(computed.hex, expected):
                return CheckResult.ok(name, detail)
            return CheckResult.fail(name, FailureCode.DIGEST_MISMATCH, detail)

        result.add(run_check(name, check_line))

        if bundle is None and not target.endswith(CANONICAL_SUFFIX):
            bundle = _load_bundle(resolve(target))

    if bundle is None:
        result.add(CheckResult.fail(
            "bundle", FailureCode.MISSING_ARTIFACT, f"no {BUNDLE_SCHEMA} file listed in manifest"
        ))
    else:
        result.add(CheckResult.ok("bundle", f"{len(bundle.get('contracts') or {})} contract(s)"))
        for contract_name, info in sorted((bundle.get("contracts") or {}).items()):
            check_name = f"bytecode {contract_name}"
            result.add(run_check(check_name, lambda n=check_name, i=info: _check_contract(n, i, ledger)))

    failed = [c.name for c in result.failures()]
    audit_log.evidence_verified(
        str(manifest_path), result.passed, failed_checks=failed, rpc_url=ledger.endpoint if ledger else None
    )
    return result


def _load_bundle(path: Path) -> Optional[Dict[str, Any]]:
    """The parsed bundle when path holds one; any other file yields None."""
    if path.suffix != ".json" or not path.is_file():
        return None
    try:
        data = load_json(path)
    except AttestationError:
        return None
    if isinstance(data, dict) and data.get("schema") == BUNDLE_SCHEMA:
        return data
    return None


def _check_contract(name: str, info: Any, ledger: Optional[LedgerReader]) -> CheckResult:
    if not isinstance(info, dict) or "address" not in info or "codeDigest" not in info:
        raise SchemaMismatch(f"{name}: contract entry needs address and codeDigest")
    if ledger is None:
        return CheckResult.fail(name, FailureCode.NETWORK_READ_FAILURE, "no ledger client configured")
    expected = Digest.from_dict(info["codeDigest"])
    address = checksum_address(info["address"])
    code = ledger.get_runtime_bytecode(address)
    computed = code_digest(code)
    detail = f"{address} computed={computed.value} expected={expected.value} bytes={len(code)}"
    if computed.matches(expected):
        return CheckResult.ok(name, detail)
    return CheckResult.fail(name, FailureCode.DIGEST_MISMATCH, detail)
