#!/usr/bin/env python3
"""
govattest Command Line Interface

Usage:
    govattest attest-manifest --manifest <file> [--out <file>]
    govattest attest-file --file <file> [--out <file>]
    govattest attest-bytecode --address <addr> [--rpc <url>]
    govattest verify-attestation --attestation <file> [--expected-signer <addr>]
    govattest attest-index [--index <file>] [--out-dir <dir>]
    govattest verify-index [--index <file>]
    govattest verify-all [--index <file>] [--policy fail-fast|collect-all]
    govattest enrich-evidence --in <file> [--rpc <url>] [--deployments <file>]
    govattest verify-evidence --manifest <file> [--rpc <url>]
    govattest hash --file <file> [--raw]

Exit codes: 0 when everything verified, 1 on any failure, 2 on usage errors.
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .config import BATCH_POLICIES, LOG_LEVELS, PipelineConfig
from .errors import AttestationError

logger = logging.getLogger("govattest.cli")


def build_config(args) -> PipelineConfig:
    """Environment first, explicit flags on top."""
    return PipelineConfig.from_env(
        rpc_url=getattr(args, "rpc", None),
        index_path=getattr(args, "index", None),
        deployments_path=getattr(args, "deployments", None),
        evidence_root=getattr(args, "evidence_root", None),
        batch_policy=getattr(args, "policy", None),
        log_level=args.log_level,
        log_json=args.log_json or None,
    )


def make_ledger(config: PipelineConfig, block: Optional[int] = None):
    from .ledger import JsonRpcLedgerClient

    return JsonRpcLedgerClient(config.rpc_url, timeout=config.rpc_timeout, block=block or "latest")


def _register(config: PipelineConfig, attestation, out: Path) -> None:
    from .index import IndexEntry, append_entry
    from .util import posix_rel

    path = posix_rel(out)
    suffix = ".attestation.json"
    entry_id = attestation.id or (out.name[:-len(suffix)] if out.name.endswith(suffix) else out.stem)
    append_entry(config.index_path, IndexEntry(
        id=entry_id,
        type=attestation.type.value,
        path=path,
        verify_args=["--attestation", path],
    ))
    print(f"registered: {entry_id} in {config.index_path}")


def _print_attestation(title: str, attestation, out: Path) -> None:
    print(f"== {title} ==")
    print(f"subject: {attestation.subject.locator}")
    print(f"digest: {attestation.subject.digest.alg} {attestation.subject.digest.value}")
    if attestation.signature:
        print(f"signer: {attestation.signature.signer}")
    print(f"attestation: {out}")


def cmd_attest_manifest(args, config: PipelineConfig) -> int:
    """Sign the canonical digest of a JSON manifest."""
    from .signing import AttestationSigner, default_attestation_path, write_attestation

    signer = AttestationSigner.from_config(config)
    attestation = signer.attest_manifest(args.manifest, args.issued_at, args.id)
    out = Path(args.out) if args.out else default_attestation_path(args.manifest)
    write_attestation(attestation, out)
    _print_attestation("Manifest Attestation Created", attestation, out)
    if args.register:
        _register(config, attestation, out)
    return 0


def cmd_attest_file(args, config: PipelineConfig) -> int:
    """Sign the raw-byte digest of a file."""
    from .signing import AttestationSigner, default_attestation_path, write_attestation

    signer = AttestationSigner.from_config(config)
    attestation = signer.attest_file(args.file, args.issued_at, args.id)
    out = Path(args.out) if args.out else default_attestation_path(args.file)
    write_attestation(attestation, out)
    _print_attestation("File Attestation Created", attestation, out)
    if args.register:
        _register(config, attestation, out)
    return 0


def cmd_attest_bytecode(args, config: PipelineConfig) -> int:
    """Sign the keccak256 digest of deployed runtime bytecode."""
    from .ledger import checksum_address
    from .signing import AttestationSigner, write_attestation

    signer = AttestationSigner.from_config(config)
    attestation = signer.attest_bytecode(args.address, make_ledger(config, args.block), args.issued_at, args.id)
    out = Path(args.out) if args.out else (
        config.evidence_root / "bytecode" / f"{checksum_address(args.address)}.attestation.json"
    )
    write_attestation(attestation, out)
    _print_attestation("Bytecode Attestation Created", attestation, out)
    if args.register:
        _register(config, attestation, out)
    return 0


def print_result(result, title: str, json_only: bool = False) -> None:
    """Human report followed by the JSON summary; json_only prints just the JSON."""
    summary = json.dumps(result.to_dict(), indent=2)
    if json_only:
        print(summary)
        return
    print(result.render_report(title))
    print()
    print("== JSON Summary ==")
    print(summary)


def cmd_verify_attestation(args, config: PipelineConfig) -> int:
    """Verify one attestation."""
    from .logging_config import audit_log
    from .verifier import AttestationVerifier

    verifier = AttestationVerifier(config.protocol_tag, ledger=make_ledger(config))
    result = verifier.verify_file(args.attestation, args.expected_signer, args.manifest)
    audit_log.verification_result(result.target, result.passed, [c.name for c in result.failures()])

    print_result(result, "Verify Attestation", json_only=args.json)
    return 0 if result.passed else 1


def cmd_attest_index(args, config: PipelineConfig) -> int:
    """Seal the attestation index."""
    from .sealing import seal_index

    out_dir = Path(args.out_dir) if args.out_dir else config.evidence_root / "index"
    attestation = seal_index(config.index_path, out_dir, args.issued_at, append=not args.no_append)

    print("== Index Attestation Created ==")
    print(f"index: {config.index_path}")
    print(f"canonical rule: {attestation.subject.canonical_rule.rule}")
    print(f"digest: {attestation.subject.digest.value}")
    print(f"id: {attestation.id}")
    if args.no_append:
        print("index entry: not appended (--no-append)")
    return 0


def cmd_verify_index(args, config: PipelineConfig) -> int:
    """Verify the authoritative seal of the index."""
    from .logging_config import audit_log
    from .sealing import verify_seal

    result = verify_seal(config.index_path)
    audit_log.verification_result(result.target, result.passed, [c.name for c in result.failures()])
    print(result.render_report("Verify Index Seal"))
    return 0 if result.passed else 1


def cmd_verify_all(args, config: PipelineConfig) -> int:
    """Verify every entry of the index."""
    from .batch import BatchPolicy, BatchVerifier
    from .verifier import AttestationVerifier

    verifier = AttestationVerifier(config.protocol_tag, ledger=make_ledger(config))
    batch = BatchVerifier(verifier, config.evidence_root, BatchPolicy(config.batch_policy))

    print("== Verify All Attestations ==")
    print(f"index: {config.index_path}")
    print(f"policy: {config.batch_policy}")
    print("")
    result = batch.run(config.index_path, progress=print)

    print("")
    if result.passed:
        print(f"✓ PASS: verified {result.verified}/{result.total} attestations")
    else:
        print(f"✗ FAIL: verified {result.verified}/{result.total} attestations")
        for r in result.failed_results():
            print(f"  - {r.entry.id}: {r.reason}")
    if result.summary_path:
        print(f"summary: {result.summary_path}")
    return 0 if result.passed else 1


def cmd_enrich_evidence(args, config: PipelineConfig) -> int:
    """Build an evidence bundle and its manifest."""
    from .bundle import EvidenceBundleBuilder

    builder = EvidenceBundleBuilder(make_ledger(config, args.block), config)
    result = builder.build(args.input, config.deployments_path)
    env = result.bundle["environment"]

    print("== Evidence Bundle Generated ==")
    print(f"bundle: {result.bundle_path}")
    print(f"manifest: {result.manifest_path}")
    print(f"chainId: {env['chainId']}")
    print(f"blockNumber: {env['blockNumber']}")
    print(f"contracts: {len(result.bundle['contracts'])}")
    return 0


def cmd_verify_evidence(args, config: PipelineConfig) -> int:
    """Re-verify an evidence manifest against files and live bytecode."""
    from .bundle import verify_evidence

    result = verify_evidence(args.manifest, make_ledger(config))
    print_result(result, "Verify Evidence", json_only=args.json)
    return 0 if result.passed else 1


def cmd_hash(args, config: PipelineConfig) -> int:
    """Compute govattest digests of a file."""
    from .canonicalization import parse_json_bytes
    from .hashing import content_digest, value_digest
    from .util import read_bytes

    raw = read_bytes(args.file)
    print(f"sha256(raw): {content_digest(raw).value}")
    if not args.raw:
        print(f"sha256(canonical): {value_digest(parse_json_bytes(raw)).value}")
    return 0


def _add_attest_options(p: argparse.ArgumentParser) -> None:
    p.add_argument("-o", "--out", help="Output attestation file")
    p.add_argument("--issued-at", help="ISO-8601 issue time (default: now)")
    p.add_argument("--id", help="Attestation identifier")
    p.add_argument("--register", action="store_true", help="Append the attestation to the index")
    p.add_argument("--index", help="Attestation index JSON file")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="govattest",
        description="Governance attestation and evidence CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  govattest attest-manifest -m manifests/cap-table.json --register
  govattest verify-attestation -a manifests/cap-table.attestation.json --expected-signer 0x...
  govattest attest-index
  govattest verify-all --policy fail-fast
  govattest enrich-evidence --in evidence/audit.json
  govattest verify-evidence --manifest evidence/bundles/manifest-<stamp>.sha256.txt
        """
    )
    parser.add_argument("--log-level", default=None, type=str.upper, choices=LOG_LEVELS,
                        help="Log level (default: INFO)")
    parser.add_argument("--log-json", action="store_true", help="JSON log lines on stderr")
    parser.add_argument("--evidence-root", help="Directory for generated evidence")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # attest-manifest
    p = subparsers.add_parser("attest-manifest", help="Attest a JSON manifest (canonical digest)")
    p.add_argument("-m", "--manifest", required=True, help="Manifest JSON file")
    _add_attest_options(p)

    # attest-file
    p = subparsers.add_parser("attest-file", help="Attest a file (raw digest)")
    p.add_argument("-f", "--file", required=True, help="File to attest")
    _add_attest_options(p)

    # attest-bytecode
    p = subparsers.add_parser("attest-bytecode", help="Attest deployed runtime bytecode")
    p.add_argument("--address", required=True, help="Contract address")
    p.add_argument("--rpc", help="JSON-RPC endpoint")
    p.add_argument("--block", type=int, help="Pin reads to this block number")
    _add_attest_options(p)

    # verify-attestation
    p = subparsers.add_parser("verify-attestation", help="Verify an attestation")
    p.add_argument("-a", "--attestation", required=True, help="Attestation JSON file")
    p.add_argument("-m", "--manifest", help="Verify against this file instead of the subject locator")
    p.add_argument("--expected-signer", help="Required signer address")
    p.add_argument("--rpc", help="JSON-RPC endpoint (bytecode subjects)")
    p.add_argument("--json", action="store_true", help="Print only the JSON summary")

    # attest-index
    p = subparsers.add_parser("attest-index", help="Seal the attestation index")
    p.add_argument("--index", help="Attestation index JSON file")
    p.add_argument("--out-dir", help="Directory for the seal attestation")
    p.add_argument("--issued-at", help="ISO-8601 issue time (default: now)")
    p.add_argument("--no-append", action="store_true", help="Do not register the seal in the index")

    # verify-index
    p = subparsers.add_parser("verify-index", help="Verify the index seal")
    p.add_argument("--index", help="Attestation index JSON file")

    # verify-all
    p = subparsers.add_parser("verify-all", help="Verify every attestation in the index")
    p.add_argument("--index", help="Attestation index JSON file")
    p.add_argument("--policy", choices=BATCH_POLICIES, help="Batch policy (default: collect-all)")
    p.add_argument("--rpc", help="JSON-RPC endpoint (bytecode subjects)")

    # enrich-evidence
    p = subparsers.add_parser("enrich-evidence", help="Build an evidence bundle")
    p.add_argument("-i", "--in", dest="input", required=True, help="Evidence JSON file")
    p.add_argument("--rpc", help="JSON-RPC endpoint")
    p.add_argument("--deployments", help="Deployments JSON file")
    p.add_argument("--block", type=int, help="Pin reads to this block number")

    # verify-evidence
    p = subparsers.add_parser("verify-evidence", help="Verify an evidence manifest")
    p.add_argument("-m", "--manifest", required=True, help="Manifest .sha256.txt file")
    p.add_argument("--rpc", help="JSON-RPC endpoint")
    p.add_argument("--json", action="store_true", help="Print only the JSON summary")

    # hash
    p = subparsers.add_parser("hash", help="Compute digests of a file")
    p.add_argument("-f", "--file", required=True, help="File to hash")
    p.add_argument("--raw", action="store_true", help="Raw digest only")

    return parser


COMMANDS = {
    "attest-manifest": cmd_attest_manifest,
    "attest-file": cmd_attest_file,
    "attest-bytecode": cmd_attest_bytecode,
    "verify-attestation": cmd_verify_attestation,
    "attest-index": cmd_attest_index,
    "verify-index": cmd_verify_index,
    "verify-all": cmd_verify_all,
    "enrich-evidence": cmd_enrich_evidence,
    "verify-evidence": cmd_verify_evidence,
    "hash": cmd_hash,
}


def main(argv: Optional[List[str]] = None) -> int:
    from .logging_config import configure_logging, set_run_id

    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 2

    try:
        config = build_config(args)
    except ValueError as e:
        print(f"✗ configuration error: {e}", file=sys.stderr)
        return 2

    configure_logging(config.log_level, json_format=config.log_json)
    set_run_id()
    logger.debug("command %s", args.command)

    try:
        return COMMANDS[args.command](args, config)
    except AttestationError as e:
        print(f"✗ {e.code.value}: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
