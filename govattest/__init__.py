"""
govattest - Governance Attestation & Evidence Pipeline

Version: 1.0.0

Tamper-evident, signed attestations for the audit evidence of a governed
asset-transfer platform. An attestation binds a digest of an artifact to a
signer identity:

    canonical manifest  -> sha256(compact canonical JSON)
    raw evidence file   -> sha256(file bytes)
    runtime bytecode    -> keccak256(code at address)

Every record can be re-verified by recomputing, never by trusting:
attestations, the self-sealing attestation index, batch runs over the
index, and evidence bundles that bind off-chain claims to live on-chain
code.

Usage:
    from govattest import (
        AttestationSigner,
        AttestationVerifier,
        LocalAccountSigner,
        PipelineConfig,
        write_attestation,
    )

    config = PipelineConfig.from_env()
    signer = AttestationSigner(LocalAccountSigner(config.private_key), config.protocol_tag)

    attestation = signer.attest_manifest("manifests/cap-table.json")
    write_attestation(attestation, "manifests/cap-table.attestation.json")

    result = AttestationVerifier(config.protocol_tag).verify(attestation)
    if result.passed:
        print(result.recovered_signer)
    else:
        for check in result.failures():
            print(check.name, check.code, check.detail)
"""

__version__ = "1.0.0"

# Canonicalization and hashing
from .canonicalization import canonicalize, canonicalize_str, storage_encode
from .hashing import (
    Digest,
    code_digest,
    content_digest,
    file_digest,
    value_digest,
)

# Errors
from .errors import (
    AttestationError,
    CanonicalizationError,
    CircularReference,
    FailureCode,
    ImmutableArtifact,
    MissingArtifact,
    NetworkReadFailure,
    NonFiniteNumber,
    SchemaMismatch,
    SigningKeyError,
    UnsafeInteger,
    UnsupportedSealingRule,
)

# Configuration
from .config import PipelineConfig

# Attestations
from .attestation import (
    Attestation,
    AttestationType,
    CanonicalRule,
    Signature,
    Subject,
    SubjectKind,
)

# Collaborators
from .ledger import JsonRpcLedgerClient, LedgerReader
from .signing import (
    AttestationSigner,
    LocalAccountSigner,
    MessageSigner,
    build_preimage,
    recover_signer,
    write_attestation,
)

# Verification
from .verifier import AttestationVerifier, CheckResult, VerificationResult

# Index, sealing and batch
from .index import AttestationIndex, IndexEntry, load_index, save_index
from .sealing import canonical_index_object, index_seal_digest, seal_index, verify_seal
from .batch import BatchPolicy, BatchVerifier

# Evidence bundles
from .bundle import EvidenceBundleBuilder, verify_evidence

__all__ = [
    # Canonicalization and hashing
    "canonicalize",
    "canonicalize_str",
    "storage_encode",
    "Digest",
    "code_digest",
    "content_digest",
    "file_digest",
    "value_digest",

    # Errors
    "AttestationError",
    "CanonicalizationError",
    "CircularReference",
    "FailureCode",
    "ImmutableArtifact",
    "MissingArtifact",
    "NetworkReadFailure",
    "NonFiniteNumber",
    "SchemaMismatch",
    "SigningKeyError",
    "UnsafeInteger",
    "UnsupportedSealingRule",

    # Configuration
    "PipelineConfig",

    # Attestations
    "Attestation",
    "AttestationType",
    "CanonicalRule",
    "Signature",
    "Subject",
    "SubjectKind",

    # Collaborators
    "JsonRpcLedgerClient",
    "LedgerReader",
    "AttestationSigner",
    "LocalAccountSigner",
    "MessageSigner",
    "build_preimage",
    "recover_signer",
    "write_attestation",

    # Verification
    "AttestationVerifier",
    "CheckResult",
    "VerificationResult",

    # Index, sealing and batch
    "AttestationIndex",
    "IndexEntry",
    "load_index",
    "save_index",
    "canonical_index_object",
    "index_seal_digest",
    "seal_index",
    "verify_seal",
    "BatchPolicy",
    "BatchVerifier",

    # Evidence bundles
    "EvidenceBundleBuilder",
    "verify_evidence",
]
