"""
govattest Error Taxonomy

Failure codes shared by verification check results and by the exceptions
raised while canonicalizing, digesting, signing and loading artifacts.
"""

from enum import Enum
from typing import Any, Dict, Optional


class FailureCode(str, Enum):
    """Standard failure codes reported in check results and summaries."""
    SCHEMA_MISMATCH = "SchemaMismatch"
    DIGEST_MISMATCH = "DigestMismatch"
    PREIMAGE_MISMATCH = "PreimageMismatch"
    SIGNATURE_MISMATCH = "SignatureMismatch"
    UNEXPECTED_SIGNER = "UnexpectedSigner"
    UNSUPPORTED_SEALING_RULE = "UnsupportedSealingRule"
    CIRCULAR_REFERENCE = "CircularReference"
    NON_FINITE_NUMBER = "NonFiniteNumber"
    UNSAFE_INTEGER = "UnsafeInteger"
    MISSING_ARTIFACT = "MissingArtifact"
    NETWORK_READ_FAILURE = "NetworkReadFailure"
    IMMUTABLE_ARTIFACT = "ImmutableArtifact"
    SIGNING_KEY = "SigningKeyError"


class AttestationError(Exception):
    """Base class for all govattest errors."""

    code: FailureCode = FailureCode.SCHEMA_MISMATCH

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        d = {"code": self.code.value, "message": str(self)}
        if self.details:
            d["details"] = self.details
        return d


# Canonicalization

class CanonicalizationError(AttestationError, ValueError):
    """Value cannot be mapped to canonical bytes."""
    code = FailureCode.SCHEMA_MISMATCH


class CircularReference(CanonicalizationError):
    code = FailureCode.CIRCULAR_REFERENCE


class NonFiniteNumber(CanonicalizationError):
    code = FailureCode.NON_FINITE_NUMBER


class UnsafeInteger(CanonicalizationError):
    """Native integer outside the range every JSON consumer represents exactly."""
    code = FailureCode.UNSAFE_INTEGER


# Artifacts

class SchemaMismatch(AttestationError):
    code = FailureCode.SCHEMA_MISMATCH


class MissingArtifact(AttestationError, FileNotFoundError):
    code = FailureCode.MISSING_ARTIFACT


class ImmutableArtifact(AttestationError, FileExistsError):
    """Refusal to overwrite an attestation that has already been written."""
    code = FailureCode.IMMUTABLE_ARTIFACT


class UnsupportedSealingRule(AttestationError):
    code = FailureCode.UNSUPPORTED_SEALING_RULE


# Collaborators

class NetworkReadFailure(AttestationError):
    code = FailureCode.NETWORK_READ_FAILURE


class SigningKeyError(AttestationError):
    code = FailureCode.SIGNING_KEY
