"""
govattest Attestation Records

An attestation binds a digest of a subject to a point in time and, when
signed, to a signer identity. Records are created once and never mutated;
corrections are made by writing new attestations.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from .errors import SchemaMismatch
from .hashing import Digest

ATTESTATION_SCHEMA = "attestation-v1"
SIGNATURE_TYPE = "eip191-personal"


class SubjectKind(str, Enum):
    """What an attestation is about."""
    CANONICAL_MANIFEST = "canonical-manifest"
    RAW_FILE = "raw-file"
    RUNTIME_BYTECODE = "runtime-bytecode"
    ATTESTATION_INDEX = "attestation-index"


class AttestationType(str, Enum):
    MANIFEST = "manifest-attestation"
    FILE = "file-attestation"
    BYTECODE = "bytecode-attestation"
    INDEX = "index-attestation"


ATTESTATION_TYPE_FOR_KIND = {
    SubjectKind.CANONICAL_MANIFEST: AttestationType.MANIFEST,
    SubjectKind.RAW_FILE: AttestationType.FILE,
    SubjectKind.RUNTIME_BYTECODE: AttestationType.BYTECODE,
    SubjectKind.ATTESTATION_INDEX: AttestationType.INDEX,
}


@dataclass(frozen=True)
class CanonicalRule:
    """How a subject's bytes were derived before digesting."""
    rule: str
    format: str
    newline: bool

    def to_dict(self) -> Dict[str, Any]:
        return {"rule": self.rule, "format": self.format, "newline": self.newline}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CanonicalRule":
        if not isinstance(data, dict):
            raise SchemaMismatch("canonicalRule must be an object")
        return cls(
            rule=str(data.get("rule", "")),
            format=str(data.get("format", "")),
            newline=bool(data.get("newline", False)),
        )


# Manifest subjects are digested over the compact encoding.
MANIFEST_RULE = CanonicalRule(rule="sorted-keys", format="compact", newline=False)


@dataclass(frozen=True)
class Subject:
    kind: SubjectKind
    locator: str
    digest: Digest
    canonical_rule: Optional[CanonicalRule] = None

    def to_dict(self) -> Dict[str, Any]:
        d = {"kind": self.kind.value, "locator": self.locator}
        if self.canonical_rule is not None:
            d["canonicalRule"] = self.canonical_rule.to_dict()
        d["digest"] = self.digest.to_dict()
        return d

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Subject":
        if not isinstance(data, dict):
            raise SchemaMismatch("subject must be an object")
        try:
            kind = SubjectKind(data.get("kind"))
        except ValueError:
            raise SchemaMismatch(f"Unknown subject kind: {data.get('kind')}")
        locator = data.get("locator")
        if not isinstance(locator, str) or not locator:
            raise SchemaMismatch("subject.locator missing")
        rule = data.get("canonicalRule")
        return cls(
            kind=kind,
            locator=locator,
            digest=Digest.from_dict(data.get("digest")),
            canonical_rule=CanonicalRule.from_dict(rule) if rule is not None else None,
        )


@dataclass(frozen=True)
class Signature:
    signer: str
    preimage: str
    preimage_digest: Digest
    value: str
    type: str = SIGNATURE_TYPE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "signer": self.signer,
            "preimage": self.preimage,
            "preimageDigest": self.preimage_digest.to_dict(),
            "value": self.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Signature":
        if not isinstance(data, dict):
            raise SchemaMismatch("signature must be an object")
        missing = [k for k in ("signer", "preimage", "preimageDigest", "value") if k not in data]
        if missing:
            raise SchemaMismatch(f"signature missing fields: {', '.join(missing)}")
        return cls(
            type=data.get("type", SIGNATURE_TYPE),
            signer=str(data["signer"]),
            preimage=str(data["preimage"]),
            preimage_digest=Digest.from_dict(data["preimageDigest"]),
            value=str(data["value"]),
        )


@dataclass(frozen=True)
class Attestation:
    type: AttestationType
    issued_at: str
    subject: Subject
    signature: Optional[Signature] = None
    id: Optional[str] = None
    schema: str = ATTESTATION_SCHEMA
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def signed(self) -> bool:
        return self.signature is not None

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "schema": self.schema,
            "type": self.type.value,
            "issuedAt": self.issued_at,
        }
        if self.id:
            d["id"] = self.id
        d["subject"] = self.subject.to_dict()
        if self.signature is not None:
            d["signature"] = self.signature.to_dict()
        d.update(self.extra)
        return d

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Attestation":
        if not isinstance(data, dict):
            raise SchemaMismatch("attestation must be a JSON object")
        if data.get("schema") != ATTESTATION_SCHEMA:
            raise SchemaMismatch(
                f"attestation schema mismatch: {data.get('schema')}",
                {"expected": ATTESTATION_SCHEMA, "found": data.get("schema")},
            )
        try:
            att_type = AttestationType(data.get("type"))
        except ValueError:
            raise SchemaMismatch(f"Unknown attestation type: {data.get('type')}")
        known = {"schema", "type", "issuedAt", "id", "subject", "signature"}
        sig = data.get("signature")
        return cls(
            schema=data["schema"],
            type=att_type,
            issued_at=str(data.get("issuedAt", "")),
            id=data.get("id"),
            subject=Subject.from_dict(data.get("subject")),
            signature=Signature.from_dict(sig) if sig is not None else None,
            extra={k: v for k, v in data.items() if k not in known},
        )
