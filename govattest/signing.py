"""
govattest Attestation Signing

Signatures use EIP-191 personal messages over secp256k1 so that the signer
address can be recovered from (preimage, signature) alone:

    hash = keccak256("\\x19Ethereum Signed Message:\\n" + len(preimage) + preimage)

The preimage carries a versioned protocol tag for domain separation:

    "<protocol-tag>\\n<subject-kind>.<alg>:<digest hex without 0x>"
"""

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Union

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_keys.exceptions import ValidationError as KeyValidationError

from .attestation import (
    ATTESTATION_TYPE_FOR_KIND,
    MANIFEST_RULE,
    Attestation,
    Signature,
    Subject,
    SubjectKind,
)
from .canonicalization import canonicalize, parse_json_bytes
from .config import DEFAULT_PROTOCOL_TAG, PipelineConfig
from .errors import SigningKeyError
from .hashing import Digest, code_digest, content_digest, normalize_hex
from .ledger import LedgerReader, checksum_address
from .logging_config import audit_log
from .util import PathLike, parse_issued_at, posix_rel, read_bytes, write_json_artifact

logger = logging.getLogger(__name__)

# r (32) + s (32) + v (1)
SIGNATURE_BYTES = 65


def build_preimage(protocol_tag: str, kind: Union[SubjectKind, str], digest: Digest) -> str:
    """Domain-separated message that is signed for a subject digest."""
    kind_value = kind.value if isinstance(kind, SubjectKind) else str(kind)
    return f"{protocol_tag}\n{kind_value}.{digest.alg}:{digest.hex}"


def recover_signer(preimage: str, signature: str) -> str:
    """
    Recover the checksummed signer address of a personal-message signature.

    Raises ValueError for anything that is not 65 bytes of hex, before the
    signature reaches eth-account.
    """
    value = normalize_hex(signature)
    body = value[2:]
    if len(body) != SIGNATURE_BYTES * 2 or not all(c in "0123456789abcdef" for c in body):
        raise ValueError(f"signature must be {SIGNATURE_BYTES} bytes of hex, got {signature!r}")
    return Account.recover_message(encode_defunct(text=preimage), signature=value)


def normalize_private_key(private_key: str) -> str:
    key = private_key.strip()
    return key if key.startswith("0x") else f"0x{key}"


class MessageSigner(ABC):
    """Holder of a private key able to sign personal messages."""

    @property
    @abstractmethod
    def address(self) -> str:
        pass

    @abstractmethod
    def sign_message(self, message: str) -> str:
        """Return the 65-byte recoverable signature as 0x-prefixed hex."""
        pass


class LocalAccountSigner(MessageSigner):
    """Signs with an in-process secp256k1 key."""

    def __init__(self, private_key: str):
        if not private_key:
            raise SigningKeyError("Missing PRIVATE_KEY")
        try:
            self._account = Account.from_key(normalize_private_key(private_key))
        except (ValueError, TypeError, KeyValidationError) as e:
            raise SigningKeyError(f"Unreadable signing key: {type(e).__name__}") from e

    @property
    def address(self) -> str:
        return self._account.address

    def sign_message(self, message: str) -> str:
        signed = self._account.sign_message(encode_defunct(text=message))
        return "0x" + bytes(signed.signature).hex()


def get_message_signer(config: PipelineConfig) -> MessageSigner:
    """Build the signer from configuration; fails fast on a bad key."""
    return LocalAccountSigner(config.private_key or "")


class AttestationSigner:
    """
    Builds and signs attestations for manifests, raw files and bytecode.

    Locators are recorded relative to base_dir (default: working directory)
    so attestations can be replayed from a checkout of the same tree.
    """

    def __init__(
        self,
        signer: MessageSigner,
        protocol_tag: str = DEFAULT_PROTOCOL_TAG,
        base_dir: Optional[PathLike] = None
    ):
        self.signer = signer
        self.protocol_tag = protocol_tag
        self.base_dir = Path(base_dir) if base_dir is not None else Path.cwd()

    @classmethod
    def from_config(cls, config: PipelineConfig, base_dir: Optional[PathLike] = None) -> "AttestationSigner":
        return cls(get_message_signer(config), config.protocol_tag, base_dir)

    def sign_subject(
        self,
        subject: Subject,
        issued_at: Optional[str] = None,
        attestation_id: Optional[str] = None
    ) -> Attestation:
        """
        Sign an already-digested subject.

        Steps:
        1. preimage = "<tag>\\n<kind>.<alg>:<hex>"
        2. preimageDigest = sha256(utf8(preimage))
        3. personal-message signature over the preimage
        """
        preimage = build_preimage(self.protocol_tag, subject.kind, subject.digest)
        logger.debug("signing %s subject %s as %s", subject.kind.value, subject.locator, self.signer.address)
        signature_value = self.signer.sign_message(preimage)

        return Attestation(
            type=ATTESTATION_TYPE_FOR_KIND[subject.kind],
            issued_at=parse_issued_at(issued_at),
            id=attestation_id,
            subject=subject,
            signature=Signature(
                signer=self.signer.address,
                preimage=preimage,
                preimage_digest=content_digest(preimage),
                value=signature_value,
            ),
        )

    def manifest_subject(self, manifest_path: PathLike) -> Subject:
        raw = read_bytes(self._resolve(manifest_path))
        manifest = parse_json_bytes(raw)
        return Subject(
            kind=SubjectKind.CANONICAL_MANIFEST,
            locator=self._locator(manifest_path),
            digest=content_digest(canonicalize(manifest)),
            canonical_rule=MANIFEST_RULE,
        )

    def file_subject(self, file_path: PathLike) -> Subject:
        raw = read_bytes(self._resolve(file_path))
        return Subject(
            kind=SubjectKind.RAW_FILE,
            locator=self._locator(file_path),
            digest=content_digest(raw),
        )

    def bytecode_subject(self, address: str, ledger: LedgerReader) -> Subject:
        address = checksum_address(address)
        code = ledger.get_runtime_bytecode(address)
        return Subject(
            kind=SubjectKind.RUNTIME_BYTECODE,
            locator=address,
            digest=code_digest(code),
        )

    def attest_manifest(self, manifest_path: PathLike, issued_at: Optional[str] = None,
                        attestation_id: Optional[str] = None) -> Attestation:
        return self.sign_subject(self.manifest_subject(manifest_path), issued_at, attestation_id)

    def attest_file(self, file_path: PathLike, issued_at: Optional[str] = None,
                    attestation_id: Optional[str] = None) -> Attestation:
        return self.sign_subject(self.file_subject(file_path), issued_at, attestation_id)

    def attest_bytecode(self, address: str, ledger: LedgerReader, issued_at: Optional[str] = None,
                        attestation_id: Optional[str] = None) -> Attestation:
        return self.sign_subject(self.bytecode_subject(address, ledger), issued_at, attestation_id)

    def _resolve(self, path: PathLike) -> Path:
        p = Path(path)
        return p if p.is_absolute() else self.base_dir / p

    def _locator(self, path: PathLike) -> str:
        return posix_rel(self._resolve(path), self.base_dir)


def default_attestation_path(subject_path: PathLike) -> Path:
    """<dir>/<stem>.attestation.json next to the attested file."""
    p = Path(subject_path)
    return p.with_name(f"{p.stem}.attestation.json")


def write_attestation(attestation: Attestation, out_path: PathLike, *, overwrite: bool = False) -> Path:
    """
    Persist an attestation atomically.

    Existing attestation files are never replaced unless overwrite=True.
    """
    out = Path(out_path)
    write_json_artifact(out, attestation.to_dict(), overwrite=overwrite)
    audit_log.attestation_issued(
        attestation.type.value,
        attestation.subject.digest.value,
        str(out),
        attestation.signature.signer if attestation.signature else None,
    )
    return out
