"""
Attestation signing and verification tests.

Covers the sign/verify round trip with a known key, tamper detection for
every check, and the raw-file versus canonical-manifest distinction.
"""

import json
import tempfile
import unittest
from pathlib import Path

from govattest.attestation import (
    MANIFEST_RULE,
    Attestation,
    AttestationType,
    CanonicalRule,
    SubjectKind,
)
from govattest.errors import FailureCode, ImmutableArtifact, SchemaMismatch, SigningKeyError
from govattest.hashing import code_digest, content_digest
from govattest.signing import (
    AttestationSigner,
    LocalAccountSigner,
    build_preimage,
    default_attestation_path,
    recover_signer,
    write_attestation,
)
from govattest.util import load_json
from govattest.verifier import AttestationVerifier

from support import ISSUED_AT, OTHER_KEY, TEST_ADDRESS, TEST_KEY, FakeLedger, write_json

TAG = "onchain-equity.attestation.v1"
CONTRACT = "0x000000000000000000000000000000000000dEaD"


def failed_codes(result):
    return {c.name: c.code for c in result.failures()}


class AttestationTestCase(unittest.TestCase):

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.base = Path(self._tmp.name)
        self.signer = AttestationSigner(LocalAccountSigner(TEST_KEY), TAG, base_dir=self.base)
        self.verifier = AttestationVerifier(TAG, base_dir=self.base)
        self.manifest = write_json(self.base / "manifests" / "cap-table.json", {"b": 2, "a": 1})

    def tearDown(self):
        self._tmp.cleanup()


class TestSigner(AttestationTestCase):
    """Signing with the known test key"""

    def test_known_key_address(self):
        self.assertEqual(LocalAccountSigner(TEST_KEY).address, TEST_ADDRESS)

    def test_key_without_prefix(self):
        self.assertEqual(LocalAccountSigner(TEST_KEY[2:]).address, TEST_ADDRESS)

    def test_missing_key_is_fatal(self):
        with self.assertRaises(SigningKeyError):
            LocalAccountSigner("")

    def test_unreadable_key_is_fatal(self):
        with self.assertRaises(SigningKeyError):
            LocalAccountSigner("0xnot-a-key")

    def test_preimage_format(self):
        digest = content_digest(b'{"a":1,"b":2}')
        self.assertEqual(
            build_preimage(TAG, SubjectKind.CANONICAL_MANIFEST, digest),
            TAG + "\ncanonical-manifest.sha256:"
            "43258cff783fe7036d8a43033f830adfc60ec037382473548ac742b888292777",
        )

    def test_manifest_attestation_fields(self):
        att = self.signer.attest_manifest("manifests/cap-table.json", ISSUED_AT, "cap-table-1")

        self.assertEqual(att.type, AttestationType.MANIFEST)
        self.assertEqual(att.issued_at, ISSUED_AT)
        self.assertEqual(att.subject.locator, "manifests/cap-table.json")
        self.assertEqual(att.subject.canonical_rule, MANIFEST_RULE)
        self.assertEqual(
            att.subject.digest.value,
            "0x43258cff783fe7036d8a43033f830adfc60ec037382473548ac742b888292777",
        )
        self.assertEqual(att.signature.signer, TEST_ADDRESS)
        self.assertEqual(
            att.signature.preimage_digest.value,
            "0x1c436973cabf8f35e895f8bc2e8855265faf7243b48f69fa3f12502177b04a65",
        )
        self.assertEqual(recover_signer(att.signature.preimage, att.signature.value), TEST_ADDRESS)

    def test_signature_is_65_bytes_hex(self):
        att = self.signer.attest_manifest(self.manifest, ISSUED_AT)
        self.assertTrue(att.signature.value.startswith("0x"))
        self.assertEqual(len(att.signature.value), 2 + 130)

    def test_issued_at_normalized(self):
        att = self.signer.attest_file(self.manifest, "2026-02-10T04:15:44+00:00")
        self.assertEqual(att.issued_at, "2026-02-10T04:15:44.000Z")

    def test_invalid_issued_at(self):
        with self.assertRaises(SchemaMismatch):
            self.signer.attest_file(self.manifest, "yesterday")

    def test_serialized_shape(self):
        att = self.signer.attest_manifest(self.manifest, ISSUED_AT, "m-1")
        d = att.to_dict()
        self.assertEqual(d["schema"], "attestation-v1")
        self.assertEqual(d["type"], "manifest-attestation")
        self.assertEqual(d["issuedAt"], ISSUED_AT)
        self.assertEqual(d["subject"]["canonicalRule"], MANIFEST_RULE.to_dict())
        self.assertEqual(d["signature"]["type"], "eip191-personal")
        self.assertIn("preimageDigest", d["signature"])
        self.assertEqual(Attestation.from_dict(d), att)


class TestWriteAttestation(AttestationTestCase):

    def test_default_path(self):
        self.assertEqual(
            default_attestation_path("manifests/cap-table.json"),
            Path("manifests/cap-table.attestation.json"),
        )

    def test_write_is_storage_encoded(self):
        att = self.signer.attest_manifest(self.manifest, ISSUED_AT)
        out = write_attestation(att, self.base / "out" / "a.attestation.json")
        text = out.read_text(encoding="utf-8")
        self.assertTrue(text.endswith("}\n"))
        self.assertIn('\n  "schema": "attestation-v1"', text)
        self.assertEqual(load_json(out), att.to_dict())

    def test_attestations_are_immutable(self):
        att = self.signer.attest_manifest(self.manifest, ISSUED_AT)
        out = self.base / "a.attestation.json"
        write_attestation(att, out)
        with self.assertRaises(ImmutableArtifact):
            write_attestation(att, out)
        self.assertFalse((self.base / "a.attestation.json.tmp").exists())


class TestVerifier(AttestationTestCase):
    """Round trip and tamper detection"""

    def test_manifest_round_trip(self):
        att = self.signer.attest_manifest(self.manifest, ISSUED_AT)
        result = self.verifier.verify(att, expected_signer=TEST_ADDRESS)

        self.assertTrue(result.passed, result.render_report())
        self.assertEqual(result.recovered_signer, TEST_ADDRESS)
        self.assertEqual(
            [c.name for c in result.checks],
            ["schema", "subject-digest", "preimage-digest", "signer-recovery", "expected-signer"],
        )

    def test_verify_from_file(self):
        att = self.signer.attest_manifest(self.manifest, ISSUED_AT)
        write_attestation(att, self.base / "manifests" / "cap-table.attestation.json")
        result = self.verifier.verify_file("manifests/cap-table.attestation.json")
        self.assertTrue(result.passed, result.render_report())

    def test_expected_signer_is_case_insensitive(self):
        att = self.signer.attest_manifest(self.manifest, ISSUED_AT)
        self.assertTrue(self.verifier.verify(att, expected_signer=TEST_ADDRESS.lower()).passed)

    def test_unexpected_signer(self):
        att = self.signer.attest_manifest(self.manifest, ISSUED_AT)
        other = LocalAccountSigner(OTHER_KEY).address
        result = self.verifier.verify(att, expected_signer=other)
        self.assertFalse(result.passed)
        self.assertEqual(failed_codes(result), {"expected-signer": FailureCode.UNEXPECTED_SIGNER})

    def test_whitespace_change_absorbed_for_canonical_manifest(self):
        att = self.signer.attest_manifest(self.manifest, ISSUED_AT)
        self.manifest.write_text(json.dumps({"a": 1, "b": 2}, indent=4) + "\n\n", encoding="utf-8")
        self.assertTrue(self.verifier.verify(att).passed)

    def test_whitespace_change_detected_for_raw_file(self):
        att = self.signer.attest_file(self.manifest, ISSUED_AT)
        self.manifest.write_bytes(self.manifest.read_bytes() + b" ")
        result = self.verifier.verify(att)
        self.assertFalse(result.passed)
        self.assertEqual(failed_codes(result), {"subject-digest": FailureCode.DIGEST_MISMATCH})

    def test_semantic_change_detected_for_canonical_manifest(self):
        att = self.signer.attest_manifest(self.manifest, ISSUED_AT)
        write_json(self.manifest, {"a": 1, "b": 3})
        result = self.verifier.verify(att)
        self.assertEqual(failed_codes(result), {"subject-digest": FailureCode.DIGEST_MISMATCH})

    def test_missing_subject_file(self):
        att = self.signer.attest_manifest(self.manifest, ISSUED_AT)
        self.manifest.unlink()
        result = self.verifier.verify(att)
        self.assertEqual(failed_codes(result), {"subject-digest": FailureCode.MISSING_ARTIFACT})

    def test_artifact_path_override(self):
        att = self.signer.attest_manifest(self.manifest, ISSUED_AT)
        copy = write_json(self.base / "elsewhere.json", {"a": 1, "b": 2}, indent=None)
        self.manifest.unlink()
        self.assertTrue(self.verifier.verify(att, artifact_path=copy).passed)

    def test_tampered_digest_fails_preimage_and_signer(self):
        d = self.signer.attest_manifest(self.manifest, ISSUED_AT).to_dict()
        d["subject"]["digest"]["value"] = "0x" + "00" * 32
        result = self.verifier.verify(d)
        codes = failed_codes(result)
        self.assertEqual(codes["subject-digest"], FailureCode.DIGEST_MISMATCH)
        self.assertEqual(codes["preimage-digest"], FailureCode.PREIMAGE_MISMATCH)
        self.assertEqual(codes["signer-recovery"], FailureCode.SIGNATURE_MISMATCH)

    def test_tampered_preimage_digest(self):
        d = self.signer.attest_manifest(self.manifest, ISSUED_AT).to_dict()
        d["signature"]["preimageDigest"]["value"] = "0x" + "11" * 32
        result = self.verifier.verify(d)
        self.assertEqual(failed_codes(result), {"preimage-digest": FailureCode.PREIMAGE_MISMATCH})

    def test_tampered_signer(self):
        d = self.signer.attest_manifest(self.manifest, ISSUED_AT).to_dict()
        d["signature"]["signer"] = LocalAccountSigner(OTHER_KEY).address
        result = self.verifier.verify(d)
        self.assertEqual(failed_codes(result), {"signer-recovery": FailureCode.SIGNATURE_MISMATCH})

    def test_garbage_signature(self):
        d = self.signer.attest_manifest(self.manifest, ISSUED_AT).to_dict()
        d["signature"]["value"] = "0x1234"
        result = self.verifier.verify(d, expected_signer=TEST_ADDRESS)
        codes = failed_codes(result)
        self.assertEqual(codes["signer-recovery"], FailureCode.SIGNATURE_MISMATCH)
        self.assertEqual(codes["expected-signer"], FailureCode.UNEXPECTED_SIGNER)

    def test_empty_signature_is_a_failed_check(self):
        d = self.signer.attest_manifest(self.manifest, ISSUED_AT).to_dict()
        for value in ("", "0x", "0x" + "zz" * 65):
            with self.subTest(value=value):
                d["signature"]["value"] = value
                result = self.verifier.verify(d, expected_signer=TEST_ADDRESS)
                self.assertEqual(len(result.checks), 5)
                codes = failed_codes(result)
                self.assertEqual(codes["signer-recovery"], FailureCode.SIGNATURE_MISMATCH)
                self.assertEqual(codes["expected-signer"], FailureCode.UNEXPECTED_SIGNER)
                self.assertIsNone(result.recovered_signer)

    def test_recover_signer_rejects_short_signature(self):
        with self.assertRaises(ValueError):
            recover_signer("tag\nmanifest.sha256:00", "0x")

    def test_protocol_tag_is_bound(self):
        att = self.signer.attest_manifest(self.manifest, ISSUED_AT)
        result = AttestationVerifier("other.attestation.v1", base_dir=self.base).verify(att)
        self.assertIn("preimage-digest", failed_codes(result))

    def test_schema_mismatch(self):
        d = self.signer.attest_manifest(self.manifest, ISSUED_AT).to_dict()
        d["schema"] = "attestation-v0"
        result = self.verifier.verify(d)
        self.assertFalse(result.passed)
        self.assertEqual(failed_codes(result), {"schema": FailureCode.SCHEMA_MISMATCH})

    def test_unknown_canonical_rule(self):
        d = self.signer.attest_manifest(self.manifest, ISSUED_AT).to_dict()
        d["subject"]["canonicalRule"] = CanonicalRule("sorted-keys", "pretty-2-space", True).to_dict()
        result = self.verifier.verify(d)
        self.assertEqual(failed_codes(result), {"subject-digest": FailureCode.SCHEMA_MISMATCH})

    def test_checks_are_not_short_circuited(self):
        d = self.signer.attest_manifest(self.manifest, ISSUED_AT).to_dict()
        d["subject"]["digest"]["value"] = "0x" + "00" * 32
        result = self.verifier.verify(d, expected_signer=TEST_ADDRESS)
        self.assertEqual(len(result.checks), 5)

    def test_report_and_dict(self):
        att = self.signer.attest_file(self.manifest, ISSUED_AT)
        self.manifest.write_text("changed", encoding="utf-8")
        result = self.verifier.verify(att, target="cap-table")
        report = result.render_report()
        self.assertIn("✗ FAIL  subject-digest", report)
        self.assertIn("RESULT: ✗ FAIL", report)
        d = result.to_dict()
        self.assertFalse(d["pass"])
        self.assertEqual(d["checks"][1]["code"], "DigestMismatch")


class TestBytecodeAttestation(AttestationTestCase):

    def test_bytecode_round_trip(self):
        code = bytes.fromhex("6080604052")
        ledger = FakeLedger({CONTRACT: code})
        att = self.signer.attest_bytecode(CONTRACT.lower(), ledger, ISSUED_AT)

        self.assertEqual(att.type, AttestationType.BYTECODE)
        self.assertEqual(att.subject.locator, CONTRACT)
        self.assertEqual(att.subject.digest, code_digest(code))
        self.assertIn(".keccak256:", att.signature.preimage)

        verifier = AttestationVerifier(TAG, ledger=ledger, base_dir=self.base)
        self.assertTrue(verifier.verify(att, expected_signer=TEST_ADDRESS).passed)

    def test_redeployed_code_detected(self):
        ledger = FakeLedger({CONTRACT: b"\x60\x80"})
        att = self.signer.attest_bytecode(CONTRACT, ledger, ISSUED_AT)
        ledger.code[CONTRACT] = b"\x60\x81"
        result = AttestationVerifier(TAG, ledger=ledger).verify(att)
        self.assertEqual(failed_codes(result), {"subject-digest": FailureCode.DIGEST_MISMATCH})

    def test_ledger_failure_is_a_failed_check(self):
        ledger = FakeLedger({CONTRACT: b"\x60\x80"})
        att = self.signer.attest_bytecode(CONTRACT, ledger, ISSUED_AT)
        result = AttestationVerifier(TAG, ledger=FakeLedger(fail=True)).verify(att)
        self.assertEqual(failed_codes(result), {"subject-digest": FailureCode.NETWORK_READ_FAILURE})

    def test_no_ledger_configured(self):
        att = self.signer.attest_bytecode(CONTRACT, FakeLedger({CONTRACT: b"\x00"}), ISSUED_AT)
        result = AttestationVerifier(TAG).verify(att)
        self.assertEqual(failed_codes(result), {"subject-digest": FailureCode.NETWORK_READ_FAILURE})


if __name__ == "__main__":
    unittest.main()
