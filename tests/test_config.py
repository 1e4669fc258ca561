"""Configuration and structured logging tests."""

import json
import logging
import os
import unittest
from pathlib import Path
from unittest import mock

from govattest.config import DEFAULT_PROTOCOL_TAG, DEFAULT_RPC_URL, PipelineConfig
from govattest.errors import SigningKeyError
from govattest.logging_config import (
    AuditLogger,
    StructuredFormatter,
    get_run_id,
    log_fields,
    set_run_id,
)
from govattest.signing import get_message_signer

from support import TEST_ADDRESS, TEST_KEY


class TestPipelineConfig(unittest.TestCase):

    def test_defaults(self):
        with mock.patch.dict(os.environ, {}, clear=True):
            config = PipelineConfig.from_env()
        self.assertEqual(config.rpc_url, DEFAULT_RPC_URL)
        self.assertEqual(config.protocol_tag, DEFAULT_PROTOCOL_TAG)
        self.assertEqual(config.index_path, Path("manifests/attestation-index.json"))
        self.assertEqual(config.batch_policy, "collect-all")
        self.assertIsNone(config.private_key)
        self.assertFalse(config.has_signing_key())

    def test_environment(self):
        env = {
            "BASE_SEPOLIA_RPC_URL": "https://fallback.example",
            "PRIVATE_KEY": TEST_KEY,
            "GOVATTEST_BATCH_POLICY": "fail-fast",
            "GOVATTEST_RPC_TIMEOUT": "7.5",
            "GOVATTEST_LOG_JSON": "true",
        }
        with mock.patch.dict(os.environ, env, clear=True):
            config = PipelineConfig.from_env()
        self.assertEqual(config.rpc_url, "https://fallback.example")
        self.assertEqual(config.batch_policy, "fail-fast")
        self.assertEqual(config.rpc_timeout, 7.5)
        self.assertTrue(config.log_json)
        self.assertEqual(get_message_signer(config).address, TEST_ADDRESS)

    def test_primary_rpc_variable_wins(self):
        env = {"GOVATTEST_RPC_URL": "https://primary.example", "BASE_SEPOLIA_RPC_URL": "https://fallback.example"}
        with mock.patch.dict(os.environ, env, clear=True):
            self.assertEqual(PipelineConfig.from_env().rpc_url, "https://primary.example")

    def test_overrides_win_and_none_is_ignored(self):
        with mock.patch.dict(os.environ, {"GOVATTEST_INDEX_PATH": "env/index.json"}, clear=True):
            config = PipelineConfig.from_env(index_path="cli/index.json", rpc_url=None)
        self.assertEqual(config.index_path, Path("cli/index.json"))
        self.assertEqual(config.rpc_url, DEFAULT_RPC_URL)

    def test_private_key_hidden_from_repr(self):
        config = PipelineConfig(private_key=TEST_KEY)
        self.assertNotIn(TEST_KEY, repr(config))

    def test_invalid_policy(self):
        with self.assertRaises(ValueError):
            PipelineConfig(batch_policy="sometimes")

    def test_multiline_tag_rejected(self):
        with self.assertRaises(ValueError):
            PipelineConfig(protocol_tag="a\nb")

    def test_log_level_normalized(self):
        self.assertEqual(PipelineConfig(log_level="debug").log_level, "DEBUG")

    def test_unknown_log_level_rejected(self):
        with self.assertRaises(ValueError):
            PipelineConfig(log_level="verbose")
        with mock.patch.dict(os.environ, {"GOVATTEST_LOG_LEVEL": "verbose"}, clear=True):
            with self.assertRaises(ValueError):
                PipelineConfig.from_env()

    def test_missing_key_is_fatal_at_startup(self):
        with self.assertRaises(SigningKeyError):
            get_message_signer(PipelineConfig())

    def test_validate_reports_presence(self):
        report = PipelineConfig(index_path="/nonexistent/index.json").validate()
        self.assertEqual(set(report), {"index", "deployments", "evidence_root", "signing_key"})
        self.assertFalse(report["index"])
        self.assertFalse(report["signing_key"])


class _Capture(logging.Handler):

    def __init__(self):
        super().__init__()
        self.records = []

    def emit(self, record):
        self.records.append(record)


class TestLogging(unittest.TestCase):

    def setUp(self):
        self.handler = _Capture()
        self.logger = logging.getLogger("govattest.test.audit")
        self.logger.addHandler(self.handler)
        self.logger.setLevel(logging.DEBUG)
        self.logger.propagate = False

    def tearDown(self):
        self.logger.removeHandler(self.handler)

    def test_audit_event_fields(self):
        set_run_id("run-123")
        AuditLogger("govattest.test.audit").attestation_issued(
            "manifest-attestation", "0xabc", "out.json", TEST_ADDRESS
        )
        record = self.handler.records[0]
        self.assertEqual(record.levelno, logging.INFO)
        self.assertEqual(record.extra_fields["event_type"], "ATTESTATION_ISSUED")
        self.assertEqual(record.extra_fields["subject_digest"], "0xabc")
        self.assertEqual(record.extra_fields["run_id"], "run-123")

    def test_failed_batch_logs_error(self):
        AuditLogger("govattest.test.audit").batch_complete("index.json", "fail-fast", "FAIL", 1, 3)
        self.assertEqual(self.handler.records[0].levelno, logging.ERROR)

    def test_structured_formatter(self):
        set_run_id("run-456")
        record = logging.LogRecord("govattest.x", logging.WARNING, __file__, 10, "hello %s", ("world",), None)
        record.extra_fields = {"event_type": "TEST"}
        data = json.loads(StructuredFormatter().format(record))
        self.assertEqual(data["message"], "hello world")
        self.assertEqual(data["level"], "WARNING")
        self.assertEqual(data["run_id"], "run-456")
        self.assertEqual(data["event_type"], "TEST")

    def test_log_fields(self):
        self.assertEqual(log_fields(a=1), {"extra_fields": {"a": 1}})

    def test_generated_run_id(self):
        run_id = set_run_id()
        self.assertEqual(get_run_id(), run_id)
        self.assertEqual(len(run_id), 36)


if __name__ == "__main__":
    unittest.main()
