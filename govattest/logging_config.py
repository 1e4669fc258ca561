"""
Logging configuration for govattest.

Provides structured JSON logging for audit trails and a dedicated audit
logger for attestation, sealing, batch and bundle events.
"""

import json
import logging
import sys
import time
import uuid
from contextvars import ContextVar
from typing import Any, Dict, List, Optional

# Context variable for correlating all log lines of one CLI run
run_id_var: ContextVar[str] = ContextVar('run_id', default='')


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    One JSON object per line, suitable for archiving next to the evidence
    artifacts a run produced.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": time.strftime('%Y-%m-%dT%H:%M:%SZ', time.gmtime(record.created)),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        run_id = run_id_var.get()
        if run_id:
            log_data["run_id"] = run_id

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, 'extra_fields'):
            log_data.update(record.extra_fields)

        return json.dumps(log_data, default=str)


class AuditLogger:
    """
    Specialized logger for audit events.

    Every artifact the pipeline writes or checks is reported here with its
    digest, so the log itself can be cross-checked against the evidence
    directory.
    """

    def __init__(self, name: str = "govattest.audit"):
        self._logger = logging.getLogger(name)

    def _log(self, level: int, event_type: str, **kwargs) -> None:
        extra = {
            "event_type": event_type,
            "run_id": run_id_var.get(),
            **kwargs
        }

        record = self._logger.makeRecord(
            self._logger.name,
            level,
            "",
            0,
            f"{event_type}: {kwargs.get('message', '')}",
            (),
            None
        )
        record.extra_fields = extra
        self._logger.handle(record)

    def attestation_issued(
        self,
        attestation_type: str,
        subject_digest: str,
        path: str,
        signer: Optional[str] = None
    ) -> None:
        self._log(
            logging.INFO,
            "ATTESTATION_ISSUED",
            attestation_type=attestation_type,
            subject_digest=subject_digest,
            path=path,
            signer=signer,
            message=f"{attestation_type} written to {path}"
        )

    def verification_result(
        self,
        target: str,
        passed: bool,
        failed_checks: Optional[List[str]] = None
    ) -> None:
        level = logging.INFO if passed else logging.WARNING
        self._log(
            level,
            "VERIFICATION_RESULT",
            target=target,
            passed=passed,
            failed_checks=failed_checks or [],
            message=f"Verification {'PASS' if passed else 'FAIL'} for {target}"
        )

    def index_sealed(self, index_path: str, digest: str, seal_path: str) -> None:
        self._log(
            logging.INFO,
            "INDEX_SEALED",
            index_path=index_path,
            digest=digest,
            seal_path=seal_path,
            message=f"Index {index_path} sealed"
        )

    def batch_complete(
        self,
        index_path: str,
        policy: str,
        status: str,
        verified: int,
        total: int,
        summary_path: Optional[str] = None
    ) -> None:
        level = logging.INFO if status == "PASS" else logging.ERROR
        self._log(
            level,
            "BATCH_COMPLETE",
            index_path=index_path,
            policy=policy,
            status=status,
            verified=verified,
            total=total,
            summary_path=summary_path,
            message=f"Batch verification {status} ({verified}/{total})"
        )

    def bundle_built(
        self,
        bundle_path: str,
        manifest_path: str,
        chain_id: Optional[int],
        contracts: int
    ) -> None:
        self._log(
            logging.INFO,
            "BUNDLE_BUILT",
            bundle_path=bundle_path,
            manifest_path=manifest_path,
            chain_id=chain_id,
            contracts=contracts,
            message=f"Evidence bundle written to {bundle_path}"
        )

    def evidence_verified(self, manifest_path: str, passed: bool, **details: Any) -> None:
        level = logging.INFO if passed else logging.ERROR
        self._log(
            level,
            "EVIDENCE_VERIFIED",
            manifest_path=manifest_path,
            passed=passed,
            **details,
            message=f"Evidence manifest {manifest_path}: {'PASS' if passed else 'FAIL'}"
        )

    def network_failure(self, rpc_url: str, method: str, error: str) -> None:
        self._log(
            logging.ERROR,
            "NETWORK_READ_FAILURE",
            rpc_url=rpc_url,
            method=method,
            error=error,
            message=f"RPC {method} failed"
        )


def configure_logging(
    level: str = "INFO",
    json_format: bool = False,
    log_file: Optional[str] = None
) -> None:
    """
    Configure logging for the command line tools.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON formatting
        log_file: Optional file path for log output
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if json_format:
        formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

    # Reports go to stdout; logs stay on stderr.
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)


def set_run_id(run_id: Optional[str] = None) -> str:
    """Set the run ID for the current context, generating one if needed."""
    if run_id is None:
        run_id = str(uuid.uuid4())
    run_id_var.set(run_id)
    return run_id


def get_run_id() -> str:
    return run_id_var.get()


def log_fields(**fields: Any) -> Dict[str, Any]:
    """`extra=` payload understood by StructuredFormatter."""
    return {"extra_fields": fields}


audit_log = AuditLogger()
