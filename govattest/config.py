"""
Configuration module for govattest.

All environment lookups happen in PipelineConfig.from_env(); the resulting
immutable value is built once at startup and passed explicitly to the
signer, verifiers and bundle builder.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

DEFAULT_PROTOCOL_TAG = "onchain-equity.attestation.v1"
DEFAULT_RPC_URL = "https://sepolia.base.org"
DEFAULT_INDEX_PATH = "manifests/attestation-index.json"
DEFAULT_EVIDENCE_ROOT = "evidence"
DEFAULT_DEPLOYMENTS_PATH = "deployments/base-sepolia.json"

BATCH_POLICIES = ("fail-fast", "collect-all")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes")


@dataclass(frozen=True)
class PipelineConfig:
    """Immutable pipeline configuration."""
    rpc_url: str = DEFAULT_RPC_URL
    private_key: Optional[str] = field(default=None, repr=False)
    protocol_tag: str = DEFAULT_PROTOCOL_TAG
    index_path: Path = Path(DEFAULT_INDEX_PATH)
    evidence_root: Path = Path(DEFAULT_EVIDENCE_ROOT)
    deployments_path: Path = Path(DEFAULT_DEPLOYMENTS_PATH)
    batch_policy: str = "collect-all"
    rpc_timeout: float = 30.0
    log_level: str = "INFO"
    log_json: bool = False

    def __post_init__(self):
        if self.batch_policy not in BATCH_POLICIES:
            raise ValueError(f"Unknown batch policy: {self.batch_policy}")
        if not self.protocol_tag or "\n" in self.protocol_tag:
            raise ValueError("Protocol tag must be a non-empty single line")
        level = str(self.log_level).upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"Unknown log level: {self.log_level}")
        object.__setattr__(self, "log_level", level)
        for name in ("index_path", "evidence_root", "deployments_path"):
            object.__setattr__(self, name, Path(getattr(self, name)))

    @classmethod
    def from_env(cls, **overrides: Any) -> "PipelineConfig":
        """
        Build configuration from the environment.

        Explicit keyword overrides (e.g. parsed CLI flags) win over
        environment values; None overrides are ignored.
        """
        values: Dict[str, Any] = {
            "rpc_url": os.getenv("GOVATTEST_RPC_URL")
            or os.getenv("BASE_SEPOLIA_RPC_URL")
            or DEFAULT_RPC_URL,
            "private_key": os.getenv("PRIVATE_KEY") or None,
            "protocol_tag": os.getenv("GOVATTEST_PROTOCOL_TAG", DEFAULT_PROTOCOL_TAG),
            "index_path": os.getenv("GOVATTEST_INDEX_PATH", DEFAULT_INDEX_PATH),
            "evidence_root": os.getenv("GOVATTEST_EVIDENCE_ROOT", DEFAULT_EVIDENCE_ROOT),
            "deployments_path": os.getenv("GOVATTEST_DEPLOYMENTS_PATH", DEFAULT_DEPLOYMENTS_PATH),
            "batch_policy": os.getenv("GOVATTEST_BATCH_POLICY", "collect-all"),
            "rpc_timeout": float(os.getenv("GOVATTEST_RPC_TIMEOUT", "30")),
            "log_level": os.getenv("GOVATTEST_LOG_LEVEL", "INFO"),
            "log_json": _env_bool("GOVATTEST_LOG_JSON"),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    def has_signing_key(self) -> bool:
        return bool(self.private_key)

    def validate(self) -> Dict[str, bool]:
        """
        Report which configured inputs are present.
        Returns dict of name -> exists.
        """
        return {
            "index": self.index_path.exists(),
            "deployments": self.deployments_path.exists(),
            "evidence_root": self.evidence_root.exists(),
            "signing_key": self.has_signing_key(),
        }
