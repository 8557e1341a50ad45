"""
Result Models

Dataclass models for on-chain identities, commitments and deployment results.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class AppIdentity:
    """App identity registered with an on-chain KMS."""

    app_id: str
    controller_address: str
    deployer_address: str
    transaction_hash: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "app_id": self.app_id,
            "controller_address": self.controller_address,
            "deployer_address": self.deployer_address,
            "transaction_hash": self.transaction_hash,
        }


@dataclass
class ComposeHashCommit:
    """Compose hash recorded against an app identity."""

    identity_address: str
    compose_hash: str
    transaction_hash: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "identity_address": self.identity_address,
            "compose_hash": self.compose_hash,
            "transaction_hash": self.transaction_hash,
        }


@dataclass
class DeploymentResult:
    """Outcome of a successful deploy or upgrade."""

    deployment_id: str
    app_id: str
    status: str
    endpoint: str
    name: str = ""
    compose_hash: Optional[str] = None
    identity: Optional[AppIdentity] = None
    commit: Optional[ComposeHashCommit] = None
    env_keys: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "deployment_id": self.deployment_id,
            "name": self.name,
            "app_id": self.app_id,
            "status": self.status,
            "endpoint": self.endpoint,
            "env_keys": list(self.env_keys),
        }
        if self.compose_hash:
            data["compose_hash"] = self.compose_hash
        if self.identity:
            data["identity"] = self.identity.to_dict()
        if self.commit:
            data["commit"] = self.commit.to_dict()
        return data

    def __repr__(self) -> str:
        return f"DeploymentResult(id={self.deployment_id}, app_id={self.app_id}, status={self.status})"
