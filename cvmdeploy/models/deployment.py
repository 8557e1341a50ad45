"""
Deployment Models

Dataclass models describing deployment requests, sizing and the
per-run deployment spec assembled by the orchestrator.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from cvmdeploy.constants import (
    COMPOSE_FEATURES,
    COMPOSE_MANIFEST_VERSION,
    DEFAULT_DISK_SIZE_GB,
    DEFAULT_MEMORY_MB,
    DEFAULT_VCPU,
)
from cvmdeploy.exceptions import CryptoError
from cvmdeploy.models.resources import ResourceSelection


class DeploymentPhase(Enum):
    """States of a deployment or upgrade run."""

    START = "Start"
    RESOURCES_RESOLVED = "ResourcesResolved"
    SECRETS_PARSED = "SecretsParsed"
    REMOTE_PUBKEY_FETCHED = "RemotePubkeyFetched"
    SECRETS_ENCRYPTED = "SecretsEncrypted"
    SUBMITTED = "Submitted"
    IDENTITY_ESTABLISHED = "IdentityEstablished"
    COMPOSE_HASH_COMMITTED = "ComposeHashCommitted"
    FINALIZED = "Finalized"


@dataclass
class ResourceSizing:
    """CVM resource sizing."""

    vcpu: int = DEFAULT_VCPU
    memory_mb: int = DEFAULT_MEMORY_MB
    disk_size_gb: int = DEFAULT_DISK_SIZE_GB

    def __repr__(self) -> str:
        return f"ResourceSizing(vcpu={self.vcpu}, memory={self.memory_mb}MB, disk={self.disk_size_gb}GB)"


@dataclass
class DeploymentRequest:
    """Inputs for creating a new CVM."""

    compose_path: str
    env_file: Optional[str] = None
    direct_envs: List[str] = field(default_factory=list)
    name: Optional[str] = None
    vcpu: Optional[str] = None
    memory: Optional[str] = None
    disk_size: Optional[str] = None
    image: Optional[str] = None
    node_id: Optional[str] = None
    kms_id: Optional[str] = None
    custom_app_id: Optional[str] = None
    private_key: Optional[str] = None
    rpc_url: Optional[str] = None

    @property
    def uses_onchain_identity(self) -> bool:
        return self.kms_id is not None

    def __repr__(self) -> str:
        return f"DeploymentRequest(compose={self.compose_path}, kms={self.kms_id}, node={self.node_id})"


@dataclass
class UpgradeRequest:
    """Inputs for updating the compose file and secrets of an existing CVM."""

    cvm_id: str
    compose_path: str
    env_file: Optional[str] = None
    direct_envs: List[str] = field(default_factory=list)
    private_key: Optional[str] = None
    rpc_url: Optional[str] = None

    def __repr__(self) -> str:
        return f"UpgradeRequest(cvm={self.cvm_id}, compose={self.compose_path})"


@dataclass
class DeploymentSpec:
    """Everything submitted for one CVM creation."""

    name: str
    selection: ResourceSelection
    sizing: ResourceSizing
    compose_text: str
    allowed_envs: List[str] = field(default_factory=list)
    encrypted_env: Optional[str] = None

    @property
    def registry_id(self) -> Optional[str]:
        registry = self.selection.registry
        return registry.api_id if registry else None

    def attach_payload(self, encrypted_env: str) -> None:
        """Attach the encrypted secrets; a spec is encrypted at most once."""
        if self.encrypted_env is not None:
            raise CryptoError(
                "Secrets already encrypted for this deployment",
                context="Encrypted payloads are never reused or replaced",
            )
        self.encrypted_env = encrypted_env

    def compose_manifest(self) -> Dict[str, Any]:
        return {
            "docker_compose_file": self.compose_text,
            "allowed_envs": list(self.allowed_envs),
            "features": list(COMPOSE_FEATURES),
            "kms_enabled": True,
            "manifest_version": COMPOSE_MANIFEST_VERSION,
            "name": self.name,
            "public_logs": True,
            "public_sysinfo": True,
            "tproxy_enabled": True,
        }

    def to_vm_config(self) -> Dict[str, Any]:
        """Body for the pubkey and create-from-configuration calls."""
        return {
            "name": self.name,
            "image": self.selection.image.name,
            "teepod_id": _node_id_value(self.selection.node.id),
            "vcpu": self.sizing.vcpu,
            "memory": self.sizing.memory_mb,
            "disk_size": self.sizing.disk_size_gb,
            "compose_manifest": self.compose_manifest(),
            "listed": False,
        }

    def to_provision_request(self) -> Dict[str, Any]:
        """Body for the provision call used with on-chain KMS."""
        request: Dict[str, Any] = {
            "name": self.name,
            "compose_file": {
                "docker_compose_file": self.compose_text,
                "allowed_envs": list(self.allowed_envs),
            },
            "vcpu": self.sizing.vcpu,
            "memory": self.sizing.memory_mb,
            "disk_size": self.sizing.disk_size_gb,
            "node_id": _node_id_value(self.selection.node.id),
            "image": self.selection.image.name,
        }
        if self.registry_id:
            request["kms_id"] = self.registry_id
        return request

    def __repr__(self) -> str:
        return f"DeploymentSpec(name={self.name}, {self.selection!r}, encrypted={self.encrypted_env is not None})"


def _node_id_value(node_id: str) -> Any:
    return int(node_id) if node_id.isdigit() else node_id
