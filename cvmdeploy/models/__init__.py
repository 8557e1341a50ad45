"""
cvmdeploy Domain Models

Dataclass models for type-safe data handling.
"""

from .secrets import EnvVar, env_keys
from .resources import (
    ImageDescriptor,
    NodeDescriptor,
    IdentityRegistryDescriptor,
    ResourceSelection,
)
from .deployment import (
    DeploymentPhase,
    ResourceSizing,
    DeploymentRequest,
    UpgradeRequest,
    DeploymentSpec,
)
from .results import (
    AppIdentity,
    ComposeHashCommit,
    DeploymentResult,
)

__all__ = [
    # Secrets
    "EnvVar",
    "env_keys",
    # Resources
    "ImageDescriptor",
    "NodeDescriptor",
    "IdentityRegistryDescriptor",
    "ResourceSelection",
    # Deployment
    "DeploymentPhase",
    "ResourceSizing",
    "DeploymentRequest",
    "UpgradeRequest",
    "DeploymentSpec",
    # Results
    "AppIdentity",
    "ComposeHashCommit",
    "DeploymentResult",
]
