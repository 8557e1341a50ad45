"""
cvmdeploy Services

Cloud API client, blockchain registrar and deployment orchestrator.
"""

from .cloud_api import CloudApiClient
from .blockchain import BlockchainRegistrar
from .deployment_orchestrator import DeploymentOrchestrator, PhaseTracker

__all__ = [
    "CloudApiClient",
    "BlockchainRegistrar",
    "DeploymentOrchestrator",
    "PhaseTracker",
]
