"""
Resource Models

Dataclass models for execution nodes, OS images and identity registries.
"""

from dataclasses import dataclass, field
from typing import List, Optional


@dataclass
class ImageDescriptor:
    """OS image available on a node."""

    name: str
    description: str = ""
    version: List[int] = field(default_factory=list)
    is_dev: bool = False


@dataclass
class NodeDescriptor:
    """Execution node (TEE pod) that can host a CVM."""

    id: str
    name: str
    region: str = ""
    images: List[ImageDescriptor] = field(default_factory=list)
    supports_onchain_identity: bool = False
    device_id: Optional[str] = None

    @property
    def image_names(self) -> List[str]:
        return [image.name for image in self.images]

    def __repr__(self) -> str:
        return f"NodeDescriptor(id={self.id}, name={self.name}, images={len(self.images)})"


@dataclass
class IdentityRegistryDescriptor:
    """On-chain KMS instance that tracks app identities."""

    id: str
    slug: str
    chain_id: Optional[int]
    contract_address: str
    gateway_app_id: str = ""
    url: Optional[str] = None

    @property
    def identifiers(self) -> List[str]:
        return [value for value in (self.id, self.slug) if value]

    @property
    def api_id(self) -> str:
        """Identifier the Cloud API expects in paths and bodies."""
        return self.slug or self.id


@dataclass
class ResourceSelection:
    """Outcome of resource resolution."""

    node: NodeDescriptor
    image: ImageDescriptor
    registry: Optional[IdentityRegistryDescriptor] = None

    @property
    def uses_onchain_identity(self) -> bool:
        return self.registry is not None

    def __repr__(self) -> str:
        registry = self.registry.api_id if self.registry else None
        return f"ResourceSelection(node={self.node.id}, image={self.image.name}, registry={registry})"
