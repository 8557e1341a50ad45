"""
Resource Resolver

Selects the node, OS image and optional identity registry a CVM is
deployed to. Pure selection logic over catalog data.
"""

from typing import List, Optional

from cvmdeploy.exceptions import NoResourceError, NotFoundError
from cvmdeploy.models.resources import (
    IdentityRegistryDescriptor,
    ImageDescriptor,
    NodeDescriptor,
    ResourceSelection,
)


class ResourceResolver:
    """
    Resolve deployment targets from the available-nodes catalog.

    Nodes are filtered by on-chain identity support, which must match
    whether a registry was requested.
    """

    def __init__(
        self,
        nodes: List[NodeDescriptor],
        registries: Optional[List[IdentityRegistryDescriptor]] = None,
    ):
        self.nodes = list(nodes)
        self.registries = list(registries or [])

    def resolve(
        self,
        node_id: Optional[str] = None,
        image_name: Optional[str] = None,
        registry_id: Optional[str] = None,
    ) -> ResourceSelection:
        """
        Resolve node, image and registry.

        Args:
            node_id: Requested node id (first matching node if omitted)
            image_name: Requested image name (first image if omitted)
            registry_id: Registry id or slug; selects on-chain capable nodes

        Returns:
            ResourceSelection

        Raises:
            NoResourceError: If no node or image is available
            NotFoundError: If a requested node, image or registry is absent
        """
        onchain = registry_id is not None
        node = self.select_node(node_id, onchain)
        image = self.select_image(node, image_name)
        registry = self.find_registry(registry_id) if onchain else None
        return ResourceSelection(node=node, image=image, registry=registry)

    def candidate_nodes(self, onchain: bool) -> List[NodeDescriptor]:
        return [n for n in self.nodes if n.supports_onchain_identity == onchain]

    def select_node(self, node_id: Optional[str], onchain: bool) -> NodeDescriptor:
        candidates = self.candidate_nodes(onchain)
        if not candidates:
            kind = "on-chain KMS" if onchain else "standard KMS"
            raise NoResourceError(
                f"No available nodes support {kind}",
                context=f"{len(self.nodes)} node(s) listed in total",
            )

        if node_id is None:
            return candidates[0]

        for node in candidates:
            if node.id == str(node_id):
                return node
        raise NotFoundError("Node", str(node_id), [n.id for n in candidates])

    def select_image(
        self, node: NodeDescriptor, image_name: Optional[str]
    ) -> ImageDescriptor:
        if not node.images:
            raise NoResourceError(f"No OS images available on node '{node.name}'")

        if image_name is None:
            return node.images[0]

        for image in node.images:
            if image.name == image_name:
                return image
        raise NotFoundError("Image", image_name, node.image_names)

    def find_registry(self, registry_id: str) -> IdentityRegistryDescriptor:
        for registry in self.registries:
            if str(registry_id) in registry.identifiers:
                return registry
        raise NotFoundError(
            "KMS",
            str(registry_id),
            [registry.api_id for registry in self.registries],
        )
