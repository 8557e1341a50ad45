"""
Cloud API Schemas

Pydantic models for Cloud API responses, validated at the client boundary.
Unknown fields are kept so newer API versions do not break validation.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from cvmdeploy.models.resources import (
    IdentityRegistryDescriptor,
    ImageDescriptor,
    NodeDescriptor,
)


class ApiModel(BaseModel):
    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)


class Image(ApiModel):
    name: str
    description: Optional[str] = None
    version: Optional[List[int]] = None
    is_dev: Optional[bool] = None

    def to_descriptor(self) -> ImageDescriptor:
        return ImageDescriptor(
            name=self.name,
            description=self.description or "",
            version=list(self.version or []),
            is_dev=bool(self.is_dev),
        )


class Teepod(ApiModel):
    teepod_id: int
    name: str
    region_identifier: Optional[str] = None
    images: List[Image] = Field(default_factory=list)
    support_onchain_kms: bool = False
    device_id: Optional[str] = None

    def to_descriptor(self) -> NodeDescriptor:
        return NodeDescriptor(
            id=str(self.teepod_id),
            name=self.name,
            region=self.region_identifier or "",
            images=[image.to_descriptor() for image in self.images],
            supports_onchain_identity=self.support_onchain_kms,
            device_id=self.device_id,
        )


class KmsInfo(ApiModel):
    id: str
    slug: Optional[str] = None
    url: Optional[str] = None
    version: Optional[str] = None
    chain_id: Optional[int] = None
    kms_contract_address: Optional[str] = None
    gateway_app_id: Optional[str] = None

    def to_descriptor(self) -> IdentityRegistryDescriptor:
        return IdentityRegistryDescriptor(
            id=self.id,
            slug=self.slug or "",
            chain_id=self.chain_id,
            contract_address=self.kms_contract_address or "",
            gateway_app_id=self.gateway_app_id or "",
            url=self.url,
        )


class AvailableNodes(ApiModel):
    tier: Optional[str] = None
    capacity: Optional[Dict[str, Any]] = None
    nodes: List[Teepod] = Field(default_factory=list)
    kms_list: List[KmsInfo] = Field(default_factory=list)


class KmsList(ApiModel):
    items: List[KmsInfo] = Field(default_factory=list)


class PubkeyFromConfiguration(ApiModel):
    app_env_encrypt_pubkey: str
    app_id_salt: Optional[str] = None


class KmsPubkey(ApiModel):
    public_key: str
    signature: Optional[str] = None


class CreatedCvm(ApiModel):
    """Deployment record returned by create and commit calls."""

    id: Optional[int] = None
    name: str = ""
    status: str = ""
    app_id: Optional[str] = None
    vm_uuid: Optional[str] = None
    app_url: Optional[str] = None
    encrypted_env_pubkey: Optional[str] = None


class ProvisionedCvm(ApiModel):
    compose_hash: str
    app_id: Optional[str] = None
    app_env_encrypt_pubkey: Optional[str] = None
    device_id: Optional[str] = None
    kms_id: Optional[str] = None
    os_image_hash: Optional[str] = None


class CvmKmsInfo(ApiModel):
    chain_id: Optional[int] = None
    kms_contract_address: Optional[str] = None
    url: Optional[str] = None
    slug: Optional[str] = None


class CvmInfo(ApiModel):
    name: str = ""
    status: str = ""
    app_id: Optional[str] = None
    vm_uuid: Optional[str] = None
    encrypted_env_pubkey: Optional[str] = None
    kms_info: Optional[CvmKmsInfo] = None

    @property
    def onchain_chain_id(self) -> Optional[int]:
        return self.kms_info.chain_id if self.kms_info else None


class ComposeUpdateProvision(ApiModel):
    compose_hash: str
