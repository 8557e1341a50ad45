"""
Cloud API Client

Typed client for the CVM Cloud API. One instance is built per invocation
and passed to the orchestrator.
"""

from typing import Any, Dict, List, Optional, Type, TypeVar

import pydantic
import requests

from cvmdeploy.constants import (
    API_AVAILABLE_NODES,
    API_COMMIT_PROVISION,
    API_COMPOSE_FILE,
    API_CREATE_FROM_CONFIG,
    API_CVM,
    API_KEY_HEADER,
    API_KMS_LIST,
    API_KMS_PUBKEY,
    API_PROVISION,
    API_PROVISION_COMPOSE_UPDATE,
    API_PUBKEY_FROM_CONFIG,
    DEFAULT_REQUEST_TIMEOUT,
    ERROR_MISSING_API_KEY,
    USER_AGENT,
)
from cvmdeploy.exceptions import ApiError, ValidationError
from cvmdeploy.models.api import (
    AvailableNodes,
    ComposeUpdateProvision,
    CreatedCvm,
    CvmInfo,
    KmsInfo,
    KmsList,
    KmsPubkey,
    ProvisionedCvm,
    PubkeyFromConfiguration,
)
from cvmdeploy.utils import compact_uuid

ModelT = TypeVar("ModelT", bound=pydantic.BaseModel)


class CloudApiClient:
    """
    Cloud API client.

    Every method maps transport failures, non-2xx responses and schema
    mismatches to ApiError tagged with the operation name.
    """

    def __init__(
        self,
        api_url: str,
        api_key: Optional[str],
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize client.

        Args:
            api_url: Base URL of the Cloud API
            api_key: API key sent as X-API-Key
            timeout: Per-request timeout in seconds
            session: Optional pre-built session

        Raises:
            ValidationError: If no API key is configured
        """
        if not api_key:
            raise ValidationError(ERROR_MISSING_API_KEY)

        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                API_KEY_HEADER: api_key,
                "Content-Type": "application/json",
                "User-Agent": USER_AGENT,
            }
        )

    @classmethod
    def from_settings(cls, settings) -> "CloudApiClient":
        return cls(settings.api_url, settings.api_key, timeout=settings.request_timeout)

    # Catalog

    def get_available_nodes(self) -> AvailableNodes:
        """List nodes (with images) and KMS instances available to the account."""
        return self._request("get_available_nodes", "GET", API_AVAILABLE_NODES, AvailableNodes)

    def get_kms_list(self) -> List[KmsInfo]:
        """List KMS instances."""
        data = self._request_json("get_kms_list", "GET", API_KMS_LIST)
        if isinstance(data, list):
            data = {"items": data}
        return self._validate("get_kms_list", KmsList, data).items

    # Standard KMS

    def get_pubkey_from_configuration(
        self, vm_config: Dict[str, Any]
    ) -> PubkeyFromConfiguration:
        """Fetch the env encryption public key bound to a VM configuration."""
        return self._request(
            "get_pubkey_from_configuration",
            "POST",
            API_PUBKEY_FROM_CONFIG,
            PubkeyFromConfiguration,
            json=vm_config,
        )

    def create_cvm_from_configuration(
        self,
        vm_config: Dict[str, Any],
        encrypted_env: str,
        app_env_encrypt_pubkey: str,
        app_id_salt: Optional[str] = None,
    ) -> CreatedCvm:
        """Create a CVM from a VM configuration and encrypted env payload."""
        body = dict(vm_config)
        body["encrypted_env"] = encrypted_env
        body["app_env_encrypt_pubkey"] = app_env_encrypt_pubkey
        if app_id_salt:
            body["app_id_salt"] = app_id_salt
        return self._request(
            "create_cvm_from_configuration",
            "POST",
            API_CREATE_FROM_CONFIG,
            CreatedCvm,
            json=body,
        )

    # On-chain KMS

    def provision_cvm(self, provision_request: Dict[str, Any]) -> ProvisionedCvm:
        """Provision a CVM; returns the compose hash to commit on chain."""
        return self._request(
            "provision_cvm",
            "POST",
            API_PROVISION,
            ProvisionedCvm,
            json=provision_request,
        )

    def get_kms_pubkey(self, kms_id: str, app_id: str) -> KmsPubkey:
        """Fetch the env encryption public key the KMS derives for an app."""
        path = API_KMS_PUBKEY.format(kms_id=kms_id, app_id=app_id)
        return self._request("get_kms_pubkey", "GET", path, KmsPubkey)

    def commit_cvm_provision(
        self,
        app_id: str,
        compose_hash: str,
        encrypted_env: str,
        kms_id: Optional[str] = None,
        contract_address: Optional[str] = None,
        deployer_address: Optional[str] = None,
    ) -> CreatedCvm:
        """Finalize a provisioned CVM."""
        body: Dict[str, Any] = {
            "app_id": app_id,
            "compose_hash": compose_hash,
            "encrypted_env": encrypted_env,
        }
        if kms_id:
            body["kms_id"] = kms_id
        if contract_address:
            body["contract_address"] = contract_address
        if deployer_address:
            body["deployer_address"] = deployer_address
        return self._request(
            "commit_cvm_provision", "POST", API_COMMIT_PROVISION, CreatedCvm, json=body
        )

    # Upgrades

    def get_cvm(self, cvm_id: str) -> CvmInfo:
        """Fetch a CVM, including its env public key and KMS info."""
        path = API_CVM.format(cvm_id=compact_uuid(cvm_id))
        return self._request("get_cvm", "GET", path, CvmInfo)

    def get_compose_file(self, cvm_id: str) -> Dict[str, Any]:
        """Fetch the current app compose of a CVM."""
        path = API_COMPOSE_FILE.format(cvm_id=compact_uuid(cvm_id))
        data = self._request_json("get_compose_file", "GET", path)
        if not isinstance(data, dict):
            raise ApiError("get_compose_file", "Expected a JSON object")
        return data

    def provision_compose_update(
        self, cvm_id: str, app_compose: Dict[str, Any]
    ) -> ComposeUpdateProvision:
        """Provision a compose file update; returns the new compose hash."""
        path = API_PROVISION_COMPOSE_UPDATE.format(cvm_id=compact_uuid(cvm_id))
        return self._request(
            "provision_compose_update",
            "POST",
            path,
            ComposeUpdateProvision,
            json=app_compose,
        )

    def commit_compose_update(
        self,
        cvm_id: str,
        compose_hash: str,
        encrypted_env: Optional[str],
        env_keys: List[str],
    ) -> None:
        """Apply a provisioned compose update."""
        body: Dict[str, Any] = {"compose_hash": compose_hash, "env_keys": env_keys}
        if encrypted_env:
            body["encrypted_env"] = encrypted_env
        path = API_COMPOSE_FILE.format(cvm_id=compact_uuid(cvm_id))
        self._request_json("commit_compose_update", "PATCH", path, json=body)

    # Transport

    def _request(
        self,
        operation: str,
        method: str,
        path: str,
        model: Type[ModelT],
        json: Optional[Dict[str, Any]] = None,
    ) -> ModelT:
        data = self._request_json(operation, method, path, json=json)
        return self._validate(operation, model, data)

    def _request_json(
        self,
        operation: str,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
    ) -> Any:
        url = f"{self.api_url}{path}"
        try:
            response = self.session.request(method, url, json=json, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise ApiError(operation, f"Request to {url} failed: {e}") from e

        if not response.ok:
            raise ApiError(
                operation,
                _error_detail(response),
                status_code=response.status_code,
            )

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise ApiError(operation, f"Response is not JSON: {e}") from e

    @staticmethod
    def _validate(operation: str, model: Type[ModelT], data: Any) -> ModelT:
        try:
            return model.model_validate(data)
        except pydantic.ValidationError as e:
            raise ApiError(operation, f"Unexpected response schema: {e}") from e


def _error_detail(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:500] or response.reason or "No response body"
    if isinstance(body, dict) and "detail" in body:
        return str(body["detail"])
    return str(body)[:500]
