"""
Shared fixtures: an X25519 key pair standing in for the CVM, a fake Cloud
API client and a fake blockchain registrar.
"""

import json
from typing import Any, Dict, List, Optional

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.x25519 import (
    X25519PrivateKey,
    X25519PublicKey,
)
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from cvmdeploy.core.config_loader import Settings
from cvmdeploy.models import AppIdentity, ComposeHashCommit
from cvmdeploy.models.api import (
    AvailableNodes,
    ComposeUpdateProvision,
    CreatedCvm,
    CvmInfo,
    KmsPubkey,
    ProvisionedCvm,
    PubkeyFromConfiguration,
)

KMS_CONTRACT = "0x" + "aa" * 20
DEPLOYER = "0x" + "bb" * 20
APP_ID = "0x" + "cc" * 20
CONTROLLER = "0x" + "dd" * 20
COMPOSE_HASH = "0x" + "11" * 32
DEVICE_ID = "0x" + "22" * 32
ZERO_ADDRESS = "0x" + "00" * 20


class CvmKeyPair:
    """Key pair of the remote CVM; decrypts payloads the way the CVM does."""

    def __init__(self):
        self.private_key = X25519PrivateKey.generate()
        self.public_hex = (
            self.private_key.public_key()
            .public_bytes(
                encoding=serialization.Encoding.Raw,
                format=serialization.PublicFormat.Raw,
            )
            .hex()
        )

    def decrypt(self, payload_hex: str) -> Dict[str, Any]:
        raw = bytes.fromhex(payload_hex)
        ephemeral = X25519PublicKey.from_public_bytes(raw[:32])
        shared = self.private_key.exchange(ephemeral)
        plaintext = AESGCM(shared).decrypt(raw[32:44], raw[44:], None)
        return json.loads(plaintext)


def catalog_payload() -> Dict[str, Any]:
    return {
        "tier": "free",
        "capacity": {"max_instances": 4},
        "nodes": [
            {
                "teepod_id": 1,
                "name": "node-standard",
                "region_identifier": "us-west",
                "images": [{"name": "dstack-0.3.5"}, {"name": "dstack-dev-0.3.5"}],
                "support_onchain_kms": False,
            },
            {
                "teepod_id": 2,
                "name": "node-onchain",
                "region_identifier": "eu-central",
                "images": [{"name": "dstack-0.5.0"}],
                "support_onchain_kms": True,
                "device_id": DEVICE_ID,
            },
        ],
        "kms_list": [
            {
                "id": "kms-1",
                "slug": "base-prod",
                "chain_id": 8453,
                "kms_contract_address": KMS_CONTRACT,
                "gateway_app_id": "0x" + "ee" * 20,
            }
        ],
    }


class FakeCloudClient:
    """Records every Cloud API call and answers with canned responses."""

    def __init__(self, keypair: CvmKeyPair, catalog: Optional[Dict[str, Any]] = None):
        self.keypair = keypair
        self.catalog = AvailableNodes.model_validate(catalog or catalog_payload())
        self.calls: List[str] = []
        self.bodies: Dict[str, Any] = {}
        self.cvm_info = CvmInfo(
            name="existing",
            status="running",
            app_id=APP_ID,
            vm_uuid="aaaa-bbbb",
            encrypted_env_pubkey=keypair.public_hex,
        )
        self.compose_file = {"docker_compose_file": "old", "name": "existing"}

    def _record(self, name: str, body: Any = None) -> None:
        self.calls.append(name)
        self.bodies[name] = body

    def count(self, name: str) -> int:
        return self.calls.count(name)

    def get_available_nodes(self):
        self._record("get_available_nodes")
        return self.catalog

    def get_kms_list(self):
        self._record("get_kms_list")
        return self.catalog.kms_list

    def get_pubkey_from_configuration(self, vm_config):
        self._record("get_pubkey_from_configuration", vm_config)
        return PubkeyFromConfiguration(
            app_env_encrypt_pubkey=self.keypair.public_hex, app_id_salt="salt"
        )

    def create_cvm_from_configuration(
        self, vm_config, encrypted_env, app_env_encrypt_pubkey, app_id_salt=None
    ):
        self._record(
            "create_cvm_from_configuration",
            {"vm_config": vm_config, "encrypted_env": encrypted_env},
        )
        return CreatedCvm(
            id=7,
            name=vm_config["name"],
            status="creating",
            app_id="app-standard",
            vm_uuid="1234-5678-90ab",
        )

    def provision_cvm(self, provision_request):
        self._record("provision_cvm", provision_request)
        return ProvisionedCvm(compose_hash=COMPOSE_HASH, device_id=DEVICE_ID)

    def get_kms_pubkey(self, kms_id, app_id):
        self._record("get_kms_pubkey", {"kms_id": kms_id, "app_id": app_id})
        return KmsPubkey(public_key=self.keypair.public_hex, signature="0xsig")

    def commit_cvm_provision(self, **kwargs):
        self._record("commit_cvm_provision", kwargs)
        return CreatedCvm(
            id=8,
            name="onchain-app",
            status="creating",
            app_id=kwargs["app_id"],
            vm_uuid="cafe-babe",
        )

    def get_cvm(self, cvm_id):
        self._record("get_cvm", cvm_id)
        return self.cvm_info

    def get_compose_file(self, cvm_id):
        self._record("get_compose_file", cvm_id)
        return dict(self.compose_file)

    def provision_compose_update(self, cvm_id, app_compose):
        self._record("provision_compose_update", app_compose)
        return ComposeUpdateProvision(compose_hash=COMPOSE_HASH)

    def commit_compose_update(self, cvm_id, compose_hash, encrypted_env, env_keys):
        self._record(
            "commit_compose_update",
            {
                "compose_hash": compose_hash,
                "encrypted_env": encrypted_env,
                "env_keys": env_keys,
            },
        )


class FakeRegistrar:
    """Blockchain registrar double with a configurable registration record."""

    def __init__(self, registration=(True, CONTROLLER)):
        self.address = DEPLOYER
        self.registration = registration
        self.lookups: List[tuple] = []
        self.deployments: List[tuple] = []
        self.commits: List[tuple] = []
        self.commit_error: Optional[Exception] = None

    def is_registered(self, registry_address, identity_address):
        self.lookups.append((registry_address, identity_address))
        return self.registration

    def deploy_and_register_default(
        self, registry_address, deployer_address, device_id, compose_hash
    ):
        self.deployments.append(
            (registry_address, deployer_address, device_id, compose_hash)
        )
        return AppIdentity(
            app_id=APP_ID,
            controller_address=CONTROLLER,
            deployer_address=deployer_address,
            transaction_hash="0x" + "01" * 32,
        )

    def commit_compose_hash(self, identity_address, compose_hash, min_balance="0.01"):
        if self.commit_error is not None:
            raise self.commit_error
        self.commits.append((identity_address, compose_hash))
        return ComposeHashCommit(
            identity_address=identity_address,
            compose_hash=compose_hash,
            transaction_hash="0x" + "02" * 32,
        )


@pytest.fixture
def keypair():
    return CvmKeyPair()


@pytest.fixture
def cloud_client(keypair):
    return FakeCloudClient(keypair)


@pytest.fixture
def registrar():
    return FakeRegistrar()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        api_key="test-key",
        cloud_url="https://cloud.example",
        config_dir=tmp_path / "config",
    )


@pytest.fixture
def compose_file(tmp_path):
    path = tmp_path / "docker-compose.yml"
    path.write_text("services: {}")
    return path


@pytest.fixture
def write_env(tmp_path):
    def _write(content: str, name: str = ".env"):
        path = tmp_path / name
        path.write_text(content, encoding="utf-8")
        return path

    return _write
