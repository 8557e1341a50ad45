"""
Tests for DeploymentOrchestrator deploy and upgrade flows.
"""

from unittest.mock import MagicMock

import pytest
from web3 import Web3

from cvmdeploy.exceptions import (
    ApiError,
    ChainError,
    CryptoError,
    NotFoundError,
    ParseError,
    UnregisteredIdentityError,
    ValidationError,
)
from cvmdeploy.models import (
    DeploymentPhase,
    DeploymentRequest,
    DeploymentSpec,
    ImageDescriptor,
    NodeDescriptor,
    ResourceSelection,
    ResourceSizing,
    UpgradeRequest,
)
from cvmdeploy.models.api import CreatedCvm, CvmKmsInfo, ProvisionedCvm
from cvmdeploy.services.deployment_orchestrator import DeploymentOrchestrator, PhaseTracker

from .conftest import (
    APP_ID,
    COMPOSE_HASH,
    CONTROLLER,
    DEPLOYER,
    DEVICE_ID,
    KMS_CONTRACT,
    ZERO_ADDRESS,
    FakeCloudClient,
    FakeRegistrar,
    catalog_payload,
)

PRIVATE_KEY = "0x" + "01" * 32


@pytest.fixture
def factory_calls():
    return []


@pytest.fixture
def orchestrator(cloud_client, settings, registrar, tmp_path, factory_calls):
    def factory(rpc_url, private_key):
        factory_calls.append((rpc_url, private_key))
        return registrar

    return DeploymentOrchestrator(
        cloud_client, settings=settings, registrar_factory=factory, cwd=tmp_path
    )


@pytest.fixture
def env_file(write_env):
    return write_env("TOKEN=abc123\n# comment\nEMPTY=\n")


class TestStandardDeploy:
    """Test suite for deployments with the standard KMS"""

    def test_end_to_end(self, orchestrator, cloud_client, keypair, compose_file, env_file):
        result = orchestrator.deploy(
            DeploymentRequest(
                compose_path=str(compose_file), env_file=str(env_file), name="demo"
            )
        )

        assert cloud_client.calls == [
            "get_available_nodes",
            "get_pubkey_from_configuration",
            "create_cvm_from_configuration",
        ]
        body = cloud_client.bodies["create_cvm_from_configuration"]
        assert keypair.decrypt(body["encrypted_env"]) == {
            "env": [
                {"key": "TOKEN", "value": "abc123"},
                {"key": "EMPTY", "value": ""},
            ]
        }
        vm_config = body["vm_config"]
        assert vm_config["teepod_id"] == 1
        assert vm_config["image"] == "dstack-0.3.5"
        assert vm_config["compose_manifest"]["docker_compose_file"] == "services: {}"
        assert vm_config["compose_manifest"]["allowed_envs"] == ["TOKEN", "EMPTY"]

        assert result.deployment_id == "1234567890ab"
        assert result.app_id == "app-standard"
        assert result.endpoint == "https://cloud.example/dashboard/cvms/1234567890ab"
        assert result.compose_hash is None
        assert result.commit is None
        assert result.identity is None
        assert result.env_keys == ["TOKEN", "EMPTY"]

    def test_sizing_and_default_name(self, orchestrator, cloud_client, compose_file, tmp_path):
        orchestrator.deploy(
            DeploymentRequest(
                compose_path=str(compose_file), vcpu="4", memory="8G", disk_size="100"
            )
        )

        vm_config = cloud_client.bodies["get_pubkey_from_configuration"]
        assert (vm_config["vcpu"], vm_config["memory"], vm_config["disk_size"]) == (4, 8192, 100)
        assert vm_config["name"] == tmp_path.name.lower()[:20]

    def test_no_secrets_sends_empty_payload(self, orchestrator, cloud_client, compose_file):
        orchestrator.deploy(DeploymentRequest(compose_path=str(compose_file), name="demo"))

        assert cloud_client.bodies["create_cvm_from_configuration"]["encrypted_env"] == ""

    def test_endpoint_prefers_app_url(self, orchestrator, cloud_client, compose_file):
        cloud_client.create_cvm_from_configuration = MagicMock(
            return_value=CreatedCvm(
                id=7, name="demo", vm_uuid="1234-5678", app_url="https://demo.apps.example"
            )
        )

        result = orchestrator.deploy(DeploymentRequest(compose_path=str(compose_file), name="demo"))

        assert result.deployment_id == "12345678"
        assert result.endpoint == "https://demo.apps.example"

    def test_missing_compose_file(self, orchestrator, cloud_client, tmp_path):
        with pytest.raises(ParseError) as exc_info:
            orchestrator.deploy(DeploymentRequest(compose_path=str(tmp_path / "nope.yml")))

        assert exc_info.value.phase == "Start"
        assert exc_info.value.completed_phases == []
        assert cloud_client.calls == []

    def test_invalid_memory(self, orchestrator, compose_file):
        with pytest.raises(ValidationError) as exc_info:
            orchestrator.deploy(
                DeploymentRequest(compose_path=str(compose_file), memory="1000")
            )

        assert exc_info.value.phase == "Start"

    def test_unknown_node(self, orchestrator, cloud_client, compose_file):
        with pytest.raises(NotFoundError) as exc_info:
            orchestrator.deploy(DeploymentRequest(compose_path=str(compose_file), node_id="99"))

        assert exc_info.value.phase == "ResourcesResolved"
        assert exc_info.value.completed_phases == ["Start"]
        assert cloud_client.count("get_pubkey_from_configuration") == 0

    def test_custom_app_id_requires_kms(self, orchestrator, compose_file):
        with pytest.raises(ValidationError):
            orchestrator.deploy(
                DeploymentRequest(compose_path=str(compose_file), custom_app_id=APP_ID)
            )

    def test_bad_remote_key(self, orchestrator, cloud_client, keypair, compose_file, env_file):
        keypair.public_hex = "00" * 31

        with pytest.raises(CryptoError) as exc_info:
            orchestrator.deploy(
                DeploymentRequest(compose_path=str(compose_file), env_file=str(env_file))
            )

        assert exc_info.value.phase == "SecretsEncrypted"
        assert cloud_client.count("create_cvm_from_configuration") == 0

    def test_create_failure_reports_phase(self, orchestrator, cloud_client, compose_file):
        cloud_client.create_cvm_from_configuration = MagicMock(
            side_effect=ApiError("create_cvm_from_configuration", "boom", status_code=500)
        )

        with pytest.raises(ApiError) as exc_info:
            orchestrator.deploy(DeploymentRequest(compose_path=str(compose_file), name="demo"))

        assert exc_info.value.phase == "Submitted"
        assert exc_info.value.completed_phases == [
            "Start",
            "ResourcesResolved",
            "SecretsParsed",
            "RemotePubkeyFetched",
            "SecretsEncrypted",
        ]


class TestOnchainDeploy:
    """Test suite for deployments with an on-chain KMS"""

    def test_default_identity_flow(
        self, orchestrator, cloud_client, registrar, keypair, compose_file, env_file, factory_calls
    ):
        result = orchestrator.deploy(
            DeploymentRequest(
                compose_path=str(compose_file),
                env_file=str(env_file),
                name="chain-app",
                kms_id="base-prod",
                private_key=PRIVATE_KEY,
            )
        )

        assert factory_calls == [("https://mainnet.base.org", PRIVATE_KEY)]
        assert cloud_client.calls == [
            "get_available_nodes",
            "provision_cvm",
            "get_kms_pubkey",
            "commit_cvm_provision",
        ]
        provision = cloud_client.bodies["provision_cvm"]
        assert provision["node_id"] == 2
        assert provision["kms_id"] == "base-prod"
        assert provision["compose_file"]["allowed_envs"] == ["TOKEN", "EMPTY"]

        assert registrar.deployments == [(KMS_CONTRACT, DEPLOYER, DEVICE_ID, COMPOSE_HASH)]
        assert registrar.commits == [(APP_ID, COMPOSE_HASH)]
        assert cloud_client.bodies["get_kms_pubkey"] == {"kms_id": "base-prod", "app_id": APP_ID}

        commit_body = cloud_client.bodies["commit_cvm_provision"]
        assert commit_body["app_id"] == APP_ID
        assert commit_body["contract_address"] == CONTROLLER
        assert commit_body["deployer_address"] == DEPLOYER
        assert keypair.decrypt(commit_body["encrypted_env"])["env"][0] == {
            "key": "TOKEN",
            "value": "abc123",
        }

        assert result.deployment_id == "cafebabe"
        assert result.compose_hash == COMPOSE_HASH
        assert result.identity.app_id == APP_ID
        assert result.commit.transaction_hash == "0x" + "02" * 32

    def test_custom_identity_registered(self, orchestrator, cloud_client, registrar, compose_file):
        orchestrator.deploy(
            DeploymentRequest(
                compose_path=str(compose_file),
                kms_id="kms-1",
                custom_app_id=APP_ID,
                private_key=PRIVATE_KEY,
            )
        )

        checksummed = Web3.to_checksum_address(APP_ID)
        assert registrar.lookups == [(KMS_CONTRACT, checksummed)]
        assert registrar.deployments == []
        assert registrar.commits == [(checksummed, COMPOSE_HASH)]
        assert cloud_client.bodies["commit_cvm_provision"]["contract_address"] == CONTROLLER

    def test_custom_identity_unregistered_stops_before_submission(
        self, cloud_client, settings, compose_file, env_file
    ):
        registrar = FakeRegistrar(registration=(False, ZERO_ADDRESS))
        orchestrator = DeploymentOrchestrator(
            cloud_client, settings=settings, registrar_factory=lambda rpc, key: registrar
        )

        with pytest.raises(UnregisteredIdentityError) as exc_info:
            orchestrator.deploy(
                DeploymentRequest(
                    compose_path=str(compose_file),
                    env_file=str(env_file),
                    name="chain-app",
                    kms_id="base-prod",
                    custom_app_id=APP_ID,
                    private_key=PRIVATE_KEY,
                )
            )

        assert exc_info.value.phase == "IdentityEstablished"
        assert "SecretsParsed" in exc_info.value.completed_phases
        assert cloud_client.count("provision_cvm") == 0
        assert cloud_client.count("create_cvm_from_configuration") == 0
        assert cloud_client.count("commit_cvm_provision") == 0
        assert registrar.commits == []

    def test_registered_with_zero_controller_is_rejected(
        self, cloud_client, settings, compose_file
    ):
        registrar = FakeRegistrar(registration=(True, ZERO_ADDRESS))
        orchestrator = DeploymentOrchestrator(
            cloud_client, settings=settings, registrar_factory=lambda rpc, key: registrar
        )

        with pytest.raises(UnregisteredIdentityError):
            orchestrator.deploy(
                DeploymentRequest(
                    compose_path=str(compose_file),
                    name="chain-app",
                    kms_id="base-prod",
                    custom_app_id=APP_ID,
                    private_key=PRIVATE_KEY,
                )
            )

    def test_private_key_required(self, orchestrator, cloud_client, compose_file, factory_calls):
        with pytest.raises(ValidationError) as exc_info:
            orchestrator.deploy(
                DeploymentRequest(compose_path=str(compose_file), kms_id="base-prod")
            )

        assert exc_info.value.phase == "ResourcesResolved"
        assert cloud_client.calls == ["get_available_nodes"]
        assert factory_calls == []

    def test_private_key_from_settings(self, orchestrator, settings, compose_file, factory_calls):
        settings.private_key = PRIVATE_KEY

        orchestrator.deploy(
            DeploymentRequest(compose_path=str(compose_file), name="x-app", kms_id="base-prod")
        )

        assert factory_calls[0][1] == PRIVATE_KEY

    def test_rpc_override(self, orchestrator, compose_file, factory_calls):
        orchestrator.deploy(
            DeploymentRequest(
                compose_path=str(compose_file),
                name="x-app",
                kms_id="base-prod",
                private_key=PRIVATE_KEY,
                rpc_url="http://localhost:8545",
            )
        )

        assert factory_calls[0][0] == "http://localhost:8545"

    def test_commit_failure_reports_partial_state(self, orchestrator, registrar, compose_file):
        registrar.commit_error = ChainError("Transaction addComposeHash reverted")

        with pytest.raises(ChainError) as exc_info:
            orchestrator.deploy(
                DeploymentRequest(
                    compose_path=str(compose_file),
                    name="x-app",
                    kms_id="base-prod",
                    private_key=PRIVATE_KEY,
                )
            )

        error = exc_info.value
        assert error.phase == "ComposeHashCommitted"
        assert error.partial["compose_hash"] == COMPOSE_HASH
        assert error.partial["app_id"] == APP_ID
        assert error.completed_phases[-1] == "IdentityEstablished"
        assert error.to_dict()["partial"]["app_id"] == APP_ID


@pytest.fixture
def chainless_client(keypair):
    catalog = catalog_payload()
    catalog["kms_list"].append({"id": "kms-nochain", "chain_id": None})
    client = FakeCloudClient(keypair, catalog)
    client.provisioned = ProvisionedCvm(
        compose_hash=COMPOSE_HASH,
        app_id="app-nochain",
        app_env_encrypt_pubkey=keypair.public_hex,
    )

    def provision_cvm(provision_request):
        client._record("provision_cvm", provision_request)
        return client.provisioned

    client.provision_cvm = provision_cvm
    return client


class TestChainlessKmsDeploy:
    """Test suite for a KMS that is not bound to a chain"""

    def _orchestrator(self, client, settings, factory_calls):
        def factory(rpc_url, private_key):
            factory_calls.append((rpc_url, private_key))
            return FakeRegistrar()

        return DeploymentOrchestrator(client, settings=settings, registrar_factory=factory)

    def test_deploys_without_chain_step(
        self, chainless_client, settings, keypair, compose_file, env_file, factory_calls
    ):
        orchestrator = self._orchestrator(chainless_client, settings, factory_calls)

        result = orchestrator.deploy(
            DeploymentRequest(
                compose_path=str(compose_file),
                env_file=str(env_file),
                name="plain-kms",
                kms_id="kms-nochain",
                private_key=PRIVATE_KEY,
            )
        )

        assert factory_calls == []
        assert chainless_client.calls == [
            "get_available_nodes",
            "provision_cvm",
            "commit_cvm_provision",
        ]
        assert chainless_client.bodies["provision_cvm"]["kms_id"] == "kms-nochain"

        commit_body = chainless_client.bodies["commit_cvm_provision"]
        assert commit_body["app_id"] == "app-nochain"
        assert commit_body["compose_hash"] == COMPOSE_HASH
        assert commit_body["kms_id"] == "kms-nochain"
        assert "contract_address" not in commit_body
        assert keypair.decrypt(commit_body["encrypted_env"])["env"][0] == {
            "key": "TOKEN",
            "value": "abc123",
        }

        assert result.deployment_id == "cafebabe"
        assert result.app_id == "app-nochain"
        assert result.compose_hash == COMPOSE_HASH
        assert result.identity is None
        assert result.commit is None

    def test_no_private_key_needed(self, chainless_client, settings, compose_file, factory_calls):
        orchestrator = self._orchestrator(chainless_client, settings, factory_calls)

        result = orchestrator.deploy(
            DeploymentRequest(compose_path=str(compose_file), name="x-app", kms_id="kms-nochain")
        )

        assert result.app_id == "app-nochain"
        assert factory_calls == []

    def test_falls_back_to_kms_pubkey(
        self, chainless_client, settings, keypair, compose_file, env_file, factory_calls
    ):
        chainless_client.provisioned = ProvisionedCvm(
            compose_hash=COMPOSE_HASH, app_id="app-nochain"
        )
        orchestrator = self._orchestrator(chainless_client, settings, factory_calls)

        orchestrator.deploy(
            DeploymentRequest(
                compose_path=str(compose_file),
                env_file=str(env_file),
                name="x-app",
                kms_id="kms-nochain",
            )
        )

        assert chainless_client.bodies["get_kms_pubkey"] == {
            "kms_id": "kms-nochain",
            "app_id": "app-nochain",
        }
        payload = chainless_client.bodies["commit_cvm_provision"]["encrypted_env"]
        assert keypair.decrypt(payload)["env"][0]["key"] == "TOKEN"

    def test_missing_app_id_reports_submission(
        self, chainless_client, settings, compose_file, factory_calls
    ):
        chainless_client.provisioned = ProvisionedCvm(compose_hash=COMPOSE_HASH)
        orchestrator = self._orchestrator(chainless_client, settings, factory_calls)

        with pytest.raises(ApiError) as exc_info:
            orchestrator.deploy(
                DeploymentRequest(compose_path=str(compose_file), name="x-app", kms_id="kms-nochain")
            )

        assert exc_info.value.phase == "Submitted"
        assert exc_info.value.partial == {"compose_hash": COMPOSE_HASH}
        assert chainless_client.count("commit_cvm_provision") == 0

    def test_custom_app_id_rejected(self, chainless_client, settings, compose_file, factory_calls):
        orchestrator = self._orchestrator(chainless_client, settings, factory_calls)

        with pytest.raises(ValidationError) as exc_info:
            orchestrator.deploy(
                DeploymentRequest(
                    compose_path=str(compose_file),
                    kms_id="kms-nochain",
                    custom_app_id=APP_ID,
                )
            )

        assert exc_info.value.phase == "ResourcesResolved"
        assert chainless_client.calls == ["get_available_nodes"]


class TestUpgrade:
    """Test suite for DeploymentOrchestrator.upgrade"""

    def test_standard_upgrade(
        self, orchestrator, cloud_client, keypair, compose_file, env_file, factory_calls
    ):
        result = orchestrator.upgrade(
            UpgradeRequest(
                cvm_id="aaaa-bbbb", compose_path=str(compose_file), env_file=str(env_file)
            )
        )

        assert cloud_client.calls == [
            "get_cvm",
            "get_compose_file",
            "provision_compose_update",
            "commit_compose_update",
        ]
        assert cloud_client.bodies["get_cvm"] == "aaaabbbb"
        compose = cloud_client.bodies["provision_compose_update"]
        assert compose["docker_compose_file"] == "services: {}"
        assert compose["allowed_envs"] == ["TOKEN", "EMPTY"]
        assert compose["name"] == "existing"

        commit = cloud_client.bodies["commit_compose_update"]
        assert commit["compose_hash"] == COMPOSE_HASH
        assert commit["env_keys"] == ["TOKEN", "EMPTY"]
        assert keypair.decrypt(commit["encrypted_env"])["env"][1] == {"key": "EMPTY", "value": ""}

        assert factory_calls == []
        assert result.status == "updated"
        assert result.deployment_id == "aaaabbbb"
        assert result.commit is None

    def test_upgrade_without_secrets(self, orchestrator, cloud_client, compose_file):
        cloud_client.cvm_info.encrypted_env_pubkey = None

        orchestrator.upgrade(UpgradeRequest(cvm_id="abc", compose_path=str(compose_file)))

        assert cloud_client.bodies["commit_compose_update"]["encrypted_env"] is None

    def test_upgrade_secrets_without_pubkey(self, orchestrator, cloud_client, compose_file, env_file):
        cloud_client.cvm_info.encrypted_env_pubkey = None

        with pytest.raises(CryptoError) as exc_info:
            orchestrator.upgrade(
                UpgradeRequest(cvm_id="abc", compose_path=str(compose_file), env_file=str(env_file))
            )

        assert exc_info.value.phase == "SecretsEncrypted"
        assert cloud_client.count("commit_compose_update") == 0

    def test_onchain_upgrade_commits_hash(
        self, orchestrator, cloud_client, registrar, compose_file, factory_calls
    ):
        cloud_client.cvm_info.kms_info = CvmKmsInfo(chain_id=8453)

        result = orchestrator.upgrade(
            UpgradeRequest(cvm_id="abc", compose_path=str(compose_file), private_key=PRIVATE_KEY)
        )

        assert factory_calls == [("https://mainnet.base.org", PRIVATE_KEY)]
        assert registrar.commits == [(Web3.to_checksum_address(APP_ID), COMPOSE_HASH)]
        assert result.commit is not None

    def test_onchain_upgrade_requires_private_key(self, orchestrator, cloud_client, compose_file):
        cloud_client.cvm_info.kms_info = CvmKmsInfo(chain_id=8453)

        with pytest.raises(ValidationError) as exc_info:
            orchestrator.upgrade(UpgradeRequest(cvm_id="abc", compose_path=str(compose_file)))

        assert exc_info.value.phase == "RemotePubkeyFetched"
        assert cloud_client.count("provision_compose_update") == 0


class TestPhaseTracker:
    """Test suite for PhaseTracker"""

    def test_tags_error_once(self):
        tracker = PhaseTracker()

        with pytest.raises(ValidationError) as exc_info:
            with tracker.phase(DeploymentPhase.START, "outer"):
                with tracker.phase(DeploymentPhase.SUBMITTED, "inner"):
                    raise ValidationError("bad")

        assert exc_info.value.phase == "Submitted"

    def test_records_completed_and_ignores_none(self):
        tracker = PhaseTracker()

        with tracker.phase(DeploymentPhase.START, "start"):
            tracker.record("app_id", "abc")
            tracker.record("vm_uuid", None)

        assert tracker.completed == [DeploymentPhase.START]
        assert tracker.partial == {"app_id": "abc"}

    def test_other_exceptions_pass_through(self):
        tracker = PhaseTracker()

        with pytest.raises(RuntimeError):
            with tracker.phase(DeploymentPhase.START, "start"):
                raise RuntimeError("unexpected")

        assert tracker.completed == []


class TestDeploymentSpec:
    """Test suite for DeploymentSpec"""

    def test_payload_attached_once(self):
        spec = DeploymentSpec(
            name="demo",
            selection=ResourceSelection(
                node=NodeDescriptor(id="1", name="n"), image=ImageDescriptor("img")
            ),
            sizing=ResourceSizing(),
            compose_text="services: {}",
        )
        spec.attach_payload("abcd")

        with pytest.raises(CryptoError):
            spec.attach_payload("ef01")

        assert spec.encrypted_env == "abcd"
