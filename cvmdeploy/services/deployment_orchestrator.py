"""
Deployment Orchestrator

Sequential workflow that creates or upgrades a CVM: resolve resources,
parse secrets, fetch the CVM encryption key, encrypt, submit and, with an
on-chain KMS, establish the app identity and commit the compose hash.

Runs are not idempotent. A failure part way through is reported with the
phase it happened in and whatever was already created; nothing is rolled
back or retried.
"""

from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from cvmdeploy.constants import ERROR_MISSING_PRIVATE_KEY, ZERO_ADDRESS
from cvmdeploy.core.config_loader import Settings
from cvmdeploy.core.env_parser import load_env_file, read_text_file
from cvmdeploy.core.resource_resolver import ResourceResolver
from cvmdeploy.core.secret_cipher import encrypt_env_vars
from cvmdeploy.exceptions import (
    ApiError,
    CryptoError,
    CvmDeployError,
    UnregisteredIdentityError,
    ValidationError,
)
from cvmdeploy.logger import DeployLogger
from cvmdeploy.models import (
    AppIdentity,
    DeploymentPhase,
    DeploymentRequest,
    DeploymentResult,
    DeploymentSpec,
    EnvVar,
    ResourceSizing,
    UpgradeRequest,
    env_keys,
)
from cvmdeploy.models.api import CreatedCvm
from cvmdeploy.services.blockchain import BlockchainRegistrar, to_address
from cvmdeploy.services.cloud_api import CloudApiClient
from cvmdeploy.utils import (
    compact_uuid,
    default_deployment_name,
    parse_disk_size_input,
    parse_memory_input,
    parse_vcpu_input,
)

RegistrarFactory = Callable[[str, str], BlockchainRegistrar]


class PhaseTracker:
    """Tracks phase progress and tags errors with where they happened."""

    def __init__(self, logger: Optional[DeployLogger] = None):
        self.logger = logger
        self.completed: List[DeploymentPhase] = []
        self.partial: Dict[str, Any] = {}

    @contextmanager
    def phase(self, phase: DeploymentPhase, description: str):
        if self.logger:
            self.logger.step(description)
        try:
            yield
        except CvmDeployError as e:
            # Keep the innermost tag if a nested phase already set it
            if e.phase is None:
                e.phase = phase.value
                e.completed_phases = [p.value for p in self.completed]
                e.partial = dict(self.partial)
            if self.logger:
                self.logger.log(f"Phase {phase.value} failed: {e.message}", "ERROR")
            raise
        self.completed.append(phase)

    def record(self, key: str, value: Any) -> None:
        if value is not None:
            self.partial[key] = value


class DeploymentOrchestrator:
    """
    Drives deploy and upgrade runs against the Cloud API and, for on-chain
    KMS, the identity registry.
    """

    def __init__(
        self,
        client: CloudApiClient,
        settings: Optional[Settings] = None,
        registrar_factory: Optional[RegistrarFactory] = None,
        logger: Optional[DeployLogger] = None,
        cwd: Optional[Path] = None,
    ):
        """
        Initialize orchestrator.

        Args:
            client: Cloud API client for this invocation
            settings: Resolved settings (defaults if None)
            registrar_factory: Builds a registrar from (rpc_url, private_key)
            logger: Optional run logger
            cwd: Directory used to derive a default CVM name
        """
        self.client = client
        self.settings = settings or Settings()
        self.registrar_factory = registrar_factory or self._connect_registrar
        self.logger = logger
        self.cwd = cwd

    # Create

    def deploy(self, request: DeploymentRequest) -> DeploymentResult:
        """
        Create a new CVM.

        Raises:
            CvmDeployError: Tagged with the failing phase
        """
        tracker = PhaseTracker(self.logger)
        onchain = request.uses_onchain_identity
        private_key = request.private_key or self.settings.private_key
        custom_app_id = None

        with tracker.phase(DeploymentPhase.START, "Validating request"):
            compose_text = read_text_file(request.compose_path)
            sizing = self._parse_sizing(request)
            name = request.name or default_deployment_name(self.cwd)
            if onchain and request.custom_app_id:
                custom_app_id = to_address(request.custom_app_id, "Custom app ID")
            elif request.custom_app_id:
                raise ValidationError("--custom-app-id requires --kms-id")

        registrar = None
        with tracker.phase(DeploymentPhase.RESOURCES_RESOLVED, "Resolving resources"):
            selection = self._resolve(request)
            if self.logger:
                self.logger.log(
                    f"Node {selection.node.name} ({selection.node.id}), image {selection.image.name}"
                )
            if onchain:
                registry = selection.registry
                if registry.chain_id is None:
                    if custom_app_id:
                        raise ValidationError(
                            f"KMS '{registry.api_id}' is not bound to a chain",
                            context="--custom-app-id needs a KMS with an on-chain registry",
                        )
                elif not private_key:
                    raise ValidationError(ERROR_MISSING_PRIVATE_KEY)
                else:
                    rpc_url = self.settings.rpc_url_for(registry.chain_id, request.rpc_url)
                    registrar = self.registrar_factory(rpc_url, private_key)

        with tracker.phase(DeploymentPhase.SECRETS_PARSED, "Reading secrets"):
            env_vars = load_env_file(request.direct_envs, request.env_file)
            if self.logger:
                self.logger.log_env_keys(env_keys(env_vars))

        spec = DeploymentSpec(
            name=name,
            selection=selection,
            sizing=sizing,
            compose_text=compose_text,
            allowed_envs=env_keys(env_vars),
        )

        if registrar is not None:
            return self._deploy_onchain(tracker, spec, env_vars, registrar, custom_app_id)
        if onchain:
            return self._deploy_offchain_registry(tracker, spec, env_vars)
        return self._deploy_standard(tracker, spec, env_vars)

    def _deploy_standard(
        self, tracker: PhaseTracker, spec: DeploymentSpec, env_vars: List[EnvVar]
    ) -> DeploymentResult:
        vm_config = spec.to_vm_config()

        with tracker.phase(DeploymentPhase.REMOTE_PUBKEY_FETCHED, "Fetching CVM encryption key"):
            pubkey = self.client.get_pubkey_from_configuration(vm_config)

        with tracker.phase(DeploymentPhase.SECRETS_ENCRYPTED, "Encrypting secrets"):
            spec.attach_payload(self._encrypt(env_vars, pubkey.app_env_encrypt_pubkey))

        with tracker.phase(DeploymentPhase.SUBMITTED, "Creating CVM"):
            cvm = self.client.create_cvm_from_configuration(
                vm_config,
                spec.encrypted_env,
                pubkey.app_env_encrypt_pubkey,
                pubkey.app_id_salt,
            )
            tracker.record("app_id", cvm.app_id)
            tracker.record("vm_uuid", cvm.vm_uuid)

        with tracker.phase(DeploymentPhase.FINALIZED, "Finalizing"):
            result = self._build_result(cvm, spec, env_vars)
            if self.logger:
                self.logger.success(f"CVM {result.deployment_id} created")
        return result

    def _deploy_onchain(
        self,
        tracker: PhaseTracker,
        spec: DeploymentSpec,
        env_vars: List[EnvVar],
        registrar: BlockchainRegistrar,
        custom_app_id: Optional[str],
    ) -> DeploymentResult:
        registry = spec.selection.registry
        identity: Optional[AppIdentity] = None

        # A supplied identity must be verified before anything is submitted
        if custom_app_id:
            with tracker.phase(DeploymentPhase.IDENTITY_ESTABLISHED, "Verifying app identity"):
                identity = self._existing_identity(
                    registrar, registry.contract_address, custom_app_id
                )
                tracker.record("app_id", identity.app_id)

        with tracker.phase(DeploymentPhase.SUBMITTED, "Provisioning CVM"):
            provision = self.client.provision_cvm(spec.to_provision_request())
            tracker.record("compose_hash", provision.compose_hash)

        if identity is None:
            with tracker.phase(DeploymentPhase.IDENTITY_ESTABLISHED, "Deploying app identity contract"):
                identity = registrar.deploy_and_register_default(
                    registry.contract_address,
                    registrar.address,
                    provision.device_id or spec.selection.node.device_id,
                    provision.compose_hash,
                )
                tracker.record("app_id", identity.app_id)
                tracker.record("identity_tx", identity.transaction_hash)
                if self.logger:
                    self.logger.success(f"App identity {identity.app_id} deployed")

        with tracker.phase(DeploymentPhase.COMPOSE_HASH_COMMITTED, "Committing compose hash"):
            commit = registrar.commit_compose_hash(identity.app_id, provision.compose_hash)
            tracker.record("compose_hash_tx", commit.transaction_hash)

        with tracker.phase(DeploymentPhase.REMOTE_PUBKEY_FETCHED, "Fetching CVM encryption key"):
            kms_pubkey = self.client.get_kms_pubkey(registry.api_id, identity.app_id)

        with tracker.phase(DeploymentPhase.SECRETS_ENCRYPTED, "Encrypting secrets"):
            spec.attach_payload(self._encrypt(env_vars, kms_pubkey.public_key))

        with tracker.phase(DeploymentPhase.FINALIZED, "Finalizing"):
            cvm = self.client.commit_cvm_provision(
                app_id=identity.app_id,
                compose_hash=provision.compose_hash,
                encrypted_env=spec.encrypted_env,
                kms_id=registry.api_id,
                contract_address=identity.controller_address,
                deployer_address=identity.deployer_address,
            )
            result = self._build_result(
                cvm,
                spec,
                env_vars,
                compose_hash=provision.compose_hash,
                identity=identity,
            )
            result.commit = commit
            if self.logger:
                self.logger.success(f"CVM {result.deployment_id} created")
        return result

    def _deploy_offchain_registry(
        self, tracker: PhaseTracker, spec: DeploymentSpec, env_vars: List[EnvVar]
    ) -> DeploymentResult:
        """KMS without a chain: the Cloud API assigns the app id and key."""
        registry = spec.selection.registry

        with tracker.phase(DeploymentPhase.SUBMITTED, "Provisioning CVM"):
            provision = self.client.provision_cvm(spec.to_provision_request())
            tracker.record("compose_hash", provision.compose_hash)
            tracker.record("app_id", provision.app_id)
            if not provision.app_id:
                raise ApiError("provision_cvm", "Response carries no app_id")

        with tracker.phase(DeploymentPhase.REMOTE_PUBKEY_FETCHED, "Fetching CVM encryption key"):
            pubkey = provision.app_env_encrypt_pubkey
            if not pubkey:
                pubkey = self.client.get_kms_pubkey(registry.api_id, provision.app_id).public_key

        with tracker.phase(DeploymentPhase.SECRETS_ENCRYPTED, "Encrypting secrets"):
            spec.attach_payload(self._encrypt(env_vars, pubkey))

        with tracker.phase(DeploymentPhase.FINALIZED, "Finalizing"):
            cvm = self.client.commit_cvm_provision(
                app_id=provision.app_id,
                compose_hash=provision.compose_hash,
                encrypted_env=spec.encrypted_env,
                kms_id=registry.api_id,
            )
            result = self._build_result(
                cvm, spec, env_vars, compose_hash=provision.compose_hash
            )
            if self.logger:
                self.logger.success(f"CVM {result.deployment_id} created")
        return result

    # Upgrade

    def upgrade(self, request: UpgradeRequest) -> DeploymentResult:
        """
        Replace the compose file and secrets of an existing CVM.

        Raises:
            CvmDeployError: Tagged with the failing phase
        """
        tracker = PhaseTracker(self.logger)
        cvm_id = compact_uuid(request.cvm_id)
        private_key = request.private_key or self.settings.private_key

        with tracker.phase(DeploymentPhase.START, "Validating request"):
            compose_text = read_text_file(request.compose_path)

        registrar = None
        with tracker.phase(DeploymentPhase.REMOTE_PUBKEY_FETCHED, "Fetching CVM"):
            cvm = self.client.get_cvm(cvm_id)
            app_compose = self.client.get_compose_file(cvm_id)
            chain_id = cvm.onchain_chain_id
            if chain_id is not None:
                if not private_key:
                    raise ValidationError(ERROR_MISSING_PRIVATE_KEY)
                if not cvm.app_id:
                    raise ApiError("get_cvm", "CVM with on-chain KMS has no app_id")
                rpc_url = self.settings.rpc_url_for(chain_id, request.rpc_url)
                registrar = self.registrar_factory(rpc_url, private_key)

        with tracker.phase(DeploymentPhase.SECRETS_PARSED, "Reading secrets"):
            env_vars = load_env_file(request.direct_envs, request.env_file)
            keys = env_keys(env_vars)
            if self.logger:
                self.logger.log_env_keys(keys)

        with tracker.phase(DeploymentPhase.SUBMITTED, "Provisioning compose update"):
            app_compose["docker_compose_file"] = compose_text
            app_compose["allowed_envs"] = keys
            provision = self.client.provision_compose_update(cvm_id, app_compose)
            tracker.record("compose_hash", provision.compose_hash)

        commit = None
        if registrar is not None:
            with tracker.phase(DeploymentPhase.COMPOSE_HASH_COMMITTED, "Committing compose hash"):
                commit = registrar.commit_compose_hash(
                    to_address(cvm.app_id, "App ID"), provision.compose_hash
                )
                tracker.record("compose_hash_tx", commit.transaction_hash)

        with tracker.phase(DeploymentPhase.SECRETS_ENCRYPTED, "Encrypting secrets"):
            encrypted_env = None
            if env_vars:
                if not cvm.encrypted_env_pubkey:
                    raise CryptoError(
                        f"CVM {cvm_id} has no env encryption public key",
                        context="Secrets cannot be sent to this CVM",
                    )
                encrypted_env = encrypt_env_vars(env_vars, cvm.encrypted_env_pubkey)

        with tracker.phase(DeploymentPhase.FINALIZED, "Applying update"):
            self.client.commit_compose_update(
                cvm_id, provision.compose_hash, encrypted_env, keys
            )
            if self.logger:
                self.logger.success(f"CVM {cvm_id} updated")

        return DeploymentResult(
            deployment_id=cvm_id,
            app_id=cvm.app_id or "",
            status="updated",
            endpoint=self._endpoint(cvm_id),
            name=cvm.name,
            compose_hash=provision.compose_hash,
            commit=commit,
            env_keys=keys,
        )

    # Helpers

    def _parse_sizing(self, request: DeploymentRequest) -> ResourceSizing:
        sizing = ResourceSizing()
        if request.vcpu is not None:
            sizing.vcpu = parse_vcpu_input(request.vcpu)
        if request.memory is not None:
            sizing.memory_mb = parse_memory_input(request.memory)
        if request.disk_size is not None:
            sizing.disk_size_gb = parse_disk_size_input(request.disk_size)
        return sizing

    def _resolve(self, request: DeploymentRequest):
        catalog = self.client.get_available_nodes()
        kms_list = catalog.kms_list
        if request.uses_onchain_identity and not kms_list:
            kms_list = self.client.get_kms_list()
        resolver = ResourceResolver(
            [node.to_descriptor() for node in catalog.nodes],
            [kms.to_descriptor() for kms in kms_list],
        )
        return resolver.resolve(
            node_id=request.node_id,
            image_name=request.image,
            registry_id=request.kms_id,
        )

    def _existing_identity(
        self, registrar: BlockchainRegistrar, registry_address: str, app_id: str
    ) -> AppIdentity:
        registered, controller = registrar.is_registered(registry_address, app_id)
        if not registered or not controller or controller.lower() == ZERO_ADDRESS:
            raise UnregisteredIdentityError(app_id, registry_address)
        if self.logger:
            self.logger.success(f"App identity {app_id} is registered")
        return AppIdentity(
            app_id=app_id,
            controller_address=controller,
            deployer_address=registrar.address,
        )

    def _encrypt(self, env_vars: List[EnvVar], pubkey: str) -> str:
        if not env_vars:
            if self.logger:
                self.logger.log("No secrets to encrypt, sending empty payload")
            return ""
        return encrypt_env_vars(env_vars, pubkey)

    def _build_result(
        self,
        cvm: CreatedCvm,
        spec: DeploymentSpec,
        env_vars: List[EnvVar],
        compose_hash: Optional[str] = None,
        identity: Optional[AppIdentity] = None,
    ) -> DeploymentResult:
        if cvm.vm_uuid:
            deployment_id = compact_uuid(cvm.vm_uuid)
        elif cvm.id is not None:
            deployment_id = str(cvm.id)
        else:
            raise ApiError("create", "Response carries neither vm_uuid nor id")

        return DeploymentResult(
            deployment_id=deployment_id,
            app_id=cvm.app_id or (identity.app_id if identity else ""),
            status=cvm.status or "created",
            endpoint=cvm.app_url or self._endpoint(deployment_id),
            name=cvm.name or spec.name,
            compose_hash=compose_hash,
            identity=identity,
            env_keys=env_keys(env_vars),
        )

    def _endpoint(self, deployment_id: str) -> str:
        return f"{self.settings.cloud_url.rstrip('/')}/dashboard/cvms/{deployment_id}"

    def _connect_registrar(self, rpc_url: str, private_key: str) -> BlockchainRegistrar:
        if self.logger:
            self.logger.log(f"Connecting to RPC {rpc_url}")
        return BlockchainRegistrar.connect(
            rpc_url, private_key, receipt_timeout=self.settings.receipt_timeout
        )
