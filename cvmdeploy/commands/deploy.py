"""
Deploy Command

Create a CVM, or update an existing one, with encrypted secrets.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

import click

from cvmdeploy.base import BaseCommand
from cvmdeploy.core.config_loader import Settings
from cvmdeploy.constants import DEFAULT_DISK_SIZE_GB, DEFAULT_MEMORY_MB, DEFAULT_VCPU
from cvmdeploy.models import DeploymentRequest, DeploymentResult, UpgradeRequest
from cvmdeploy.services import CloudApiClient, DeploymentOrchestrator
from cvmdeploy.ui_components import key_value_table

DEFAULT_COMPOSE_FILES = ("docker-compose.yml", "docker-compose.yaml")


@dataclass
class DeployOptions:
    """Options for deploy command."""

    compose: Optional[str] = None
    env_file: Optional[str] = None
    envs: List[str] = field(default_factory=list)
    name: Optional[str] = None
    vcpu: Optional[str] = None
    memory: Optional[str] = None
    disk_size: Optional[str] = None
    image: Optional[str] = None
    node_id: Optional[str] = None
    kms_id: Optional[str] = None
    uuid: Optional[str] = None
    custom_app_id: Optional[str] = None
    private_key: Optional[str] = None
    rpc_url: Optional[str] = None


class DeployCommand(BaseCommand):
    """
    Create or update a CVM.

    Features:
    - Standard KMS and on-chain KMS deployments
    - Compose and secret updates of existing CVMs (--uuid)
    - JSON or human-readable output
    """

    def __init__(
        self,
        options: DeployOptions,
        settings: Optional[Settings] = None,
        verbose: bool = False,
        json_output: bool = False,
        cwd: Optional[Path] = None,
        api_key: Optional[str] = None,
    ):
        super().__init__(settings, verbose=verbose, json_output=json_output, api_key=api_key)
        self.options = options
        self.cwd = cwd or Path.cwd()

    def execute(self) -> None:
        """Execute deploy command."""
        compose_path = self._compose_path()
        updating = self.options.uuid is not None

        self.show_header(
            title="Update CVM" if updating else "Deploy CVM",
            details={
                "Compose": compose_path,
                "KMS": self.options.kms_id or "standard",
            },
        )

        logger = self.init_logger("upgrade" if updating else "deploy")
        client = CloudApiClient.from_settings(self.settings)
        orchestrator = DeploymentOrchestrator(
            client, settings=self.settings, logger=logger, cwd=self.cwd
        )

        if updating:
            result = orchestrator.upgrade(
                UpgradeRequest(
                    cvm_id=self.options.uuid,
                    compose_path=compose_path,
                    env_file=self.options.env_file,
                    direct_envs=list(self.options.envs),
                    private_key=self.options.private_key,
                    rpc_url=self.options.rpc_url,
                )
            )
        else:
            result = orchestrator.deploy(
                DeploymentRequest(
                    compose_path=compose_path,
                    env_file=self.options.env_file,
                    direct_envs=list(self.options.envs),
                    name=self.options.name,
                    vcpu=self.options.vcpu,
                    memory=self.options.memory,
                    disk_size=self.options.disk_size,
                    image=self.options.image,
                    node_id=self.options.node_id,
                    kms_id=self.options.kms_id,
                    custom_app_id=self.options.custom_app_id,
                    private_key=self.options.private_key,
                    rpc_url=self.options.rpc_url,
                )
            )

        if self.json_output:
            data = {"success": True}
            data.update(result.to_dict())
            self.output_json(data)
            return

        self._print_summary(result, updating)

    def _compose_path(self) -> str:
        if self.options.compose:
            return self.options.compose
        for candidate in DEFAULT_COMPOSE_FILES:
            if (self.cwd / candidate).exists():
                return str(self.cwd / candidate)
        # Missing file is reported by the orchestrator as a ParseError
        return str(self.cwd / DEFAULT_COMPOSE_FILES[0])

    def _print_summary(self, result: DeploymentResult, updating: bool) -> None:
        self.console.print()
        self.print_success("CVM updated" if updating else "CVM created")
        rows = {
            "CVM ID": result.deployment_id,
            "Name": result.name,
            "App ID": result.app_id,
            "Status": result.status,
            "Compose hash": result.compose_hash,
            "Endpoint": result.endpoint,
            "Env keys": ", ".join(result.env_keys) if result.env_keys else None,
        }
        if result.identity and result.identity.transaction_hash:
            rows["Identity tx"] = result.identity.transaction_hash
        if result.commit:
            rows["Compose hash tx"] = result.commit.transaction_hash
        key_value_table(rows, console=self.console)
        self._point_to_log()


@click.command()
@click.argument("compose_arg", metavar="[COMPOSE]", required=False)
@click.option("-c", "--compose", help="Path to Docker Compose file (default: ./docker-compose.yml)")
@click.option("-e", "--env-file", help="Path to environment file with secrets")
@click.option("--env", "envs", multiple=True, help="Environment variable KEY=VALUE (repeatable)")
@click.option("-n", "--name", help="Name of the CVM (default: current directory name)")
@click.option("--vcpu", help=f"Number of vCPUs (default: {DEFAULT_VCPU})")
@click.option("--memory", help=f"Memory with optional unit, e.g. 2G or 1024MB (default: {DEFAULT_MEMORY_MB}MB)")
@click.option("--disk-size", help=f"Disk size with optional unit, e.g. 50G (default: {DEFAULT_DISK_SIZE_GB}GB)")
@click.option("--image", help="OS image name (default: first image on the node)")
@click.option("--node-id", help="Node to deploy to (default: first available node)")
@click.option("--kms-id", help="On-chain KMS id or slug")
@click.option("--uuid", help="Update the CVM with this id instead of creating one")
@click.option("--custom-app-id", help="Pre-registered app identity (with --kms-id)")
@click.option("--private-key", help="Signing key for on-chain KMS (or PRIVATE_KEY env)")
@click.option("--rpc-url", help="RPC URL override for on-chain KMS")
@click.option("--api-key", help="Cloud API key (or PHALA_CLOUD_API_KEY env)")
@click.option("--json/--no-json", "json_output", default=False, help="Output in JSON format")
@click.option("--verbose", "-v", is_flag=True, help="Show all log output")
def deploy(
    compose_arg,
    compose,
    env_file,
    envs,
    name,
    vcpu,
    memory,
    disk_size,
    image,
    node_id,
    kms_id,
    uuid,
    custom_app_id,
    private_key,
    rpc_url,
    api_key,
    json_output,
    verbose,
):
    """
    Deploy a CVM with encrypted secrets

    Secrets from the env file and --env are encrypted locally so only
    the CVM can read them. With --kms-id the app identity and compose
    hash are recorded on chain.

    Examples:
        # Deploy docker-compose.yml with secrets
        cvmdeploy deploy -e .env

        # Deploy with on-chain KMS
        cvmdeploy deploy -c app.yml --kms-id base-prod --private-key $KEY

        # Update an existing CVM
        cvmdeploy deploy --uuid 3f2a... -e .env
    """
    options = DeployOptions(
        compose=compose or compose_arg,
        env_file=env_file,
        envs=list(envs),
        name=name,
        vcpu=vcpu,
        memory=memory,
        disk_size=disk_size,
        image=image,
        node_id=node_id,
        kms_id=kms_id,
        uuid=uuid,
        custom_app_id=custom_app_id,
        private_key=private_key,
        rpc_url=rpc_url,
    )
    cmd = DeployCommand(options, verbose=verbose, json_output=json_output, api_key=api_key)
    cmd.run()
