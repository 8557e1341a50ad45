"""
Nodes Command

List nodes, OS images and KMS instances available for deployment.
"""

from typing import Optional

import click
from rich.table import Table

from cvmdeploy.base import BaseCommand
from cvmdeploy.core.config_loader import Settings
from cvmdeploy.services import CloudApiClient


class NodesCommand(BaseCommand):
    """List deployment targets."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        verbose: bool = False,
        json_output: bool = False,
        api_key: Optional[str] = None,
    ):
        super().__init__(settings, verbose=verbose, json_output=json_output, api_key=api_key)

    def execute(self) -> None:
        """Execute nodes command."""
        self.show_header(title="Available Nodes")

        client = CloudApiClient.from_settings(self.settings)
        catalog = client.get_available_nodes()
        nodes = [node.to_descriptor() for node in catalog.nodes]
        registries = [kms.to_descriptor() for kms in catalog.kms_list]

        if self.json_output:
            self.output_json(
                {
                    "success": True,
                    "tier": catalog.tier,
                    "nodes": [
                        {
                            "id": node.id,
                            "name": node.name,
                            "region": node.region,
                            "onchain_kms": node.supports_onchain_identity,
                            "images": node.image_names,
                        }
                        for node in nodes
                    ],
                    "kms": [
                        {
                            "id": registry.id,
                            "slug": registry.slug,
                            "chain_id": registry.chain_id,
                            "contract_address": registry.contract_address,
                        }
                        for registry in registries
                    ],
                }
            )
            return

        table = Table(title="Nodes", title_style="bold cyan", border_style="cyan")
        table.add_column("ID", style="cyan")
        table.add_column("Name")
        table.add_column("Region")
        table.add_column("On-chain KMS")
        table.add_column("Images", style="dim")
        for node in nodes:
            table.add_row(
                node.id,
                node.name,
                node.region,
                "✓" if node.supports_onchain_identity else "",
                ", ".join(node.image_names),
            )
        self.console.print(table)

        if registries:
            kms_table = Table(title="KMS", title_style="bold cyan", border_style="cyan")
            kms_table.add_column("Slug", style="cyan")
            kms_table.add_column("Chain")
            kms_table.add_column("Contract", style="dim")
            for registry in registries:
                kms_table.add_row(
                    registry.api_id,
                    str(registry.chain_id) if registry.chain_id is not None else "-",
                    registry.contract_address or "-",
                )
            self.console.print()
            self.console.print(kms_table)


@click.command()
@click.option("--api-key", help="Cloud API key (or PHALA_CLOUD_API_KEY env)")
@click.option("--json", "json_output", is_flag=True, help="Output in JSON format")
@click.option("--verbose", "-v", is_flag=True, help="Show all log output")
def nodes(api_key, json_output, verbose):
    """
    List available nodes, images and KMS instances

    Examples:
        cvmdeploy nodes
        cvmdeploy nodes --json
    """
    cmd = NodesCommand(verbose=verbose, json_output=json_output, api_key=api_key)
    cmd.run()
