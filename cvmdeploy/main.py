#!/usr/bin/env python3
"""cvmdeploy command line entry point"""

import functools
import os
import sys
import traceback

import rich_click as click
from click.exceptions import ClickException
from rich.console import Console

from cvmdeploy import __version__
from cvmdeploy.commands.deploy import deploy
from cvmdeploy.commands.nodes import nodes
from cvmdeploy.exceptions import CvmDeployError

# Help output shares the brand color used by headers and step markers
click.rich_click.USE_RICH_MARKUP = True
click.rich_click.SHOW_ARGUMENTS = True
click.rich_click.MAX_WIDTH = 100
click.rich_click.STYLE_COMMAND = "bold color(214)"
click.rich_click.STYLE_OPTION = "bold cyan"
click.rich_click.STYLE_SWITCH = "bold green"
click.rich_click.STYLE_USAGE = "bold color(214)"
click.rich_click.STYLE_OPTIONS_PANEL_BORDER = "color(214)"
click.rich_click.STYLE_COMMANDS_PANEL_BORDER = "color(214)"
click.rich_click.ERRORS_EPILOGUE = "Run 'cvmdeploy COMMAND --help' for usage."

console = Console(stderr=True)


def handle_cli_errors(func):
    """Turn errors that escape a command into an exit status."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except ClickException as e:
            e.show()
            sys.exit(e.exit_code)
        except CvmDeployError as e:
            # Commands report their own errors from run(); this covers
            # anything raised outside a command
            console.print(f"[bold red]✗ {e.message}[/bold red]")
            if e.context:
                console.print(f"  [dim]{e.context}[/dim]")
            sys.exit(1)
        except KeyboardInterrupt:
            console.print("\n[yellow]⚠ Cancelled[/yellow]")
            sys.exit(130)
        except Exception as e:
            console.print(f"[bold red]✗ Unexpected error:[/bold red] {e}")
            if os.environ.get("DEBUG"):
                traceback.print_exc()
            else:
                console.print("[dim]Set DEBUG=1 for a traceback[/dim]")
            sys.exit(1)

    return wrapper


@click.group()
@click.version_option(version=__version__, prog_name="cvmdeploy")
def cli() -> None:
    """
    cvmdeploy - deploy confidential VMs with encrypted secrets

    Secrets are encrypted on your machine for the target CVM only.
    On-chain KMS deployments register the app and its compose hash
    on chain.
    """


cli.add_command(deploy)
cli.add_command(nodes)


@handle_cli_errors
def main():
    cli()


if __name__ == "__main__":
    main()
