"""
cvmdeploy UI Components
Standardized headers and summary tables
"""

from typing import Dict, Optional

from rich.console import Console
from rich.table import Table

BRAND = "cvmdeploy"
BRAND_STYLE = "bold color(214)"


def show_header(
    title: str,
    subtitle: Optional[str] = None,
    details: Optional[Dict[str, str]] = None,
    console: Optional[Console] = None,
):
    """
    Display a standardized command header.

    Args:
        title: Main title (e.g., "Deploy CVM")
        subtitle: Optional subtitle line
        details: Additional key-value pairs to display
        console: Rich Console instance (creates new if None)

    Example:
        show_header(
            title="Deploy CVM",
            details={"Compose": "docker-compose.yml", "KMS": "standard"}
        )
    """
    if console is None:
        console = Console()

    prefix = f" [{BRAND_STYLE}]{BRAND}[/{BRAND_STYLE}] [dim]›[/dim]"
    console.print(f"{prefix} [bold white]{title}[/bold white]")

    if subtitle:
        console.print(f"{prefix} [dim]{subtitle}[/dim]")

    if details:
        for key, value in details.items():
            console.print(f"{prefix} {key}: [cyan]{value}[/cyan]")

    console.print()


def key_value_table(rows: Dict[str, object], console: Optional[Console] = None):
    """Print a borderless two-column summary."""
    if console is None:
        console = Console()

    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column(style="dim")
    table.add_column(style="cyan")
    for key, value in rows.items():
        if value is not None and value != "":
            table.add_row(key, str(value))
    console.print(table)
