"""
Base command for cvmdeploy CLI commands.

Commands implement execute(); run() owns the exit status, JSON error
objects and the run log.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional
import json

from rich.console import Console

from cvmdeploy.core.config_loader import Settings, load_settings
from cvmdeploy.exceptions import CvmDeployError
from cvmdeploy.logger import DeployLogger
from cvmdeploy.ui_components import show_header

EXIT_FAILURE = 1
EXIT_CANCELLED = 130


class BaseCommand(ABC):
    """
    Shared command behaviour.

    In JSON mode stdout carries exactly one JSON document and nothing is
    logged to file; otherwise progress goes to the console and a run log.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        verbose: bool = False,
        json_output: bool = False,
        console: Optional[Console] = None,
        api_key: Optional[str] = None,
    ):
        # Without explicit settings they are loaded in run(), so config
        # errors are reported like any other failure
        self.settings = settings
        self.api_key = api_key
        self.verbose = verbose
        self.json_output = json_output
        self.console = console or Console()
        self.logger: Optional[DeployLogger] = None

    def init_logger(self, operation: str) -> Optional[DeployLogger]:
        """Open the run log under settings.log_dir; None in JSON mode."""
        if not self.json_output:
            self.logger = DeployLogger(
                self.settings.log_dir,
                operation,
                verbose=self.verbose,
                console_output=self.console,
            )
        return self.logger

    def output_json(self, data: Dict[str, Any], exit_code: int = 0) -> None:
        """Print a JSON document; a non-zero exit_code ends the process."""
        print(json.dumps(data, indent=2))
        if exit_code:
            raise SystemExit(exit_code)

    def output_json_error(self, error: CvmDeployError) -> None:
        data: Dict[str, Any] = {"success": False}
        data.update(error.to_dict())
        self.output_json(data, exit_code=EXIT_FAILURE)

    def output_json_unexpected(self, error: Exception) -> None:
        self.output_json(
            {
                "success": False,
                "error": str(error) or type(error).__name__,
                "type": type(error).__name__,
                "phase": None,
                "completed_phases": [],
            },
            exit_code=EXIT_FAILURE,
        )

    def show_header(
        self,
        title: str,
        subtitle: Optional[str] = None,
        details: Optional[dict] = None,
    ) -> None:
        if self.json_output or self.verbose:
            return
        show_header(title=title, subtitle=subtitle, details=details, console=self.console)

    def _say(self, markup: str) -> None:
        if not self.json_output:
            self.console.print(markup)

    def print_success(self, message: str) -> None:
        self._say(f"[green]✓ {message}[/green]")

    def print_error(self, message: str) -> None:
        self._say(f"[red]✗ {message}[/red]")

    def print_dim(self, message: str) -> None:
        self._say(f"[dim]{message}[/dim]")

    def handle_error(self, error: CvmDeployError) -> None:
        """Human-readable report: message, failing phase and partial state."""
        details = [error.context] if error.context else []
        if error.phase:
            details.append(f"Failed during: {error.phase}")
        if error.completed_phases:
            details.append(f"Completed: {', '.join(error.completed_phases)}")
        context = "\n  ".join(details) or None

        if self.logger:
            self.logger.log_error(error.message, context=context)
        else:
            self.print_error(error.message)
            if context:
                self.print_dim(f"  {context}")

        if error.partial:
            self.console.print("\n[yellow]⚠ Partial state was created:[/yellow]")
            for key, value in error.partial.items():
                self.console.print(f"  [dim]{key}:[/dim] {value}")
            self.console.print(
                "[dim]Re-running deploy creates a new CVM; use --uuid to update an existing one.[/dim]"
            )

    def _point_to_log(self) -> None:
        if self.logger:
            self.console.print(f"\n[dim]Log file:[/dim] {self.logger.log_path}\n")

    @abstractmethod
    def execute(self) -> None:
        """Command body."""

    def run(self) -> None:
        """Execute, mapping errors to output and an exit status."""
        try:
            if self.settings is None:
                self.settings = load_settings(api_key=self.api_key)
            self.execute()
        except KeyboardInterrupt:
            self._say("\n[yellow]⚠ Cancelled[/yellow]")
            self._point_to_log()
            raise SystemExit(EXIT_CANCELLED)
        except CvmDeployError as e:
            if self.json_output:
                self.output_json_error(e)
            self.handle_error(e)
            self._point_to_log()
            raise SystemExit(EXIT_FAILURE)
        except Exception as e:
            if not self.json_output:
                raise
            self.output_json_unexpected(e)
        finally:
            if self.logger:
                self.logger.close()
