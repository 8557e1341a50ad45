"""
Run logger for cvmdeploy

Every deploy or upgrade run gets its own log file; the console only shows
numbered phase steps unless --verbose is set.
"""

from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Optional, TextIO

from rich.console import Console

from cvmdeploy import __version__
from cvmdeploy.constants import LOG_DATE_FORMAT, LOG_TIME_FORMAT

console = Console()

RULE_WIDTH = 80

# Console style per level when echoing in verbose mode
LEVEL_STYLES = {
    "ERROR": "red",
    "WARNING": "yellow",
    "DEBUG": "dim",
}


class DeployLogger:
    """
    Per-run logger.

    Log files live at <log_dir>/<date>/<time>_<operation>.log. Secret
    values never reach this class; callers pass key names only.
    """

    def __init__(
        self,
        log_dir: Path,
        operation: str,
        verbose: bool = False,
        console_output: Optional[Console] = None,
    ):
        """
        Open the log file for a run.

        Args:
            log_dir: Base logs directory (e.g. ~/.cvmdeploy/logs)
            operation: Run kind, used in the file name ('deploy', 'upgrade')
            verbose: Echo every log line to the console
            console_output: Console to print to (module console if None)
        """
        self.operation = operation
        self.verbose = verbose
        self.console = console_output or console
        self.steps: List[str] = []
        self.has_errors = False

        started = datetime.now()
        run_dir = Path(log_dir) / started.strftime(LOG_DATE_FORMAT)
        run_dir.mkdir(parents=True, exist_ok=True)
        self.log_path = run_dir / f"{started.strftime(LOG_TIME_FORMAT)}_{operation}.log"

        self.log_file: Optional[TextIO] = open(
            self.log_path, "w", buffering=1, encoding="utf-8"
        )
        self._write_block(
            "=",
            [
                f"cvmdeploy {__version__}",
                f"Operation: {operation}",
                f"Started: {started.isoformat()}",
            ],
        )

    def _write_block(self, rule: str, lines: Iterable[str]) -> None:
        if not self.log_file:
            return
        border = rule * RULE_WIDTH
        body = "\n".join(lines)
        self.log_file.write(f"\n{border}\n{body}\n{border}\n\n")

    def log(self, message: str, level: str = "INFO"):
        """Append a line to the log file; echo it when verbose."""
        if self.log_file:
            stamp = datetime.now().strftime("%H:%M:%S")
            self.log_file.write(f"[{stamp}] [{level}] {message}\n")

        if self.verbose:
            style = LEVEL_STYLES.get(level)
            self.console.print(f"[{style}]{message}[/{style}]" if style else message)

    def log_env_keys(self, keys: List[str]):
        """Record which variables are sent, never their values."""
        if not keys:
            self.log("No environment variables", "DEBUG")
            return
        self.log(f"Environment keys ({len(keys)}): {', '.join(keys)}", "DEBUG")

    def step(self, step_name: str):
        """Start a numbered step."""
        self.steps.append(step_name)
        self.log(f"Step {len(self.steps)}: {step_name}")

        if not self.verbose:
            self.console.print(
                f"[color(214)]{len(self.steps)}.[/color(214)] [white]{step_name}[/white]"
            )

    def success(self, message: str):
        self.log(message)
        if not self.verbose:
            self.console.print(f"   [dim]✓ {message}[/dim]")

    def warning(self, message: str):
        self.log(message, "WARNING")
        if not self.verbose:
            self.console.print(f"   [yellow]⚠ {message}[/yellow]")

    def log_error(self, error: str, context: Optional[str] = None):
        """
        Record a failure in the log file and on the console.

        Args:
            error: Error message
            context: Extra detail such as the failing phase
        """
        self.has_errors = True
        lines = ["ERROR OCCURRED", error]
        if context:
            lines.append(f"Context: {context}")
        self._write_block("!", lines)

        self.console.print()
        self.console.print(f"[bold red]✗ {error}[/bold red]")
        if context:
            self.console.print(f"  [color(208)]{context}[/color(208)]")

    def close(self):
        """Write the run summary and close the file."""
        if not self.log_file:
            return
        self._write_block(
            "=",
            [
                f"Completed: {datetime.now().isoformat()}",
                f"Steps: {len(self.steps)}",
                f"Status: {'FAILED' if self.has_errors else 'SUCCESS'}",
            ],
        )
        self.log_file.close()
        self.log_file = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, _exc_tb):
        if exc_type is not None and not issubclass(exc_type, SystemExit):
            self.log_error(str(exc_val) or exc_type.__name__, context=exc_type.__name__)
        self.close()
        return False
