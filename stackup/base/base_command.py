"""
Base Command Class

Abstract base for all stackup CLI commands.
Provides common functionality and structure.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from rich.console import Console

from stackup.exceptions import RunCancelled, StackupError
from stackup.logger import DeployLogger
from stackup.ui_components import show_header
from stackup.utils import get_project_root


class BaseCommand(ABC):
    """
    Abstract base command class.

    Provides:
    - Logger initialization
    - Header display
    - Error handling with stage reporting
    """

    def __init__(self, verbose: bool = False, root: Optional[Path] = None):
        self.verbose = verbose
        self.console = Console()
        self.project_root = Path(root) if root else get_project_root()
        self.logger: Optional[DeployLogger] = None

    def init_logger(self, scope: str, command_name: str) -> DeployLogger:
        """
        Initialize command logger.

        Args:
            scope: Log scope (project name)
            command_name: Command name
        """
        self.logger = DeployLogger(
            scope,
            command_name,
            verbose=self.verbose,
            logs_root=self.project_root / "logs",
        )
        return self.logger

    def show_header(
        self,
        title: str,
        subtitle: Optional[str] = None,
        project: Optional[str] = None,
        details: Optional[dict] = None,
    ) -> None:
        """Show command header (skip in verbose mode)."""
        if not self.verbose:
            show_header(
                title=title,
                subtitle=subtitle,
                project=project,
                details=details,
                console=self.console,
            )

    def print_success(self, message: str) -> None:
        self.console.print(f"[green]✓ {message}[/green]")

    def print_warning(self, message: str) -> None:
        self.console.print(f"[yellow]⚠ {message}[/yellow]")

    def _print_log_path(self) -> None:
        if self.logger and self.logger.log_path:
            self.console.print(f"[dim]Logs saved to:[/dim] {self.logger.log_path}\n")

    @abstractmethod
    def execute(self, **kwargs) -> None:
        """
        Execute command logic.

        Must be implemented by subclasses.
        """
        pass

    def run(self, **kwargs) -> None:
        """
        Run command with error handling.

        Exit codes: 0 success (warnings included), 1 fatal error, 130 aborted.
        """
        try:
            self.execute(**kwargs)
        except (KeyboardInterrupt, RunCancelled):
            self.console.print("\n[yellow]⚠️  Operation cancelled by user[/yellow]")
            if self.logger:
                self.logger.log("Run cancelled by operator", "WARNING")
            self._print_log_path()
            raise SystemExit(130)
        except SystemExit:
            raise
        except StackupError as e:
            stage = e.stage or "-"
            self.console.print(
                f"\n[bold red]✗ {type(e).__name__}[/bold red] [dim]at stage[/dim] "
                f"[cyan]{stage}[/cyan]: {e.message}"
            )
            if e.context:
                self.console.print(f"  [color(208)]{e.context}[/color(208)]")
            if self.logger:
                self.logger.log(f"Failed at stage {stage}: {e.format_message()}", "ERROR")
                self.logger.has_errors = True
            self.console.print()
            self._print_log_path()
            raise SystemExit(1)
        except PermissionError as e:
            self.console.print(f"\n[bold red]✗ Permission denied:[/bold red] {e}\n")
            if self.logger:
                self.logger.log(f"Permission error: {e}", "ERROR")
                self.logger.has_errors = True
            self._print_log_path()
            raise SystemExit(1)
        finally:
            if self.logger:
                self.logger.close()
