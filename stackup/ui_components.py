"""
stackup - UI Components & Branding
Standardized headers and run summaries
"""

from typing import Dict, Optional

from rich.console import Console

LOGO = "stackup"

# Color scheme
SUCCESS_COLOR = "green"
ERROR_COLOR = "red"


def _prefix() -> str:
    return f" [bold color(214)]{LOGO}[/bold color(214)] [dim]›[/dim]"


def show_header(
    title: str,
    subtitle: Optional[str] = None,
    project: Optional[str] = None,
    details: Optional[Dict[str, str]] = None,
    console: Optional[Console] = None,
):
    """
    Display a standardized stackup command header.

    Args:
        title: Main title (e.g., "Deploy Infrastructure")
        subtitle: Optional subtitle line
        project: Project name (if applicable)
        details: Additional key-value pairs to display
        console: Rich Console instance (creates new if None)

    Example:
        show_header(
            title="Deploy Infrastructure",
            project="jenkins-step3",
            details={"Region": "us-east-1"}
        )
    """
    if console is None:
        console = Console()

    console.print(f"{_prefix()} [bold white]{title}[/bold white]")

    if subtitle:
        console.print(f"{_prefix()} [dim]{subtitle}[/dim]")

    if project:
        console.print(f"{_prefix()} Project: [cyan]{project}[/cyan]")

    if details:
        for key, value in details.items():
            console.print(f"{_prefix()} {key}: [cyan]{value}[/cyan]")

    console.print()


def show_stage_table(stages: Dict[str, str], console: Optional[Console] = None):
    """Print one line per stage with what happened to it."""
    if console is None:
        console = Console()

    colors = {
        "applied": SUCCESS_COLOR,
        "destroyed": SUCCESS_COLOR,
        "unchanged": "dim",
        "absent": "dim",
        "failed": ERROR_COLOR,
    }
    for name, outcome in stages.items():
        color = colors.get(outcome, "white")
        console.print(f"  [{color}]{outcome:<10}[/{color}] {name}")
