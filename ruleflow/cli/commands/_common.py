"""Helpers shared by CLI commands."""

import typer
from rich.console import Console
from rich.table import Table
from rich import box

from ruleflow.exceptions import ConfigurationError, RunnerValidationError

console = Console()

CONFIG_OPTION = typer.Option(
    None, "--config", "-c",
    help="Runner YAML file (default: RULEFLOW_CONFIG_PATH, then ./ruleflow.yaml)",
)


def issues_table(result) -> Table:
    table = Table(box=box.ROUNDED, header_style="bold dim", show_lines=False)
    table.add_column("Level", width=9)
    table.add_column("Message")
    table.add_column("Path", style="dim")
    table.add_column("Flow", style="cyan")
    for issue in result.issues:
        level = "[red]error[/red]" if issue.level == "error" else "[yellow]warning[/yellow]"
        table.add_row(level, issue.message, issue.path or "", issue.flow or "")
    return table


def fail_on_config_error(exc: Exception) -> None:
    """Print *exc* the way an operator needs to read it, then exit 1."""
    if isinstance(exc, RunnerValidationError):
        console.print("[bold red]Runner configuration is invalid[/bold red]")
        console.print(issues_table(exc.result))
    elif isinstance(exc, ConfigurationError):
        console.print(f"[bold red]Configuration error:[/bold red] {exc}")
        for violation in exc.details.get("violations", []):
            console.print(f"  [red]•[/red] {violation}")
    else:
        console.print(f"[bold red]Error:[/bold red] {exc}")
    raise typer.Exit(1)
