"""ruleflow validate: check a runner config without starting it."""

from pathlib import Path

import typer

from ruleflow.cli.commands._common import (
    CONFIG_OPTION, console, fail_on_config_error, issues_table,
)


def validate_runner(config: Path = CONFIG_OPTION):
    """Validate every flow of a runner config against the closures it declares.

    Exits with status 1 when any error-level issue is found; warnings are
    printed but do not fail the command.

    Example:
        ruleflow validate -c ruleflow.yaml
    """
    from ruleflow.exceptions import ConfigurationError
    from ruleflow.runner import validate_config_file

    try:
        result = validate_config_file(config)
    except (ConfigurationError, FileNotFoundError) as exc:
        fail_on_config_error(exc)

    if not result.issues:
        console.print("[bold green]✓ Configuration is valid[/bold green]")
        return

    console.print(issues_table(result))
    errors, warnings = len(result.errors), len(result.warnings)
    if not result.valid:
        console.print(f"[bold red]✗ {errors} error(s), {warnings} warning(s)[/bold red]")
        raise typer.Exit(1)
    console.print(f"[bold yellow]✓ Valid with {warnings} warning(s)[/bold yellow]")
