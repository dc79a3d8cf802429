"""ruleflow closures: list the closures available to flows."""

from pathlib import Path

import typer
from rich.table import Table
from rich import box

from ruleflow.cli.commands._common import (
    CONFIG_OPTION, console, fail_on_config_error,
)


def closures_list(config: Path = CONFIG_OPTION):
    """List built-in, plugin, and config-declared closures with their parameters.

    Without a config file only built-in and plugin closures are shown.

    Example:
        ruleflow closures -c ruleflow.yaml
    """
    from ruleflow.closures.builtin import create_builtin_closures
    from ruleflow.closures.plugin import get_registered_closures
    from ruleflow.config import load_runner_config
    from ruleflow.exceptions import ConfigurationError
    from ruleflow.runner import config_closures

    try:
        loaded = load_runner_config(config)
        extra = config_closures(loaded.config)
    except FileNotFoundError:
        if config is not None:
            console.print(f"[red]Config file not found:[/red] {config}")
            raise typer.Exit(1)
        extra = get_registered_closures()
    except ConfigurationError as exc:
        fail_on_config_error(exc)

    definitions = create_builtin_closures() + extra

    table = Table(
        box=box.ROUNDED,
        header_style="bold dim",
        show_lines=False,
        title=f"[bold]{len(definitions)} Closures[/bold]",
    )
    table.add_column("Name", style="cyan", no_wrap=True, min_width=12)
    table.add_column("Description", overflow="fold")
    table.add_column("Parameters", overflow="fold")

    for definition in sorted(definitions, key=lambda d: d.name):
        signature = definition.signature
        params = []
        if signature is not None:
            for p in signature.parameters:
                label = f"{p.name}{'' if p.required else '?'}: {p.type.value}"
                params.append(f"[bold]{label}[/bold]" if p.required else label)
            if signature.allow_additional_parameters:
                params.append("[dim]...[/dim]")
        table.add_row(definition.name, f"[dim]{definition.description or ''}[/dim]", ", ".join(params))

    console.print()
    console.print(table)
    console.print()
    console.print("[dim]Add custom closures with the [cyan]@closure[/cyan] decorator.[/dim]")
