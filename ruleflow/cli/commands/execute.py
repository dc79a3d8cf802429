"""ruleflow execute: run one flow once from the command line."""

import asyncio
import json
from pathlib import Path

import typer
from rich.panel import Panel
from rich.table import Table
from rich import box

from ruleflow.cli.commands._common import (
    CONFIG_OPTION, console, fail_on_config_error,
)


async def _execute(config, flow: str, initial_state: dict, trace: bool):
    from ruleflow.callbacks import StepRecorder
    from ruleflow.runner import create_runner

    runner = await create_runner(config, start_inputs=False)
    recorder = StepRecorder() if trace else None
    result = await runner.execute(
        flow, initial_state, callbacks=[recorder] if recorder is not None else None,
    )
    return result, recorder


def _trace_table(recorder) -> Table:
    table = Table(box=box.SIMPLE, header_style="bold dim", title="[bold]Step trace[/bold]")
    table.add_column("#", justify="right", style="dim", width=4)
    table.add_column("Closure", style="cyan", no_wrap=True)
    table.add_column("Outcome", width=9)
    table.add_column("Duration", justify="right", style="dim")
    finished = [e for e in recorder.events if e["event"] != "step.enter"]
    for index, event in enumerate(finished, start=1):
        outcome = "[green]ok[/green]" if event["event"] == "step.exit" else "[red]error[/red]"
        table.add_row(str(index), event["closure"], outcome, f"{event['duration_ms']:.1f}ms")
    return table


def execute_flow(
    flow: str = typer.Argument(..., help="Name of the flow to run"),
    config: Path = CONFIG_OPTION,
    state: str = typer.Option("{}", "--state", "-s", help="Initial state as a JSON object"),
    trace: bool = typer.Option(False, "--trace", "-t", help="Print every step that ran"),
):
    """Run FLOW once and print its final state and last result.

    Inputs (scheduler, init) declared in the config are not started.

    Example:
        ruleflow execute checkout -c ruleflow.yaml --state '{"request": {"body": {"total": 150}}}'
    """
    from ruleflow.exceptions import ConfigurationError

    try:
        initial_state = json.loads(state)
    except json.JSONDecodeError as exc:
        console.print(f"[red]--state is not valid JSON:[/red] {exc}")
        raise typer.Exit(2)
    if not isinstance(initial_state, dict):
        console.print("[red]--state must be a JSON object[/red]")
        raise typer.Exit(2)

    try:
        result, recorder = asyncio.run(_execute(config, flow, initial_state, trace))
    except (ConfigurationError, FileNotFoundError) as exc:
        fail_on_config_error(exc)
    except Exception as exc:
        console.print(f"[bold red]Flow '{flow}' failed:[/bold red] {type(exc).__name__}: {exc}")
        raise typer.Exit(1)

    if recorder is not None:
        console.print(_trace_table(recorder))
    console.print(Panel(
        json.dumps(result.state, indent=2, default=str),
        title=f"[bold]{flow}[/bold] final state",
        border_style="green",
    ))
    console.print(f"[dim]lastResult:[/dim] {json.dumps(result.last_result, default=str)}")
