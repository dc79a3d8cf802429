"""ruleflow CLI: Typer application."""

import logging

import typer
from rich.console import Console

from ruleflow.version import __version__

app = typer.Typer(
    name="ruleflow",
    help="ruleflow: run YAML-declared flows of closures from requests, schedules and startup hooks.",
    no_args_is_help=True,
    invoke_without_command=True,
)
console = Console()


@app.callback()
def main(
    ctx: typer.Context,
    version: bool = typer.Option(False, "--version", "-v", is_eager=True, help="Show version"),
    log_level: str = typer.Option(None, "--log-level", help="Override RULEFLOW_LOG_LEVEL"),
):
    """ruleflow CLI."""
    if version:
        console.print(f"ruleflow v{__version__}")
        raise typer.Exit()

    from ruleflow.config import get_settings
    from ruleflow.runner import to_logging_level

    logging.basicConfig(
        level=to_logging_level(log_level or get_settings().log_level),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


from ruleflow.cli.commands import closures, execute, run, validate  # noqa: E402

app.command(name="run", help="Start a runner and keep it alive until SIGINT/SIGTERM")(run.run_runner)
app.command(name="validate", help="Validate a runner config against its closures")(validate.validate_runner)
app.command(name="execute", help="Run one flow once and print the final state")(execute.execute_flow)
app.command(name="closures", help="List the closures a runner config can use")(closures.closures_list)


if __name__ == "__main__":
    app()
