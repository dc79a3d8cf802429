"""ruleflow run: start a runner and keep its inputs alive until interrupted."""

import asyncio
import signal
from pathlib import Path

from ruleflow.cli.commands._common import (
    CONFIG_OPTION, console, fail_on_config_error,
)


def _print_event(event: str, data: dict) -> None:
    fields = " ".join(f"{k}={v}" for k, v in (data or {}).items())
    style = "red" if event.endswith("failed") else "dim"
    console.print(f"[{style}]{event}[/{style}] {fields}")


async def _run(config) -> None:
    from ruleflow.callbacks import LoggingCallback
    from ruleflow.runner import create_runner
    from ruleflow.triggers import EventBus

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    loop.add_signal_handler(signal.SIGTERM, stop_event.set)
    loop.add_signal_handler(signal.SIGINT, stop_event.set)

    events = EventBus()
    events.subscribe("*", _print_event)

    runner = await create_runner(config, callbacks=[LoggingCallback()], event_sink=events)
    try:
        jobs = len(runner.scheduler.jobs) if runner.scheduler is not None else 0
        console.print(
            f"[bold green]Runner started[/bold green] "
            f"[dim]{len(runner.engine.list_flows())} flows, {jobs} scheduled jobs. "
            f"Press Ctrl+C to stop.[/dim]"
        )
        await stop_event.wait()
    finally:
        await runner.close()
        console.print("[dim]Runner stopped.[/dim]")


def run_runner(config: Path = CONFIG_OPTION):
    """Start the runner described by a config file.

    Runs ``init`` inputs, starts scheduler jobs, and blocks until SIGINT or
    SIGTERM. In-flight scheduled runs are not awaited on shutdown.

    Example:
        ruleflow run -c ruleflow.yaml
    """
    from ruleflow.exceptions import ConfigurationError

    try:
        asyncio.run(_run(config))
    except (ConfigurationError, FileNotFoundError) as exc:
        fail_on_config_error(exc)
