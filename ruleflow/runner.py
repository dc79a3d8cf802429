"""Runner: turn a runner YAML config into a live engine with its inputs started.

    runner = await create_runner("ruleflow.yaml")
    result = await runner.engine.execute("checkout", {"request": {...}})
    await runner.close()

Closures available to a runner, in registration order: the engine built-ins,
every ``@closure``-decorated plugin closure imported so far, then the
closures declared in the config file.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Union

from ruleflow.closures.builtin import create_builtin_closures
from ruleflow.closures.config import build_closures
from ruleflow.closures.plugin import get_registered_closures, load_plugin_modules
from ruleflow.config import get_settings, load_runner_config
from ruleflow.config.schema import RunnerConfig
from ruleflow.core.engine import FlowEngine
from ruleflow.exceptions import RunnerValidationError
from ruleflow.triggers.event_bus import EventBus
from ruleflow.triggers.inputs import InitializedInputs, initialize_inputs, register_builtin_inputs
from ruleflow.types import ClosureDefinition, RecordLevel
from ruleflow.validator import ValidationResult, validate_runner_config

logger = logging.getLogger(__name__)

_LOG_LEVELS = {
    "trace": logging.DEBUG,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "fatal": logging.CRITICAL,
    "critical": logging.CRITICAL,
}


def to_logging_level(level: Union[str, int]) -> int:
    """Map a config/env level name (``trace``, ``warn``, ``INFO``...) to a logging level."""
    if isinstance(level, int):
        return level
    return _LOG_LEVELS.get(str(level).lower(), logging.INFO)


def config_closures(config: RunnerConfig) -> list[ClosureDefinition]:
    """Plugin closures plus those declared in *config* (built-ins excluded).

    Modules listed in RULEFLOW_PLUGIN_MODULES are imported first.
    """
    load_plugin_modules(get_settings().plugin_modules)
    return get_registered_closures() + build_closures(config.closures)


def build_engine(
    config: RunnerConfig,
    callbacks: list = None,
    record_level: Optional[Union[RecordLevel, str]] = None,
) -> FlowEngine:
    """Create a FlowEngine holding every closure and flow of *config*."""
    return FlowEngine(
        closures=config_closures(config),
        flows=config.flows,
        callbacks=callbacks,
        record_level=record_level or get_settings().record_level,
    )


def validate_config(config: RunnerConfig) -> ValidationResult:
    return validate_runner_config(config, create_builtin_closures() + config_closures(config))


def validate_config_file(path: Optional[Path] = None) -> ValidationResult:
    """Load the runner file at *path* and validate it without starting anything."""
    return validate_config(load_runner_config(path).config)


@dataclass
class Runner:
    engine: FlowEngine
    config: RunnerConfig
    event_sink: Any
    inputs: InitializedInputs = field(default_factory=InitializedInputs)
    config_path: Optional[Path] = None
    closed: bool = False

    @property
    def scheduler(self):
        """The RunnerScheduler started by a ``scheduler`` input, if any."""
        return self.inputs.services.get("scheduler")

    async def execute(
        self, flow_name: str, initial_state: dict = None, runtime: dict = None, callbacks: list = None,
    ):
        """Run *flow_name* with the config's metadata merged under *runtime*."""
        merged = {"metadata": self.config.metadata, **(runtime or {})}
        return await self.engine.execute(flow_name, initial_state, merged, callbacks=callbacks)

    async def close(self) -> None:
        """Stop every input (scheduler timers included). Safe to call twice."""
        if self.closed:
            return
        self.closed = True
        await self.inputs.cleanup()
        logger.info("Runner closed")

    async def __aenter__(self) -> "Runner":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()


async def create_runner(
    source: Union[RunnerConfig, Path, str, None] = None,
    *,
    callbacks: list = None,
    event_sink: Any = None,
    start_inputs: bool = True,
) -> Runner:
    """Validate a config, build its engine, and start its inputs.

    Args:
        source: RunnerConfig, or a path to a runner YAML file (None searches
            RULEFLOW_CONFIG_PATH then ./ruleflow.yaml)
        callbacks: engine lifecycle callbacks
        event_sink: receives job:* / init:* events (a fresh EventBus by default)
        start_inputs: False builds the engine only, e.g. for one-off executions

    Raises:
        RunnerValidationError: the config has validation errors (each is logged)
        ConfigurationError: an input fails to initialize
    """
    config_path = None
    if isinstance(source, RunnerConfig):
        config = source
    else:
        loaded = load_runner_config(Path(source) if source is not None else None)
        config, config_path = loaded.config, loaded.config_path

    logging.getLogger("ruleflow").setLevel(to_logging_level(config.logger.level))

    validation = validate_config(config)
    for issue in validation.warnings:
        logger.warning("Validation issue %s", issue)
    if not validation.valid:
        for issue in validation.errors:
            logger.error("Validation issue %s", issue)
        raise RunnerValidationError(validation)

    engine = build_engine(config, callbacks=callbacks)
    runner = Runner(
        engine=engine,
        config=config,
        event_sink=event_sink if event_sink is not None else EventBus(),
        config_path=config_path,
    )
    if start_inputs and config.inputs:
        register_builtin_inputs()
        runner.inputs = await initialize_inputs(
            config.inputs, engine, logger, config.metadata, runner.event_sink,
        )
    logger.info(
        "Runner ready: %d flows, %d closures, %d inputs",
        len(engine.list_flows()), len(engine.list_closures()), len(config.inputs) if start_inputs else 0,
    )
    return runner
