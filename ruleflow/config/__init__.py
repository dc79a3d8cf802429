"""Application settings + declarative YAML runner config loader for ruleflow.

All env vars defined here with RULEFLOW_ prefix.
YAML loader: load_runner_config()
"""

from typing import Optional

from pydantic_settings import BaseSettings

from ruleflow.config.loader import LoadedRunnerConfig, load_runner_config, parse_runner_config
from ruleflow.config.schema import (
    ClosureConfig, FlowClosureConfig, FlowConfig, InputConfig, LoggerConfig,
    RespondClosureConfig, RunnerConfig, SecretsConfig, SetStateClosureConfig,
)
from ruleflow.config.secrets import apply_secrets, resolve_secrets


class RuleflowSettings(BaseSettings):
    # ── Logging ──
    log_level: str = "INFO"

    # ── Runner ──
    config_path: Optional[str] = None           # default runner YAML for the CLI

    # ── Plugins ──
    plugin_modules: list[str] = []              # modules imported for their @closure registrations

    # ── Engine ──
    record_level: str = "full"                  # none | timing | params | state | full

    # ── Scheduler ──
    scheduler_cron_tz: str = "UTC"              # timezone cron expressions are evaluated in

    model_config = {"env_prefix": "RULEFLOW_", "env_file": ".env", "extra": "ignore"}


_settings: Optional[RuleflowSettings] = None


def get_settings() -> RuleflowSettings:
    """Process-wide settings, read from the environment on first use."""
    global _settings
    if _settings is None:
        _settings = RuleflowSettings()
    return _settings


def reset_settings() -> None:
    """Drop cached settings so the next get_settings() re-reads the environment."""
    global _settings
    _settings = None


__all__ = [
    "RuleflowSettings",
    "get_settings",
    "reset_settings",
    "load_runner_config",
    "parse_runner_config",
    "LoadedRunnerConfig",
    "RunnerConfig",
    "LoggerConfig",
    "InputConfig",
    "ClosureConfig",
    "SetStateClosureConfig",
    "RespondClosureConfig",
    "FlowClosureConfig",
    "FlowConfig",
    "SecretsConfig",
    "resolve_secrets",
    "apply_secrets",
]
