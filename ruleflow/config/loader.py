"""Load and validate a runner YAML file into a RunnerConfig.

Resolution order for the runner file:
  1. Path passed explicitly by caller
  2. RULEFLOW_CONFIG_PATH (settings.config_path)
  3. ./ruleflow.yaml in current working directory

``${secrets.KEY}`` placeholders are substituted before validation
(see ruleflow.config.secrets).
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import yaml
from pydantic import ValidationError

from ruleflow.config.schema import RunnerConfig, SecretsConfig
from ruleflow.config.secrets import apply_secrets, resolve_secrets
from ruleflow.exceptions import ConfigurationError

DEFAULT_CONFIG_NAME = "ruleflow.yaml"


@dataclass
class LoadedRunnerConfig:
    config: RunnerConfig
    config_path: Path
    config_dir: Path


def _find_file(name: str, explicit: Optional[Path], configured: Optional[str] = None) -> Path:
    """Locate config file: explicit > settings > cwd."""
    if explicit is not None:
        p = Path(explicit)
        if not p.exists():
            raise FileNotFoundError(f"Config file not found: {p}")
        return p

    if configured:
        p = Path(configured)
        if not p.exists():
            raise FileNotFoundError(f"Config file not found: {p} (from RULEFLOW_CONFIG_PATH)")
        return p

    cwd_path = Path.cwd() / name
    if cwd_path.exists():
        return cwd_path

    raise FileNotFoundError(
        f"No {name} found. Create one in your project directory "
        f"or pass a path with --config."
    )


def _violations(exc: ValidationError, prefix: tuple = ()) -> list[str]:
    return [
        f"{'.'.join(str(p) for p in prefix + tuple(err.get('loc', ())))}: {err['msg']}"
        for err in exc.errors()
    ]


def parse_runner_config(raw, config_dir: Optional[Path] = None) -> RunnerConfig:
    """Hydrate ``${secrets.KEY}`` placeholders, then validate an already-parsed mapping.

    Secret files and dotenv paths are resolved against *config_dir* (default: cwd).

    Raises:
        ConfigurationError: with one violation per pydantic error in ``details``,
            or for a secret that cannot be resolved
    """
    raw = raw or {}
    if isinstance(raw, dict):
        try:
            secrets_config = SecretsConfig.model_validate(raw.get("secrets") or {})
        except ValidationError as exc:
            raise ConfigurationError(
                "Invalid runner configuration", details={"violations": _violations(exc, ("secrets",))}
            ) from exc
        secrets = resolve_secrets(secrets_config, Path(config_dir) if config_dir else Path.cwd())
        raw = apply_secrets(raw, secrets)

    try:
        return RunnerConfig.model_validate(raw)
    except ValidationError as exc:
        raise ConfigurationError(
            "Invalid runner configuration", details={"violations": _violations(exc)}
        ) from exc


def load_runner_config(path: Optional[Path] = None) -> LoadedRunnerConfig:
    """Load a runner YAML file → LoadedRunnerConfig.

    Args:
        path: Explicit path to the runner file. If None, uses RULEFLOW_CONFIG_PATH
            then ./ruleflow.yaml.
    """
    from ruleflow.config import get_settings

    resolved = _find_file(DEFAULT_CONFIG_NAME, path, get_settings().config_path).resolve()
    raw = yaml.safe_load(resolved.read_text())
    if raw is not None and not isinstance(raw, dict):
        raise ConfigurationError(f"Runner config {resolved} must be a mapping")
    return LoadedRunnerConfig(
        config=parse_runner_config(raw, resolved.parent),
        config_path=resolved,
        config_dir=resolved.parent,
    )
