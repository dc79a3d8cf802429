"""Secrets hydration for runner files.

Every ``${secrets.KEY}`` in the raw YAML tree is replaced with its value
before the tree is validated, so secrets never reach flow state or the
template resolver. An unknown key is a configuration error.
"""

import logging
import os
import re
from pathlib import Path
from typing import Any, Optional

from dotenv import dotenv_values

from ruleflow.config.schema import SecretsConfig
from ruleflow.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

_SECRET_RE = re.compile(r"\$\{secrets\.([A-Za-z0-9_\-]+)\}")
_TRAILING_NEWLINE_RE = re.compile(r"\r?\n\Z")


def _resolve_path(raw: str, config_dir: Path) -> Path:
    path = Path(raw).expanduser()
    return path if path.is_absolute() else config_dir / path


def resolve_secrets(config: Optional[SecretsConfig], config_dir: Path) -> dict[str, str]:
    """Collect secret values from every configured source.

    Relative paths are resolved against *config_dir*. A missing dotenv file is
    skipped unless ``required``; an unreadable secret file always fails.

    Raises:
        ConfigurationError: on a required dotenv file or secret file that cannot be read
    """
    secrets: dict[str, str] = {}
    if config is None:
        return secrets

    if config.dotenv is not None:
        path = _resolve_path(config.dotenv.path or ".env", config_dir)
        if path.is_file():
            values = dotenv_values(path, encoding=config.dotenv.encoding)
            secrets.update({k: v for k, v in values.items() if v is not None})
        elif config.dotenv.required:
            raise ConfigurationError(
                f"Failed to load dotenv file at {path}", details={"path": str(path)}
            )
        else:
            logger.debug("Optional dotenv file %s not found", path)

    secrets.update(config.inline)

    for key, env_name in config.env.items():
        value = os.environ.get(env_name)
        if value is not None:
            secrets[key] = value

    for entry in config.files:
        path = _resolve_path(entry.path, config_dir)
        try:
            content = path.read_text(encoding=entry.encoding)
        except OSError as exc:
            raise ConfigurationError(
                f"Failed to read secret {entry.key!r} from {path}: {exc}",
                details={"secret": entry.key, "path": str(path)},
            ) from exc
        secrets[entry.key] = _TRAILING_NEWLINE_RE.sub("", content)

    logger.debug("Resolved %d secrets", len(secrets))
    return secrets


def apply_secrets(value: Any, secrets: dict[str, str]) -> Any:
    """Return a copy of *value* with ``${secrets.KEY}`` replaced in every string.

    Raises:
        ConfigurationError: if a placeholder names a key missing from *secrets*
    """
    if isinstance(value, list):
        return [apply_secrets(item, secrets) for item in value]
    if isinstance(value, dict):
        return {key: apply_secrets(item, secrets) for key, item in value.items()}
    if isinstance(value, str):
        def _substitute(match: re.Match) -> str:
            key = match.group(1)
            if key not in secrets:
                raise ConfigurationError(f'Secret "{key}" is not defined', details={"secret": key})
            return secrets[key]

        return _SECRET_RE.sub(_substitute, value)
    return value
