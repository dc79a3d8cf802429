"""Pydantic models for YAML runner configuration.

A runner config file looks like::

    version: 1
    logger: {level: info}
    secrets:
      inline: {API_TOKEN: abc123}
      env: {DB_PASSWORD: ORDERS_DB_PASSWORD}
    inputs:
      - type: scheduler
        jobs: [{name: tick, flow: heartbeat, interval: 5s}]
    closures:
      - {type: template, template: set-state, name: markSeen, target: seen, value: true}
      - {type: flow, name: audit, steps: [...]}
    flows:
      - name: heartbeat
        steps: [...]

Inputs are only checked for a ``type`` here; each input plugin validates the
rest of its entry against its own schema at startup.
"""

from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag, field_validator

from ruleflow.types import FlowDefinition, Step

LogLevel = Literal["trace", "debug", "info", "warn", "error", "fatal"]


class LoggerConfig(BaseModel):
    level: LogLevel = "info"

    @field_validator("level", mode="before")
    @classmethod
    def lower_level(cls, v):
        if isinstance(v, str):
            return v.lower()
        return v


class InputConfig(BaseModel):
    """One ``inputs`` entry. Plugin-specific keys are kept as extras."""
    model_config = ConfigDict(extra="allow")

    type: str = Field(min_length=1)


class SetStateClosureConfig(BaseModel):
    """``template: set-state``: write a configured (templated) value at ``target``."""
    model_config = ConfigDict(extra="forbid")

    type: Literal["template"] = "template"
    template: Literal["set-state"] = "set-state"
    name: str = Field(min_length=1)
    description: Optional[str] = None
    target: str = Field(min_length=1)
    value: Any = None
    merge: bool = False


class RespondClosureConfig(BaseModel):
    """``template: respond``: write a configured response envelope to ``state.response``."""
    model_config = ConfigDict(extra="forbid")

    type: Literal["template"] = "template"
    template: Literal["respond"] = "respond"
    name: str = Field(min_length=1)
    description: Optional[str] = None
    status: int = 200
    headers: Optional[dict[str, str]] = None
    body: Any = None


class FlowClosureConfig(BaseModel):
    """``type: flow``: a reusable step sequence callable like any other closure."""
    model_config = ConfigDict(extra="forbid")

    type: Literal["flow"] = "flow"
    name: str = Field(min_length=1)
    description: Optional[str] = None
    steps: list[Step] = Field(min_length=1)


def _closure_kind(value: Any) -> str:
    if isinstance(value, dict):
        if value.get("type") == "flow":
            return "flow"
        return value.get("template", "")
    if isinstance(value, FlowClosureConfig):
        return "flow"
    return getattr(value, "template", "")


ClosureConfig = Annotated[
    Union[
        Annotated[SetStateClosureConfig, Tag("set-state")],
        Annotated[RespondClosureConfig, Tag("respond")],
        Annotated[FlowClosureConfig, Tag("flow")],
    ],
    Discriminator(_closure_kind),
]


class FlowConfig(FlowDefinition):
    """A flow entry. Unlike engine-registered flows, config flows need at least one step."""
    steps: list[Step] = Field(min_length=1)


class SecretFileConfig(BaseModel):
    """One secret read from a file; a single trailing newline is dropped."""
    model_config = ConfigDict(extra="forbid")

    key: str = Field(min_length=1)
    path: str = Field(min_length=1)
    encoding: str = "utf-8"


class DotenvConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    path: Optional[str] = None                  # defaults to .env next to the runner file
    encoding: str = "utf-8"
    required: bool = False


class SecretsConfig(BaseModel):
    """``secrets``: values substituted for ``${secrets.KEY}`` before the file is validated.

    Sources are merged in order, later ones winning: dotenv, inline, env, files.
    ``env`` maps a secret key to the name of an environment variable.
    """
    model_config = ConfigDict(extra="forbid")

    inline: dict[str, str] = Field(default_factory=dict)
    env: dict[str, str] = Field(default_factory=dict)
    files: list[SecretFileConfig] = Field(default_factory=list)
    dotenv: Optional[DotenvConfig] = None

    @field_validator("inline", "env", "files", mode="before")
    @classmethod
    def none_as_empty(cls, v, info):
        if v is None:
            return [] if info.field_name == "files" else {}
        return v


class RunnerConfig(BaseModel):
    """Root schema for a runner YAML file."""
    version: int = Field(default=1, gt=0)
    logger: LoggerConfig = Field(default_factory=LoggerConfig)
    metadata: dict[str, Any] = Field(default_factory=dict)
    inputs: list[InputConfig] = Field(default_factory=list)
    closures: list[ClosureConfig] = Field(default_factory=list)
    secrets: Optional[SecretsConfig] = None
    flows: list[FlowConfig] = Field(min_length=1)

    @field_validator("metadata", "inputs", "closures", mode="before")
    @classmethod
    def none_as_empty(cls, v, info):
        if v is None:
            return {} if info.field_name == "metadata" else []
        return v

    def inputs_of_type(self, input_type: str) -> list[InputConfig]:
        return [entry for entry in self.inputs if entry.type == input_type]
