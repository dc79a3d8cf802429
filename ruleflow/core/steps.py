"""Validate raw step / flow mappings into typed models."""

from typing import Any

from pydantic import TypeAdapter, ValidationError

from ruleflow.exceptions import FlowValidationError
from ruleflow.types import BranchStep, FlowDefinition, InvokeStep, Step

_STEP_ADAPTER = TypeAdapter(Step)


def _violations(exc: ValidationError) -> list[str]:
    out = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err.get("loc", ()))
        out.append(f"{loc}: {err['msg']}" if loc else err["msg"])
    return out


def parse_step(raw: Any) -> InvokeStep | BranchStep:
    """Return *raw* as a typed step. Models pass through untouched."""
    if isinstance(raw, (InvokeStep, BranchStep)):
        return raw
    try:
        return _STEP_ADAPTER.validate_python(raw)
    except ValidationError as exc:
        raise FlowValidationError(
            f"Invalid flow step: {raw!r}", violations=_violations(exc)
        ) from exc


def parse_steps(raw: Any) -> list[InvokeStep | BranchStep]:
    if not isinstance(raw, (list, tuple)):
        raise FlowValidationError(
            f"Steps must be a list, got {type(raw).__name__}",
            violations=["steps: expected a list of steps"],
        )
    return [parse_step(item) for item in raw]


def parse_flow(raw: Any) -> FlowDefinition:
    if isinstance(raw, FlowDefinition):
        return raw
    try:
        return FlowDefinition.model_validate(raw)
    except ValidationError as exc:
        name = raw.get("name", "") if isinstance(raw, dict) else ""
        raise FlowValidationError(
            f"Invalid flow definition {name!r}", violations=_violations(exc)
        ) from exc
