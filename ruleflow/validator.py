"""Static checks of a runner config against the closures it will run with.

Reports every problem instead of stopping at the first one:

  - a step or condition names a closure that is not registered
  - a required parameter is missing (absent or null)
  - a ``flowSteps`` parameter is not a list
  - a parameter is not declared and the closure does not allow extras
  - a closure carries no signature (nothing can be checked)

Errors make the config invalid; warnings are informational.
"""

import logging
from typing import Iterable, Literal, Optional

from pydantic import BaseModel, Field

from ruleflow.config.schema import RunnerConfig
from ruleflow.types import BranchStep, ClosureDefinition, ClosureSignature, Condition, ParameterType

logger = logging.getLogger(__name__)


class ValidationIssue(BaseModel):
    level: Literal["error", "warning"]
    message: str
    flow: Optional[str] = None
    closure: Optional[str] = None
    path: Optional[str] = None

    def __str__(self) -> str:
        text = f"[{self.level}] {self.message}"
        if self.path:
            text += f" @ {self.path}"
        if self.flow:
            text += f" (flow: {self.flow})"
        return text


class ValidationResult(BaseModel):
    valid: bool = True
    issues: list[ValidationIssue] = Field(default_factory=list)

    @property
    def errors(self) -> list[ValidationIssue]:
        return [i for i in self.issues if i.level == "error"]

    @property
    def warnings(self) -> list[ValidationIssue]:
        return [i for i in self.issues if i.level == "warning"]


class _FlowValidator:
    def __init__(self, flow_name: str, signatures: dict[str, ClosureSignature], issues: list):
        self.flow = flow_name
        self.signatures = signatures
        self.issues = issues

    def error(self, message: str, closure: str = None, path: str = None) -> None:
        self.issues.append(ValidationIssue(
            level="error", message=message, flow=self.flow, closure=closure, path=path,
        ))

    def visit_steps(self, steps, path: str) -> None:
        for index, step in enumerate(steps):
            step_path = f"{path}.steps[{index}]"
            if isinstance(step, BranchStep):
                for case_index, case in enumerate(step.cases):
                    case_path = f"{step_path}.cases[{case_index}]"
                    self.visit_conditions(case.when, f"{case_path}.when")
                    self.visit_steps(case.steps, case_path)
                if step.otherwise is not None:
                    self.visit_steps(step.otherwise, f"{step_path}.otherwise")
                continue

            signature = self.check_closure(step.closure, step_path, kind="Closure")
            if signature is not None:
                self.check_parameters(step.parameters, signature, step.closure, step_path)
            if step.when:
                self.visit_conditions(step.when, f"{step_path}.when")

    def visit_conditions(self, conditions: list[Condition], path: str) -> None:
        for index, condition in enumerate(conditions):
            cond_path = f"{path}[{index}]"
            signature = self.check_closure(condition.closure, cond_path, kind="Condition closure")
            if signature is not None:
                self.check_parameters(condition.parameters, signature, condition.closure, cond_path)

    def check_closure(self, name: str, path: str, kind: str) -> Optional[ClosureSignature]:
        signature = self.signatures.get(name)
        if signature is None:
            self.error(f'{kind} "{name}" is not registered.', closure=name, path=path)
        return signature

    def check_parameters(self, parameters: dict, signature: ClosureSignature, closure: str, path: str) -> None:
        for descriptor in signature.parameters:
            value = parameters.get(descriptor.name)
            if descriptor.required and value is None:
                self.error(
                    f'Closure "{closure}" is missing required parameter "{descriptor.name}".',
                    closure=closure, path=path,
                )
                continue
            if value is not None and descriptor.type == ParameterType.FLOW_STEPS and not isinstance(value, list):
                self.error(
                    f'Parameter "{descriptor.name}" on closure "{closure}" must be an array of steps.',
                    closure=closure, path=path,
                )

        if signature.allow_additional_parameters:
            return
        allowed = {d.name for d in signature.parameters}
        for key in parameters:
            if key not in allowed:
                self.error(
                    f'Parameter "{key}" is not defined for closure "{closure}".',
                    closure=closure, path=path,
                )


def validate_runner_config(config: RunnerConfig, closures: Iterable[ClosureDefinition]) -> ValidationResult:
    """Check every flow in *config* against *closures* (built-ins included by the caller)."""
    issues: list[ValidationIssue] = []
    signatures: dict[str, ClosureSignature] = {}

    for definition in closures:
        if definition.signature is None:
            issues.append(ValidationIssue(
                level="error",
                message=f'Closure "{definition.name}" is missing signature metadata.',
                closure=definition.name,
            ))
            continue
        signatures[definition.name] = definition.signature

    flow_names = set()
    for flow in config.flows:
        if flow.name in flow_names:
            issues.append(ValidationIssue(
                level="error", message=f'Flow "{flow.name}" is declared more than once.', flow=flow.name,
            ))
        flow_names.add(flow.name)
        _FlowValidator(flow.name, signatures, issues).visit_steps(flow.steps, f"flows[{flow.name}]")

    for index, entry in enumerate(config.closures):
        steps = getattr(entry, "steps", None)
        if steps is not None:
            _FlowValidator(entry.name, signatures, issues).visit_steps(steps, f"closures[{index}]")

    for entry in config.inputs_of_type("init") + config.inputs_of_type("scheduler"):
        extra = entry.model_extra or {}
        targets = [extra.get("flow")] if entry.type == "init" else [
            job.get("flow") for job in (extra.get("jobs") or extra.get("triggers") or [])
            if isinstance(job, dict)
        ]
        for target in targets:
            if target and target not in flow_names:
                issues.append(ValidationIssue(
                    level="warning",
                    message=f'Input "{entry.type}" references unknown flow "{target}".',
                    flow=target,
                ))

    result = ValidationResult(valid=not any(i.level == "error" for i in issues), issues=issues)
    logger.debug("Validated runner config: %d issues, valid=%s", len(issues), result.valid)
    return result
