"""Typed exception hierarchy. Every error ruleflow can raise."""


class RuleflowError(Exception):
    """Base exception for all ruleflow errors."""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.details = details or {}


# ── Configuration (fatal at the point of occurrence, never retried) ─────────


class ConfigurationError(RuleflowError):
    """Engine, runner, or input configuration is invalid."""
    pass


class DuplicateNameError(ConfigurationError):
    """A closure, flow, input plugin, or scheduler job name is already taken."""
    def __init__(self, message: str, name: str = "", kind: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.name = name
        self.kind = kind


class UnknownClosureError(ConfigurationError):
    """A step or condition references a closure that is not registered."""
    def __init__(self, message: str, closure_name: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.closure_name = closure_name


class UnknownFlowError(ConfigurationError):
    """Requested flow is not registered with the engine."""
    def __init__(self, message: str, flow_name: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.flow_name = flow_name


class UnknownInputTypeError(ConfigurationError):
    """No input plugin is registered for the configured input type."""
    def __init__(self, message: str, input_type: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.input_type = input_type


class MissingEngineReferenceError(ConfigurationError):
    """A closure needs to recurse into the engine but runtime carries none."""
    def __init__(self, message: str, closure_name: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.closure_name = closure_name


class SchedulerConfigError(ConfigurationError):
    """Scheduler job declares no trigger, several triggers, or an unparseable one."""
    def __init__(self, message: str, job_name: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.job_name = job_name


class FlowValidationError(ConfigurationError):
    """A flow or step definition is structurally invalid."""
    def __init__(self, message: str, violations: list = None, **kwargs):
        super().__init__(message, **kwargs)
        self.violations = violations or []


class RunnerValidationError(ConfigurationError):
    """Runner configuration failed validation against the registered closures."""
    def __init__(self, result, message: str = "Runner configuration validation failed", **kwargs):
        super().__init__(message, **kwargs)
        self.result = result


# ── Execution ────────────────────────────────────────────────────────────────


class ClosureExecutionError(RuleflowError):
    """A built-in closure rejected its parameters or failed while running."""
    def __init__(self, message: str, closure_name: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.closure_name = closure_name


class SchedulerRunError(RuleflowError):
    """A scheduled run failed. Recorded on the job state, never raised to the scheduler."""
    def __init__(self, message: str, job_name: str = "", flow: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.job_name = job_name
        self.flow = flow
