"""Callback/hook system for ruleflow lifecycle events."""

from ruleflow.callbacks.base import BaseCallback, FlowCallback, StepRecorder
from ruleflow.callbacks.logging import LoggingCallback

__all__ = ["BaseCallback", "FlowCallback", "StepRecorder", "LoggingCallback"]
