"""Test fixtures: engines, sample flows, runner YAML, and registry isolation.

All tests should use these fixtures for consistency.
"""

import logging
import textwrap

import pytest

from ruleflow.closures.plugin import define_closure, reset_closure_registry
from ruleflow.config import reset_settings
from ruleflow.core.engine import FlowEngine
from ruleflow.triggers.inputs import reset_input_plugins


@pytest.fixture(autouse=True)
def _isolate_registries(monkeypatch):
    """Process-wide registries and cached settings start empty for every test."""
    for var in ("RULEFLOW_CONFIG_PATH", "RULEFLOW_PLUGIN_MODULES", "RULEFLOW_RECORD_LEVEL"):
        monkeypatch.delenv(var, raising=False)
    reset_closure_registry()
    reset_input_plugins()
    reset_settings()
    level = logging.getLogger("ruleflow").level
    yield
    logging.getLogger("ruleflow").setLevel(level)
    reset_closure_registry()
    reset_input_plugins()
    reset_settings()


@pytest.fixture
def engine():
    """Engine with built-ins only."""
    return FlowEngine()


@pytest.fixture
def checkout_flow():
    """Order routing flow: large orders are queued, VIPs are tagged."""
    return {
        "name": "checkout",
        "steps": [
            {"closure": "assign", "parameters": {"target": "order.total", "value": "${request.body.total}"}},
            {
                "type": "branch",
                "cases": [
                    {
                        "when": {"closure": "greaterThan", "parameters": {"left": "${order.total}", "right": 100}},
                        "steps": [
                            {"closure": "assign", "parameters": {"target": "order.category", "value": "vip"}},
                            {
                                "closure": "respond",
                                "parameters": {
                                    "status": 202,
                                    "body": {"status": "queued", "category": "${order.category}"},
                                },
                            },
                        ],
                    },
                ],
                "otherwise": [
                    {"closure": "respond", "parameters": {"status": 200, "body": {"status": "accepted"}}},
                ],
            },
        ],
    }


@pytest.fixture
def recording_closure():
    """A closure that appends ``(state snapshot, parameters)`` to ``.calls`` and returns its ``result`` param."""
    calls = []

    def handler(state, context):
        calls.append((dict(state), dict(context.parameters)))
        return context.parameters.get("result")

    definition = define_closure(handler, name="record", allow_additional_parameters=True)
    definition.metadata["calls"] = calls
    return definition


@pytest.fixture
def runner_yaml(tmp_path):
    """Write a runner YAML file under tmp_path and return its path."""
    def _write(body: str, name: str = "ruleflow.yaml"):
        path = tmp_path / name
        path.write_text(textwrap.dedent(body))
        return path
    return _write


SAMPLE_RUNNER = """
version: 1
logger:
  level: warn
metadata:
  service: orders
closures:
  - type: template
    template: set-state
    name: markSeen
    target: seen
    value: true
  - type: template
    template: respond
    name: notFound
    status: 404
    body:
      error: "${missing}"
  - type: flow
    name: greet
    steps:
      - closure: assign
        parameters:
          target: greeting
          value: "hello ${params.who}"
flows:
  - name: checkout
    steps:
      - closure: markSeen
      - closure: greet
        parameters:
          who: world
      - closure: respond
        parameters:
          body:
            greeting: "${greeting}"
"""


@pytest.fixture
def sample_runner_path(runner_yaml):
    return runner_yaml(SAMPLE_RUNNER)
