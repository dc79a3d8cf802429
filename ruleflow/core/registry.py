"""Write-once registries for closures and flows.

Names are unique for the lifetime of a registry. There is no unregister;
``reset()`` exists for test isolation only.
"""

import logging

from ruleflow.exceptions import DuplicateNameError, UnknownClosureError, UnknownFlowError
from ruleflow.types import ClosureDefinition, FlowDefinition

logger = logging.getLogger(__name__)


class ClosureRegistry:
    """Maps closure name → ClosureDefinition."""

    def __init__(self):
        self._closures: dict[str, ClosureDefinition] = {}

    def register(self, definition: ClosureDefinition) -> None:
        """Register a closure.

        Raises:
            DuplicateNameError: if a closure with the same name already exists
        """
        if definition.name in self._closures:
            raise DuplicateNameError(
                f"Closure named '{definition.name}' is already registered",
                name=definition.name,
                kind="closure",
            )
        self._closures[definition.name] = definition
        logger.debug("Registered closure %s", definition.name)

    def resolve(self, name: str) -> ClosureDefinition:
        """Get a closure definition by name.

        Raises:
            UnknownClosureError: if the closure is not registered
        """
        try:
            return self._closures[name]
        except KeyError:
            raise UnknownClosureError(
                f"Closure '{name}' is not registered", closure_name=name
            ) from None

    def get(self, name: str) -> ClosureDefinition | None:
        return self._closures.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self._closures

    def __len__(self) -> int:
        return len(self._closures)

    def list_closures(self) -> list[ClosureDefinition]:
        """List all registered closures in registration order."""
        return list(self._closures.values())

    def reset(self) -> None:
        self._closures.clear()


class FlowRegistry:
    """Maps flow name → FlowDefinition."""

    def __init__(self):
        self._flows: dict[str, FlowDefinition] = {}

    def register(self, flow: FlowDefinition) -> None:
        """Register a flow.

        Raises:
            DuplicateNameError: if a flow with the same name already exists
        """
        if flow.name in self._flows:
            raise DuplicateNameError(
                f"Flow named '{flow.name}' is already registered",
                name=flow.name,
                kind="flow",
            )
        self._flows[flow.name] = flow
        logger.debug("Registered flow %s (%d steps)", flow.name, len(flow.steps))

    def resolve(self, name: str) -> FlowDefinition:
        """Get a flow by name.

        Raises:
            UnknownFlowError: if the flow is not registered
        """
        try:
            return self._flows[name]
        except KeyError:
            raise UnknownFlowError(f"Flow '{name}' is not registered", flow_name=name) from None

    def get(self, name: str) -> FlowDefinition | None:
        return self._flows.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self._flows

    def __len__(self) -> int:
        return len(self._flows)

    def list_flows(self) -> list[FlowDefinition]:
        return list(self._flows.values())

    def reset(self) -> None:
        self._flows.clear()
