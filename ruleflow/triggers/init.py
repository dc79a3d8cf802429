"""``init`` input: run one flow once while the runner starts up."""

import logging
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from ruleflow.triggers.event_bus import EVENT_INIT_COMPLETED, emit_event
from ruleflow.triggers.inputs import InputPlugin, InputPluginResult

logger = logging.getLogger(__name__)


class InitInputConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: str = "init"
    flow: str = Field(min_length=1)
    initial_state: dict[str, Any] = Field(default_factory=dict, alias="initialState")
    runtime: dict[str, Any] = Field(default_factory=dict)


async def initialize_init_input(config: InitInputConfig, context) -> Optional[InputPluginResult]:
    """Execute the flow and wait for it; a failure aborts runner startup."""
    context.logger.info("Init input executing flow %r", config.flow)
    result = await context.engine.execute(config.flow, config.initial_state, config.runtime)
    await emit_event(context.event_sink, EVENT_INIT_COMPLETED, {"flow": config.flow})
    logger.debug("Init flow %s finished with %r", config.flow, result.last_result)
    return None


INIT_INPUT = InputPlugin(
    type="init",
    schema=InitInputConfig,
    initialize=initialize_init_input,
)
