"""Structured JSON logging callback for ruleflow lifecycle events."""

import json
import logging
from datetime import datetime, timezone
from typing import Any

from ruleflow.callbacks.base import BaseCallback

logger = logging.getLogger("ruleflow.audit")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _dump(payload: dict) -> str:
    return json.dumps(payload, default=str)


class LoggingCallback(BaseCallback):
    """Emits one JSON log line per lifecycle event.

    Each line is a self-contained JSON object with:
      - event: event type name
      - ts: ISO-8601 UTC timestamp
      - relevant fields depending on event

    Log level: INFO for normal events, ERROR for failures.
    Logger name: ruleflow.audit (configure in your logging setup)

    Parameters and state snapshots are reduced to their keys so a log line
    never carries request payloads.
    """

    async def on_flow_start(self, data: dict[str, Any], **kwargs: Any) -> None:
        logger.info(_dump({"event": "flow_start", "ts": _now(), "flow": data.get("flow", "")}))

    async def on_flow_complete(self, data: dict[str, Any], **kwargs: Any) -> None:
        logger.info(_dump({
            "event": "flow_complete",
            "ts": _now(),
            "flow": data.get("flow", ""),
            "duration_ms": data.get("duration_ms"),
        }))

    async def on_flow_error(self, data: dict[str, Any], **kwargs: Any) -> None:
        logger.error(_dump({
            "event": "flow_error",
            "ts": _now(),
            "flow": data.get("flow", ""),
            "duration_ms": data.get("duration_ms"),
            "error": str(data.get("error", ""))[:500],
        }))

    async def on_step_enter(self, data: dict[str, Any], **kwargs: Any) -> None:
        params = data.get("params")
        logger.info(_dump({
            "event": "step_enter",
            "ts": _now(),
            "flow": data.get("flow", ""),
            "closure": data.get("closure", ""),
            "param_keys": sorted(params) if isinstance(params, dict) else None,
        }))

    async def on_step_exit(self, data: dict[str, Any], **kwargs: Any) -> None:
        state = data.get("state_after")
        logger.info(_dump({
            "event": "step_exit",
            "ts": _now(),
            "flow": data.get("flow", ""),
            "closure": data.get("closure", ""),
            "duration_ms": data.get("duration_ms"),
            "result_type": type(data.get("output")).__name__,
            "state_keys": sorted(state) if isinstance(state, dict) else None,
        }))

    async def on_step_error(self, data: dict[str, Any], **kwargs: Any) -> None:
        logger.error(_dump({
            "event": "step_error",
            "ts": _now(),
            "flow": data.get("flow", ""),
            "closure": data.get("closure", ""),
            "duration_ms": data.get("duration_ms"),
            "error": str(data.get("error", ""))[:500],
        }))
