"""Structured telemetry events emitted as single-line JSON log records."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Mapping

TELEMETRY_LOGGER = logging.getLogger("stepwise.telemetry")


def _serialise_event_value(value: Any) -> Any:
    """Convert telemetry payload values into JSON-friendly representations."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, Path):
        return value.as_posix()
    if isinstance(value, (list, tuple, set)):
        return [_serialise_event_value(item) for item in value]
    if isinstance(value, Mapping):
        return {str(key): _serialise_event_value(child) for key, child in value.items()}
    return str(value)


def emit_event(event: str, **fields: Any) -> None:
    """Log a structured telemetry event."""
    if not TELEMETRY_LOGGER.isEnabledFor(logging.INFO):
        return
    payload = {"event": event, "timestamp": datetime.now(timezone.utc).isoformat()}
    for key, value in fields.items():
        payload[key] = _serialise_event_value(value)
    try:
        message = json.dumps(payload, separators=(",", ":"), ensure_ascii=True)
    except (TypeError, ValueError):
        fallback = {key: str(value) for key, value in payload.items()}
        message = json.dumps(fallback, separators=(",", ":"), ensure_ascii=True)
    TELEMETRY_LOGGER.info(message)


__all__ = ["TELEMETRY_LOGGER", "emit_event"]
