"""Deterministic stand-in client used for dry runs without a model."""

from __future__ import annotations

import json
from typing import Any, Dict

from .llm_client import LLMClient

__all__ = ["OFFLINE_SUFFIX", "OfflineLLMClient", "is_offline_model"]

OFFLINE_SUFFIX = "-offline"


def is_offline_model(name: str | None) -> bool:
    return bool(name) and str(name).endswith(OFFLINE_SUFFIX)


class OfflineLLMClient(LLMClient):
    """Local stub that synthesizes deterministic JSON responses for demos/tests.

    Code tasks receive a plan containing a single ``pass`` action, so a batch
    can be walked end to end without touching any file.
    """

    def __init__(self, model: str = "offline") -> None:
        super().__init__(model, max_attempts=1, retry_delay=0.0)

    def _raw_invoke(self, payload: Dict[str, Any]) -> str:
        metadata = payload.get("metadata") or {}
        operation = str(metadata.get("operation", "unknown"))
        subject = str(metadata.get("subject") or "task")
        return json.dumps(self._build_response(operation, subject))

    def _build_response(self, operation: str, subject: str) -> Dict[str, Any]:
        if operation == "plan_actions":
            return {
                "summary": f"Offline plan for {subject}",
                "actions": [{"kind": "pass", "reason": "offline mode makes no changes"}],
            }
        if operation == "analyze":
            return {"summary": f"Offline analysis of {subject}: no findings recorded."}
        if operation == "generate_edits":
            return {"edits": []}
        if operation == "generate_file":
            return {"code": ""}
        return {}
