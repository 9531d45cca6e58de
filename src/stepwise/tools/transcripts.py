"""Per-attempt prompt/response transcripts for generator calls."""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import asdict, is_dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from ..models.llm_client import AttemptLogger
from ..utils.slug import slugify

LOGGER = logging.getLogger(__name__)


class TranscriptWriter:
    """Write one input file and one output file per LLM attempt.

    Files land in ``<logs_root>/generator`` and are named
    ``{input|output}__<operation>__<subject>__attempt-N__<timestamp>__<id>.txt``.
    Failing to write a transcript never fails the call being logged.
    """

    def __init__(self, logs_root: Path | str) -> None:
        self.root = Path(logs_root) / "generator"

    def attempt_logger(self, operation: str, subject: str | None = None) -> AttemptLogger:
        def _log(
            payload: dict[str, Any],
            raw: str | None,
            parsed: Any,
            error: Exception | None,
            attempt: int,
        ) -> None:
            self._write_input(operation, subject, payload, attempt)
            self._write_output(operation, subject, raw, parsed, error, attempt)

        return _log

    # ----------------------------------------------------------------- files
    def _path_for(self, kind: str, operation: str, subject: str | None, attempt: int) -> Path:
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
        parts = [kind, slugify(operation, fallback="call")]
        if subject:
            parts.append(slugify(subject))
        parts.extend([f"attempt-{attempt}", timestamp, uuid.uuid4().hex[:8]])
        return self.root / ("__".join(parts) + ".txt")

    def _write(self, path: Path, lines: list[str]) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text("\n".join(lines), encoding="utf-8")
        except OSError as error:
            LOGGER.debug("Unable to write transcript %s: %s", path, error)

    def _write_input(
        self,
        operation: str,
        subject: str | None,
        payload: dict[str, Any] | None,
        attempt: int,
    ) -> None:
        if not isinstance(payload, dict):
            return
        lines = _header(operation, subject, attempt)
        model_name = payload.get("model")
        if isinstance(model_name, str) and model_name:
            lines.append(f"Model: {model_name}")
        metadata = payload.get("metadata")
        if metadata:
            lines.extend(["", "Metadata:", json.dumps(metadata, indent=2, sort_keys=True, ensure_ascii=False)])
        sections = format_prompt_sections(payload.get("input"))
        if sections:
            lines.append("")
            lines.extend(sections)
        self._write(self._path_for("input", operation, subject, attempt), lines)

    def _write_output(
        self,
        operation: str,
        subject: str | None,
        raw: str | None,
        parsed: Any,
        error: Exception | None,
        attempt: int,
    ) -> None:
        if raw is None and error is None:
            return
        lines = _header(operation, subject, attempt)
        if error is not None:
            lines.append(f"Error: {error}")
        lines.extend(["", "Raw Response:", raw or ""])
        if parsed is not None:
            lines.extend(
                [
                    "",
                    "Parsed Response:",
                    json.dumps(json_safe(parsed), indent=2, sort_keys=True, ensure_ascii=False),
                ]
            )
        self._write(self._path_for("output", operation, subject, attempt), lines)


def _header(operation: str, subject: str | None, attempt: int) -> list[str]:
    lines = [
        f"Timestamp: {datetime.now(timezone.utc).isoformat()}",
        f"Operation: {operation}",
        f"Attempt: {attempt}",
    ]
    if subject:
        lines.append(f"Subject: {subject}")
    return lines


def format_prompt_sections(messages: Any) -> list[str]:
    """Return formatted prompt sections extracted from the request payload."""
    sections: list[str] = []
    if not isinstance(messages, list):
        return sections

    for message in messages:
        if not isinstance(message, dict):
            continue
        role = str(message.get("role") or "").strip()
        heading = f"{role.title()} Prompt:" if role else "Prompt:"

        content_items = message.get("content")
        if not isinstance(content_items, list):
            continue

        fragments = [
            item["text"].strip()
            for item in content_items
            if isinstance(item, dict) and isinstance(item.get("text"), str) and item["text"].strip()
        ]
        if fragments:
            sections.append(f"{heading}\n" + "\n\n".join(fragments))
    return sections


def json_safe(value: Any) -> Any:
    """Coerce complex objects into JSON-serialisable representations."""
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Path):
        return value.as_posix()
    if is_dataclass(value) and not isinstance(value, type):
        return json_safe(asdict(value))
    if isinstance(value, dict):
        return {str(key): json_safe(val) for key, val in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [json_safe(item) for item in value]
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="ignore")
    return str(value)


__all__ = ["TranscriptWriter", "format_prompt_sections", "json_safe"]
