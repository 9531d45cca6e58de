"""Typed client base class shared by all language-model integrations.

Every generator call asks for one JSON document matching a pydantic-validated
response type. :class:`LLMRequest` renders that call as a Responses-API
payload with a strict JSON schema; :class:`LLMClient` sends it, salvages the
JSON from the answer and validates it. Unusable answers are thrown away and
the model is asked again, so a malformed edit set never reaches the patch
engine.
"""

from __future__ import annotations

import json
import re
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Generic, List, Optional, Type, TypeVar

from pydantic import ValidationError
from pydantic.errors import PydanticUserError
from pydantic.type_adapter import TypeAdapter

__all__ = [
    "AttemptLogger",
    "ChatMessage",
    "LLMClient",
    "LLMClientError",
    "LLMRequest",
    "LLMResponseFormatError",
    "LLMRetryError",
    "LLMTransportError",
]


T = TypeVar("T")

# (payload, raw answer, parsed JSON, error, attempt number)
AttemptLogger = Callable[[Dict[str, Any], Optional[str], Optional[Any], Optional[Exception], int], None]

_FENCE = re.compile(r"^```[a-zA-Z]*\s*\n(?P<body>.*?)\n?```\s*$", re.DOTALL)
_TRAILING_COMMA = re.compile(r",(\s*[}\]])")
_TYPOGRAPHIC = str.maketrans({0x201C: '"', 0x201D: '"', 0x00A0: " ", 0xFEFF: ""})


class LLMClientError(RuntimeError):
    """Base error raised for structured LLM client failures."""


class LLMTransportError(LLMClientError):
    """Raised when the underlying transport fails to return a response."""


class LLMResponseFormatError(LLMClientError):
    """Raised when the model returns payload that is not valid JSON."""


class LLMRetryError(LLMClientError):
    """Raised after exhausting retries due to repeated validation failures."""


@dataclass(slots=True)
class ChatMessage:
    """One prior turn of a conversation replayed ahead of the prompt."""

    role: str
    text: str

    def to_input(self) -> Dict[str, Any]:
        content_type = "output_text" if self.role == "assistant" else "input_text"
        return {"role": self.role, "content": [{"type": content_type, "text": self.text}]}


@dataclass(slots=True)
class LLMRequest(Generic[T]):
    """One generator call: a prompt, its history and the expected response type.

    ``operation`` names the generator operation (``plan_actions``,
    ``generate_edits`` ...) and ``subject`` the task or file it concerns. Both
    travel as request metadata so transcripts and the offline client can tell
    calls apart.
    """

    prompt: str
    response_model: Type[T]
    model: Optional[str] = None
    system_prompt: Optional[str] = None
    history: List[ChatMessage] = field(default_factory=list)
    operation: Optional[str] = None
    subject: Optional[str] = None
    temperature: float = 0.0
    max_attempts: Optional[int] = None

    @property
    def schema_name(self) -> str:
        return getattr(self.response_model, "__name__", "stepwise_response")

    def json_schema(self) -> Dict[str, Any]:
        try:
            schema = TypeAdapter(self.response_model).json_schema()
        except PydanticUserError:  # pragma: no cover - exotic response types
            schema = {"type": "object"}
        return strict_schema(schema)

    def to_payload(self, default_model: str) -> Dict[str, Any]:
        """Render a transport-ready payload for the JSON responses API."""
        turns = list(self.history) + [ChatMessage("user", self.prompt)]
        if self.system_prompt:
            turns.insert(0, ChatMessage("system", self.system_prompt))

        payload: Dict[str, Any] = {
            "model": self.model or default_model,
            "input": [turn.to_input() for turn in turns],
            "text": {
                "format": {
                    "type": "json_schema",
                    "name": self.schema_name,
                    "schema": self.json_schema(),
                    "strict": True,
                }
            },
        }
        if self.temperature:
            payload["temperature"] = self.temperature
        metadata = {key: value for key, value in (("operation", self.operation), ("subject", self.subject)) if value}
        if metadata:
            payload["metadata"] = metadata
        return payload


def strict_schema(node: Any) -> Any:
    """Return ``node`` rewritten for strict structured output.

    Objects reject unknown keys and require every property; ``oneOf`` unions
    (the action plan) become ``anyOf`` because strict mode rejects ``oneOf``.
    """
    if isinstance(node, list):
        return [strict_schema(item) for item in node]
    if not isinstance(node, dict):
        return node
    node = {key: strict_schema(value) for key, value in node.items()}
    if "oneOf" in node:
        node["anyOf"] = node.pop("oneOf")
        node.pop("discriminator", None)
    if node.get("type") == "object":
        node["additionalProperties"] = False
        properties = node.get("properties")
        if isinstance(properties, dict):
            node["required"] = list(properties)
    return node


class LLMClient:
    """High-level helper that enforces JSON responses and schema validation.

    A response that is not JSON, or that does not validate against the
    request's response model, is discarded and the model is queried again.
    After ``max_attempts`` unusable responses :class:`LLMRetryError` is raised.
    """

    def __init__(self, model: str, *, max_attempts: int = 5, retry_delay: float = 0.5) -> None:
        self._model = model
        self._max_attempts = max_attempts
        self._retry_delay = retry_delay

    @property
    def model(self) -> str:
        """Return the default model name configured for this client."""
        return self._model

    def invoke(self, request: LLMRequest[T]) -> T:
        """Invoke the underlying model and return a validated response."""
        result, _ = self.invoke_structured(request)
        return result

    def invoke_structured(
        self,
        request: LLMRequest[T],
        *,
        logger: Optional[AttemptLogger] = None,
    ) -> tuple[T, Any]:
        """Invoke the model and return both the structured response and raw payload."""
        attempts = request.max_attempts or self._max_attempts
        adapter = TypeAdapter(request.response_model)
        payload = request.to_payload(self._model)
        last_error: Optional[Exception] = None

        for attempt in range(1, attempts + 1):
            raw: Optional[str] = None
            data: Optional[Any] = None
            try:
                raw = self._raw_invoke(payload)
                data = extract_json(raw)
                validated = adapter.validate_python(data)
            except (LLMResponseFormatError, ValidationError, LLMTransportError) as error:
                last_error = error
                if logger:
                    logger(payload, raw, data, error, attempt)
                if attempt < attempts:
                    time.sleep(self._retry_delay)
                continue
            if logger:
                logger(payload, raw, data, None, attempt)
            return validated, data

        raise LLMRetryError(
            f"No schema-valid {request.schema_name} from {request.model or self._model} "
            f"after {attempts} attempt(s): {last_error}"
        ) from last_error

    def _raw_invoke(self, payload: Dict[str, Any]) -> str:
        """Perform the transport call. Subclasses must implement."""
        raise NotImplementedError("Subclasses must implement _raw_invoke().")


def extract_json(raw: str) -> Any:
    """Decode the JSON document in a model answer.

    Markdown fences, surrounding prose and trailing commas are tolerated.
    Typographic double quotes are straightened; other characters inside string
    values (source code in edits) are left alone.
    """
    text = raw.strip().translate(_TYPOGRAPHIC)
    if not text:
        raise LLMResponseFormatError("Model returned an empty response.")
    fenced = _FENCE.match(text)
    if fenced:
        text = fenced.group("body").strip()

    repaired = _TRAILING_COMMA.sub(r"\1", text)
    for candidate in (text, repaired):
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            continue
    embedded = _first_embedded_object(repaired)
    if embedded is not None:
        return embedded

    raise LLMResponseFormatError(f"Model returned invalid JSON: {text[:200]}")


def _first_embedded_object(text: str) -> Any | None:
    decoder = json.JSONDecoder()
    for match in re.finditer(r"\{", text):
        try:
            document, _ = decoder.raw_decode(text, match.start())
        except json.JSONDecodeError:
            continue
        return document
    return None
