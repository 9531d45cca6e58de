"""HTTP client that speaks the JSON Responses API."""

from __future__ import annotations

import json
import logging
import os
import urllib.error
import urllib.request
from typing import Any, Callable, Dict, List, Optional

from .llm_client import LLMClient, LLMResponseFormatError, LLMTransportError

__all__ = ["DEFAULT_BASE_URL", "ResponsesClient", "output_text"]

LOGGER = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.openai.com/v1/responses"
API_KEY_VARIABLES = ("STEPWISE_API_KEY", "OPENAI_API_KEY")

Transport = Callable[[Dict[str, Any]], str]


class ResponsesClient(LLMClient):
    """Send generator requests to a Responses-API endpoint.

    ``transport`` replaces the HTTP call (tests pass a function returning a
    canned response body). Without one, an API key is required, taken from
    ``api_key`` or the first of ``STEPWISE_API_KEY``/``OPENAI_API_KEY`` set.
    ``STEPWISE_BASE_URL`` points the client at a compatible proxy.
    """

    def __init__(
        self,
        *,
        model: str,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        transport: Optional[Transport] = None,
        timeout: float = 120.0,
        max_attempts: int = 3,
        retry_delay: float = 0.5,
    ) -> None:
        super().__init__(model=model, max_attempts=max_attempts, retry_delay=retry_delay)
        self._api_key = api_key or next(filter(None, (os.getenv(name) for name in API_KEY_VARIABLES)), None)
        self._base_url = base_url or os.getenv("STEPWISE_BASE_URL") or DEFAULT_BASE_URL
        self._timeout = timeout
        self._transport = transport or self._post

        if transport is None and not self._api_key:
            raise ValueError("An API key is required when using the default transport.")

    def _raw_invoke(self, payload: Dict[str, Any]) -> str:
        text = output_text(self._transport(payload))
        if text is None:
            raise LLMResponseFormatError("Response did not contain any output text.")
        return text

    def _post(self, payload: Dict[str, Any]) -> str:
        if LOGGER.isEnabledFor(logging.DEBUG):
            LOGGER.debug("POST %s\n%s", self._base_url, json.dumps(payload, indent=2, sort_keys=True))

        request = urllib.request.Request(
            self._base_url,
            data=json.dumps(payload).encode("utf-8"),
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self._api_key}",
            },
            method="POST",
        )
        try:
            with urllib.request.urlopen(request, timeout=self._timeout) as response:
                return response.read().decode("utf-8")
        except urllib.error.HTTPError as error:  # pragma: no cover - network-dependent
            detail = error.read().decode("utf-8", errors="ignore")[:500]
            raise LLMTransportError(f"{self._base_url} answered HTTP {error.code}: {detail}") from error
        except urllib.error.URLError as error:  # pragma: no cover - network-dependent
            raise LLMTransportError(f"Cannot reach {self._base_url}: {error.reason}") from error
        except TimeoutError as error:  # pragma: no cover - network-dependent
            raise LLMTransportError(f"No answer from {self._base_url} within {self._timeout:g}s") from error


def output_text(body: str) -> Optional[str]:
    """Return the assistant text carried by a Responses-API response body.

    Bodies that are not a JSON object (plain-text proxies) are returned as is.
    A failed response raises :class:`LLMTransportError`; an incomplete or
    refused one raises :class:`LLMResponseFormatError` so the request is
    retried.
    """
    if not body or not body.strip():
        return None
    try:
        envelope = json.loads(body)
    except json.JSONDecodeError:
        return body
    if not isinstance(envelope, dict) or ("output" not in envelope and "status" not in envelope):
        return body

    status = envelope.get("status")
    if status == "failed" or envelope.get("error"):
        error = envelope.get("error") or {}
        message = error.get("message") if isinstance(error, dict) else str(error)
        raise LLMTransportError(f"Model run failed: {message or 'no details'}")
    if status == "incomplete":
        details = envelope.get("incomplete_details") or {}
        reason = details.get("reason") if isinstance(details, dict) else None
        raise LLMResponseFormatError(f"Model answer was cut off ({reason or 'unknown reason'}).")

    if isinstance(envelope.get("output_text"), str) and envelope["output_text"].strip():
        return envelope["output_text"]

    parts: List[str] = []
    for item in envelope.get("output") or []:
        if not isinstance(item, dict) or item.get("type", "message") != "message":
            continue
        for part in item.get("content") or []:
            if not isinstance(part, dict):
                continue
            if part.get("type") == "refusal":
                raise LLMResponseFormatError(f"Model refused the request: {part.get('refusal', '')}")
            if isinstance(part.get("json"), (dict, list)):
                parts.append(json.dumps(part["json"]))
            elif isinstance(part.get("text"), str):
                parts.append(part["text"])
    joined = "".join(parts)
    return joined if joined.strip() else None
