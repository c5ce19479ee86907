# src/promptcascade/plugins/clients/http.py
"""Streaming HTTP generation client.

POSTs one request per node and reads a server-sent-event stream whose
``data:`` lines are tagged JSON event objects. Each object is decoded once,
here, into the generation event union. HTTP and transport failures are
reported as terminal error events rather than raised, so the engine sees a
single failure path.
"""

from __future__ import annotations

import json
import re
from collections.abc import Iterator, Mapping
from typing import Any

import httpx
import structlog

from promptcascade.contracts.generation import (
    GenerationEvent,
    GenerationFailed,
    GenerationRateLimited,
    ThreadingOptions,
    decode_generation_event,
)
from promptcascade.core.config import GenerationSettings

logger = structlog.get_logger(__name__)

_TEMPLATE_PATTERN = re.compile(r"\{\{\s*([^{}]+?)\s*\}\}")
_DONE_SENTINEL = "[DONE]"


def render_template(text: str, variables: Mapping[str, str]) -> str:
    """Replace ``{{name}}`` with its value; unknown names are left as written."""

    def substitute(match: re.Match[str]) -> str:
        key = match.group(1)
        return variables[key] if key in variables else match.group(0)

    return _TEMPLATE_PATTERN.sub(substitute, text)


def _retry_after_seconds(response: httpx.Response) -> float | None:
    value = response.headers.get("retry-after")
    if value is None:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        # HTTP-date form; let the engine use its fallback delay
        return None


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return response.text[:500] or response.reason_phrase
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            return str(error.get("message") or error)
        if error:
            return str(error)
        if body.get("message"):
            return str(body["message"])
    return json.dumps(body)[:500]


class HTTPGenerationClient:
    """GenerationClient over httpx.

    Example:
        client = HTTPGenerationClient(settings.generation)
        for event in client.generate(node_id, message, variables, ThreadingOptions()):
            ...
        client.close()
    """

    def __init__(self, settings: GenerationSettings, *, transport: httpx.BaseTransport | None = None) -> None:
        """Initialize client.

        Args:
            settings: Endpoint configuration
            transport: Optional httpx transport (tests pass httpx.MockTransport)
        """
        self._settings = settings
        headers = {"Accept": "text/event-stream"}
        if settings.api_key:
            headers["Authorization"] = f"Bearer {settings.api_key}"
        self._client = httpx.Client(
            base_url=settings.base_url,
            headers=headers,
            timeout=httpx.Timeout(settings.timeout_seconds, connect=10.0),
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> HTTPGenerationClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def generate(
        self,
        node_id: str,
        message: str,
        variables: Mapping[str, str],
        threading_options: ThreadingOptions,
    ) -> Iterator[GenerationEvent]:
        payload: dict[str, Any] = {
            "node_id": node_id,
            "message": render_template(message, variables),
            "variables": dict(variables),
            "threading": {
                "context_id": threading_options.context_id,
                "store_in_history": threading_options.store_in_history,
            },
        }
        if self._settings.model:
            payload["model"] = self._settings.model

        try:
            with self._client.stream("POST", self._settings.path, json=payload) as response:
                if response.status_code == 429:
                    response.read()
                    yield GenerationRateLimited(
                        message=_error_message(response),
                        retry_after_s=_retry_after_seconds(response),
                        status=429,
                    )
                    return
                if response.status_code >= 400:
                    response.read()
                    yield GenerationFailed(
                        code=f"http_{response.status_code}",
                        message=_error_message(response),
                        status=response.status_code,
                    )
                    return
                yield from self._read_events(response)
        except httpx.TimeoutException as exc:
            yield GenerationFailed(code="timeout", message=f"Request timed out: {exc}")
        except httpx.HTTPError as exc:
            yield GenerationFailed(code="network_error", message=f"Network error: {exc}")

    def _read_events(self, response: httpx.Response) -> Iterator[GenerationEvent]:
        for line in response.iter_lines():
            if not line.startswith("data:"):
                continue
            data = line[len("data:") :].strip()
            if not data:
                continue
            if data == _DONE_SENTINEL:
                return
            try:
                raw = json.loads(data)
                if not isinstance(raw, dict):
                    raise ValueError(f"expected an event object, got {type(raw).__name__}")
                event = decode_generation_event(raw)
            except ValueError as exc:
                logger.warning("Undecodable generation event", error=str(exc), data=data[:200])
                yield GenerationFailed(code="invalid_event", message=f"Undecodable event from service: {exc}")
                return
            yield event

    def cancel(self, response_id: str) -> None:
        """Ask the service to stop generating ``response_id``."""
        response = self._client.post(f"{self._settings.path}/{response_id}/cancel")
        response.raise_for_status()
        logger.info("Generation cancel requested", response_id=response_id)
