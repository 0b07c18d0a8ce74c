"""Wire clients for the external text-classification service.

A transport performs exactly one request and reports the outcome either as a
:class:`ClassifierReply` (text plus normalized finish reason) or as one of the
classifier errors from :mod:`sms_ledger.errors`. Transports never retry; the
retry policy lives in :mod:`sms_ledger.classify` so it can be tested without a
network.

Two backends are provided:

- :class:`GeminiTransport`: non-streaming POST to the Gemini
  ``generateContent`` REST endpoint over ``httpx``. Authenticates with
  ``GEMINI_API_KEY``.
- :class:`OpenAITransport`: the OpenAI Responses API through ``AsyncOpenAI``
  with SDK-level retries disabled. Authenticates with ``OPENAI_API_KEY``.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Protocol

import httpx
from openai import (
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    AsyncOpenAI,
    RateLimitError,
)

from . import prompting
from .config import PipelineSettings
from .errors import HttpStatusError, MalformedResponse, NetworkError, RateLimited, SafetyRejected
from .logging_setup import get_logger

GEMINI_API_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"

FINISH_STOP = "STOP"
FINISH_MAX_TOKENS = "MAX_TOKENS"
FINISH_SAFETY = "SAFETY"

_logger = get_logger("sms_ledger.transports")


@dataclass(frozen=True, slots=True)
class ClassifierReply:
    text: str
    finish_reason: str | None


class ClassifierTransport(Protocol):
    async def generate(self, prompt: str) -> ClassifierReply: ...


# ---- Gemini ------------------------------------------------------------------


def parse_gemini_body(body: Any) -> ClassifierReply:
    """Extract text and finish reason from a ``generateContent`` response body.

    - A ``SAFETY`` finish or a prompt-level ``blockReason`` raises
      :class:`SafetyRejected`.
    - No candidates, no content parts, or only blank text raise
      :class:`MalformedResponse`.
    """

    if not isinstance(body, Mapping):
        raise MalformedResponse("response body is not a JSON object")

    candidates = body.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        feedback = body.get("promptFeedback")
        if isinstance(feedback, Mapping) and feedback.get("blockReason"):
            raise SafetyRejected(f"prompt blocked: {feedback['blockReason']}")
        raise MalformedResponse("response has no candidates")

    first = candidates[0]
    if not isinstance(first, Mapping):
        raise MalformedResponse("candidate is not an object")
    finish = first.get("finishReason")
    if finish == FINISH_SAFETY:
        raise SafetyRejected("candidate finished with SAFETY")

    content = first.get("content")
    parts = content.get("parts") if isinstance(content, Mapping) else None
    if not isinstance(parts, list) or not parts:
        raise MalformedResponse(f"candidate has no content parts (finishReason={finish})")
    text = "".join(str(p.get("text") or "") for p in parts if isinstance(p, Mapping))
    if not text.strip():
        raise MalformedResponse(f"candidate content is empty (finishReason={finish})")
    return ClassifierReply(text=text, finish_reason=str(finish) if finish else None)


class GeminiTransport:
    """Call the Gemini REST API with ``{contents, generationConfig}``.

    Pass ``client`` to reuse a long-lived ``httpx.AsyncClient`` (tests inject
    one backed by ``httpx.MockTransport``); otherwise a client is opened per
    request.
    """

    def __init__(
        self,
        *,
        model: str,
        generation_config: Mapping[str, Any],
        api_key: str | None = None,
        system_instructions: str | None = None,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._model = model
        self._generation_config = dict(generation_config)
        self._api_key = api_key
        self._system_instructions = system_instructions
        self._timeout = timeout
        self._client = client

    @property
    def url(self) -> str:
        return GEMINI_API_URL.format(model=self._model)

    def _resolve_api_key(self) -> str:
        key = self._api_key or os.environ.get("GEMINI_API_KEY")
        if not key:
            raise RuntimeError("GEMINI_API_KEY environment variable is required for Gemini access")
        return key

    def build_payload(self, prompt: str) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": self._generation_config,
        }
        if self._system_instructions:
            payload["systemInstruction"] = {"parts": [{"text": self._system_instructions}]}
        return payload

    async def _post(self, client: httpx.AsyncClient, prompt: str) -> httpx.Response:
        return await client.post(
            self.url,
            json=self.build_payload(prompt),
            headers={"x-goog-api-key": self._resolve_api_key()},
            timeout=self._timeout,
        )

    async def generate(self, prompt: str) -> ClassifierReply:
        try:
            if self._client is not None:
                resp = await self._post(self._client, prompt)
            else:
                async with httpx.AsyncClient() as client:
                    resp = await self._post(client, prompt)
        except httpx.TimeoutException as e:
            raise NetworkError(f"timeout calling Gemini: {e}") from e
        except httpx.RequestError as e:
            raise NetworkError(f"request to Gemini failed: {e}") from e

        if resp.status_code == 429:
            raise RateLimited("Gemini rate limit (HTTP 429)")
        if not resp.is_success:
            raise HttpStatusError(resp.status_code, resp.text[:200])
        try:
            body = resp.json()
        except ValueError as e:
            raise MalformedResponse("Gemini response body is not JSON") from e
        return parse_gemini_body(body)


# ---- OpenAI ------------------------------------------------------------------


def _extract_output_text(resp: Any) -> str | None:
    """Prefer ``resp.output_text``; fall back to ``resp.output[0].content[0].text``."""

    text: str | None = getattr(resp, "output_text", None)
    if text:
        return text
    output = getattr(resp, "output", None)
    if not output:
        return None
    content = getattr(output[0], "content", None)
    if not content:
        return None
    txt_obj = getattr(content[0], "text", None)
    if isinstance(txt_obj, str):
        return txt_obj
    # Some SDKs expose text as an object with a ``value`` string.
    maybe_val = getattr(txt_obj, "value", None)
    return maybe_val if isinstance(maybe_val, str) else None


class OpenAITransport:
    """Call the OpenAI Responses API; map incomplete replies to finish reasons."""

    def __init__(
        self,
        *,
        model: str,
        instructions: str,
        max_output_tokens: int,
        timeout: float = 30.0,
    ) -> None:
        self._model = model
        self._instructions = instructions
        self._max_output_tokens = max_output_tokens
        self._timeout = timeout
        self._client: AsyncOpenAI | None = None

    def _create_client(self) -> AsyncOpenAI:
        # Retries belong to the classification client, not the SDK.
        return AsyncOpenAI(max_retries=0, timeout=self._timeout)

    async def generate(self, prompt: str) -> ClassifierReply:
        if self._client is None:
            self._client = self._create_client()
        try:
            resp = await self._client.responses.create(
                model=self._model,
                instructions=self._instructions,
                input=prompt,
                max_output_tokens=self._max_output_tokens,
            )
        except RateLimitError as e:
            raise RateLimited("OpenAI rate limit (HTTP 429)") from e
        except APITimeoutError as e:
            raise NetworkError(f"timeout calling OpenAI: {e}") from e
        except APIConnectionError as e:
            raise NetworkError(f"connection error calling OpenAI: {e}") from e
        except APIStatusError as e:
            if e.status_code == 429:
                raise RateLimited("OpenAI rate limit (HTTP 429)") from e
            raise HttpStatusError(e.status_code, str(e)) from e

        details = getattr(resp, "incomplete_details", None)
        reason = getattr(details, "reason", None)
        if reason == "content_filter":
            raise SafetyRejected("response incomplete: content_filter")
        finish = FINISH_MAX_TOKENS if reason == "max_output_tokens" else FINISH_STOP

        text = _extract_output_text(resp)
        if not text or not text.strip():
            raise MalformedResponse(f"OpenAI response has no text output (finish={finish})")
        return ClassifierReply(text=text, finish_reason=finish)


def build_transport(settings: PipelineSettings) -> ClassifierTransport:
    """Return the transport selected by ``settings.backend``."""

    model = settings.resolved_model
    _logger.debug("transports:build backend=%s model=%s", settings.backend, model)
    if settings.backend == "openai":
        return OpenAITransport(
            model=model,
            instructions=prompting.build_system_instructions(),
            max_output_tokens=settings.max_output_tokens,
            timeout=settings.request_timeout_sec,
        )
    return GeminiTransport(
        model=model,
        generation_config=prompting.build_generation_config(
            max_output_tokens=settings.max_output_tokens,
            temperature=settings.temperature,
        ),
        system_instructions=prompting.build_system_instructions(),
        timeout=settings.request_timeout_sec,
    )


__all__ = [
    "FINISH_MAX_TOKENS",
    "FINISH_SAFETY",
    "FINISH_STOP",
    "ClassifierReply",
    "ClassifierTransport",
    "GeminiTransport",
    "OpenAITransport",
    "build_transport",
    "parse_gemini_body",
]
