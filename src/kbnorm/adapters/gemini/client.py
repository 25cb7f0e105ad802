"""Gemini-backed implementation of the transform client port."""

from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING

import httpx
from pydantic import ValidationError

from kbnorm.adapters.http_resilience import ResilienceConfig, ResilientClient
from kbnorm.config.gemini import GeminiConfig, get_gemini_config
from kbnorm.domain.errors import RemoteFatal, RemoteRateLimited, RemoteTransient

from .prompts import SYSTEM_INSTRUCTION, USER_INSTRUCTION
from .schema import ErrorResponse, GenerateContentResponse
from .translator import parse_transform_items, to_wire

if TYPE_CHECKING:
    from collections.abc import Sequence
    from types import TracebackType

    from kbnorm.domain.ports.transform import TransformClient, TransformItem

log = getLogger(__name__)

RETRYABLE_STATUS_CODES = frozenset({408, 500, 502, 503, 504})


def _default_client_factory(config: ResilienceConfig) -> ResilientClient:
    return ResilientClient(config)


def build_request_body(items: Sequence[TransformItem]) -> dict[str, object]:
    payload = json.dumps(to_wire(items), ensure_ascii=False)
    return {
        "systemInstruction": {"parts": [{"text": SYSTEM_INSTRUCTION}]},
        "contents": [
            {
                "role": "user",
                "parts": [{"text": USER_INSTRUCTION}, {"text": payload}],
            }
        ],
        "generationConfig": {"responseMimeType": "application/json"},
    }


@dataclass(slots=True)
class GeminiTransformClient:
    """Sends one batch per ``generateContent`` call and classifies failures.

    Use it as an async context manager (or call ``aclose``) so the underlying HTTP
    client, and with it the shared rate limiter, lives for the whole run.
    """

    config: GeminiConfig = field(default_factory=get_gemini_config)
    client_factory: Callable[[ResilienceConfig], ResilientClient] = field(
        default=_default_client_factory
    )
    _http: ResilientClient | None = field(default=None, init=False, repr=False)

    async def __aenter__(self) -> GeminiTransformClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    @property
    def endpoint(self) -> str:
        return f"models/{self.config.model}:generateContent"

    async def transform(self, items: Sequence[TransformItem]) -> list[TransformItem]:
        if self._http is None:
            self._http = self.client_factory(self.config.resilience)

        try:
            response = await self._http.post(
                self.endpoint,
                json=build_request_body(items),
                headers={"x-goog-api-key": self.config.api_key},
            )
        except httpx.RequestError as exc:
            # includes undecodable bodies and redirect loops
            raise RemoteTransient(f"Gemini request failed: {type(exc).__name__}: {exc}") from exc

        _raise_for_status(response)

        try:
            parsed = GenerateContentResponse.model_validate(response.json())
        except ValueError as exc:
            raise RemoteTransient("Gemini returned an unreadable response body") from exc

        if parsed.block_reason:
            raise RemoteFatal(f"Gemini blocked the prompt: {parsed.block_reason}")
        text = parsed.text
        if not text:
            raise RemoteTransient("Empty response from Gemini")

        results = parse_transform_items(text)
        log.debug("Gemini returned %s of %s items", len(results), len(items))
        return results


def _raise_for_status(response: httpx.Response) -> None:
    if response.is_success:
        return

    status = response.status_code
    message = _error_message(response)
    if status == httpx.codes.TOO_MANY_REQUESTS:
        raise RemoteRateLimited(message, retry_after=_retry_after(response))
    if status in RETRYABLE_STATUS_CODES:
        raise RemoteTransient(message)
    raise RemoteFatal(message)


def _error_message(response: httpx.Response) -> str:
    prefix = f"Gemini HTTP {response.status_code}"
    try:
        error = ErrorResponse.model_validate(response.json()).error
    except (ValueError, ValidationError):
        return prefix
    status = f" {error.status}" if error.status else ""
    return f"{prefix}{status}: {error.message}"


def _retry_after(response: httpx.Response) -> float | None:
    raw = response.headers.get("Retry-After")
    if raw is None:
        return None
    try:
        seconds = float(raw)
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


if TYPE_CHECKING:
    _client_check: TransformClient = GeminiTransformClient()
