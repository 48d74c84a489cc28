"""Shared HTTP contract for the remote providers.

Every provider speaks an OpenAI-shaped chat-completions dialect; the
subclasses only pin the base URL, headers, model naming and which optional
endpoints (Responses, embeddings) they expose.
"""

from __future__ import annotations

import json
import logging
from abc import ABC
from collections.abc import AsyncIterator, Sequence
from typing import Any, ClassVar, cast

import httpx

from inference_gateway.capabilities import ModelCapabilities, ensure_capabilities, lookup
from inference_gateway.errors import (
    EmptyResponseError,
    ErrorKind,
    GatewayError,
    ProviderError,
    UnauthorizedError,
    UnsupportedFeatureError,
)
from inference_gateway.multimodal import encode_chat_content, encode_responses_message
from inference_gateway.sse import DEFAULT_EVENT_KIND, aiter_events
from inference_gateway.types import (
    Attachment,
    ProviderId,
    SamplingParams,
    StreamEvent,
    ToolFlags,
    Turn,
)

logger = logging.getLogger(__name__)

_CHAT_PATH = "/chat/completions"
_MODELS_PATH = "/models"

_RESPONSES_TEXT_DELTA = "response.output_text.delta"
_RESPONSES_COMPLETED = "response.completed"
_RESPONSES_FAILED = ("response.failed", "error")


class BaseProvider(ABC):
    """Abstract base class for provider implementations."""

    name: ClassVar[str]
    provider_id: ClassVar[ProviderId]
    default_base_url: ClassVar[str]
    # Set on providers that expose a Responses endpoint for tool-enabled requests.
    responses_path: ClassVar[str | None] = None
    embeddings_path: ClassVar[str | None] = None

    def __init__(
        self,
        *,
        base_url: str | None = None,
        timeout_s: float = 60.0,
        max_malformed_events: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url or self.default_base_url,
            timeout=timeout_s,
            transport=transport,
        )
        self._max_malformed_events = max_malformed_events

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    def capabilities(self, model: str) -> ModelCapabilities:
        """Return capability flags for the given model identifier."""
        return lookup(model)

    async def list_models(self, api_key: str) -> list[str]:
        """List model ids available to ``api_key``."""
        response = await self._send("GET", _MODELS_PATH, api_key)
        data = self._json_or_error(response)
        return [m["id"] for m in data.get("data") or [] if isinstance(m, dict) and "id" in m]

    async def complete(
        self,
        api_key: str,
        model: str,
        turns: Sequence[Turn],
        params: SamplingParams | None = None,
    ) -> str:
        """Run a one-shot chat completion and return the full text."""
        payload = self._build_chat_payload(model, turns, params, stream=False, tools=None)
        response = await self._send("POST", _CHAT_PATH, api_key, json=payload)
        data = self._json_or_error(response)
        text = self._extract_message_text(data)
        if not text:
            raise EmptyResponseError(self.name)
        return text

    def stream_complete(
        self,
        api_key: str,
        model: str,
        turns: Sequence[Turn],
        params: SamplingParams | None = None,
        attachments: Sequence[Attachment] | None = None,
        tools: ToolFlags | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Return an async iterator of tokens ending in exactly one terminal event."""

        async def _gen() -> AsyncIterator[StreamEvent]:
            try:
                merged = self._merge_attachments(turns, attachments)
                flags = tools or ToolFlags()
                ensure_capabilities(
                    [a for turn in merged for a in turn.attachments],
                    flags,
                    self.capabilities(model),
                )
                use_responses = self.responses_path is not None and flags.any
                if use_responses:
                    path = cast(str, self.responses_path)
                    payload = self._build_responses_payload(model, merged, params, flags)
                else:
                    path = _CHAT_PATH
                    payload = self._build_chat_payload(model, merged, params, stream=True, tools=flags)

                async with self._client.stream(
                    "POST",
                    path,
                    headers=self._headers(api_key),
                    json=payload,
                ) as response:
                    if response.status_code >= 400:
                        body = await response.aread()
                        raise self._status_error(
                            response.status_code,
                            body.decode("utf-8", errors="replace"),
                            response.reason_phrase,
                        )
                    events = (
                        self._responses_events(response) if use_responses else self._chat_events(response)
                    )
                    async for event in events:
                        yield event
                        if event.is_terminal:
                            return
                yield StreamEvent.completed()
            except GatewayError as exc:
                logger.warning("%s stream failed: %s", self.name, exc)
                yield StreamEvent.from_error(exc)
            except httpx.HTTPError as exc:
                logger.warning("%s transport error: %s", self.name, exc)
                yield StreamEvent.failed(ErrorKind.TRANSPORT_ERROR, f"{self.name}: {exc}")
            except OSError as exc:
                logger.warning("%s attachment unreadable: %s", self.name, exc)
                yield StreamEvent.failed(ErrorKind.UNSUPPORTED, f"attachment unreadable: {exc}")

        return _gen()

    async def create_embeddings(self, api_key: str, model: str, texts: Sequence[str]) -> list[list[float]]:
        """Embed ``texts`` in order; only providers with an embeddings endpoint support this."""
        if self.embeddings_path is None:
            raise UnsupportedFeatureError(f"{self.name} embeddings")
        payload = {"input": list(texts), "model": model, "encoding_format": "float"}
        response = await self._send("POST", self.embeddings_path, api_key, json=payload)
        return self._extract_embeddings(self._json_or_error(response), len(texts))

    # -- request building --------------------------------------------------

    def _headers(self, api_key: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

    def _wire_model(self, model: str, tools: ToolFlags | None) -> str:
        return model

    def _build_chat_payload(
        self,
        model: str,
        turns: Sequence[Turn],
        params: SamplingParams | None,
        *,
        stream: bool,
        tools: ToolFlags | None,
    ) -> dict[str, Any]:
        caps = self.capabilities(model)
        payload: dict[str, Any] = {
            "model": self._wire_model(model, tools),
            "messages": [self._serialize_turn(t) for t in turns],
            "stream": stream,
        }
        self._apply_sampling(payload, caps, params, caps.token_limit_param)
        return payload

    def _build_responses_payload(
        self,
        model: str,
        turns: Sequence[Turn],
        params: SamplingParams | None,
        tools: ToolFlags,
    ) -> dict[str, Any]:
        caps = self.capabilities(model)
        payload: dict[str, Any] = {
            "model": model,
            # Responses APIs call the system role "developer".
            "input": [
                encode_responses_message(t, role="developer" if t.role == "system" else t.role) for t in turns
            ],
            "tools": self._responses_tools(tools),
            "stream": True,
        }
        self._apply_sampling(payload, caps, params, "max_output_tokens")
        return payload

    def _responses_tools(self, tools: ToolFlags) -> list[dict[str, Any]]:
        if tools.x_search:
            raise UnsupportedFeatureError(f"{self.name} x_search")
        return [{"type": "web_search"}] if tools.web_search else []

    @staticmethod
    def _apply_sampling(
        payload: dict[str, Any],
        caps: ModelCapabilities,
        params: SamplingParams | None,
        token_param: str,
    ) -> None:
        if params is None:
            return
        # Reasoning models reject these fields, so they must be absent, not null.
        if caps.allows_sampling_params:
            if params.temperature is not None:
                payload["temperature"] = params.temperature
            if params.top_p is not None:
                payload["top_p"] = params.top_p
        if params.max_tokens is not None:
            payload[token_param] = params.max_tokens

    @staticmethod
    def _serialize_turn(turn: Turn) -> dict[str, Any]:
        return {"role": turn.role, "content": encode_chat_content(turn)}

    @staticmethod
    def _merge_attachments(turns: Sequence[Turn], attachments: Sequence[Attachment] | None) -> list[Turn]:
        """Attach loose attachments to the last user turn."""
        merged = list(turns)
        if not attachments:
            return merged
        for i in range(len(merged) - 1, -1, -1):
            if merged[i].role == "user":
                turn = merged[i]
                merged[i] = turn.model_copy(update={"attachments": [*turn.attachments, *attachments]})
                return merged
        merged.append(Turn(role="user", attachments=list(attachments)))
        return merged

    # -- response handling -------------------------------------------------

    async def _send(self, method: str, path: str, api_key: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self._client.request(method, path, headers=self._headers(api_key), **kwargs)
        except httpx.HTTPError as exc:
            raise ProviderError(self.name, str(exc) or type(exc).__name__) from exc

    def _status_error(self, status: int, body: str, reason: str) -> ProviderError:
        if status in (401, 403):
            return UnauthorizedError(self.name, body or reason, status_code=status, body=body)
        return ProviderError(self.name, body or reason, status_code=status, body=body)

    def _json_or_error(self, response: httpx.Response) -> dict[str, Any]:
        if response.status_code >= 400:
            raise self._status_error(response.status_code, response.text, response.reason_phrase)
        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderError(self.name, "invalid JSON response", status_code=response.status_code) from exc
        if not isinstance(data, dict):
            raise ProviderError(self.name, "unexpected response shape", status_code=response.status_code)
        return cast(dict[str, Any], data)

    def _decode_payload(self, raw: str, malformed: int) -> tuple[dict[str, Any] | None, int]:
        """Parse one data payload; returns the object (or None) and the running malformed count."""
        try:
            event = json.loads(raw)
        except json.JSONDecodeError:
            event = None
        if isinstance(event, dict):
            return event, 0
        logger.debug("Skipping non-JSON streaming chunk from %s: %.200s", self.name, raw)
        return None, malformed + 1

    def _too_many_malformed(self, malformed: int) -> bool:
        return self._max_malformed_events is not None and malformed >= self._max_malformed_events

    async def _chat_events(self, response: httpx.Response) -> AsyncIterator[StreamEvent]:
        malformed = 0
        async for sse in aiter_events(response.aiter_bytes()):
            event, malformed = self._decode_payload(sse.data, malformed)
            if event is None:
                if self._too_many_malformed(malformed):
                    yield StreamEvent.failed(ErrorKind.MALFORMED_EVENT, f"{malformed} malformed events in a row")
                    return
                continue
            error = event.get("error")
            if error:
                yield StreamEvent.failed(ErrorKind.TRANSPORT_ERROR, f"{self.name}: {self._error_message(error)}")
                return
            chunk = self._extract_delta_text(event)
            if chunk:
                yield StreamEvent.token(chunk)

    async def _responses_events(self, response: httpx.Response) -> AsyncIterator[StreamEvent]:
        malformed = 0
        async for sse in aiter_events(response.aiter_bytes()):
            event, malformed = self._decode_payload(sse.data, malformed)
            if event is None:
                if self._too_many_malformed(malformed):
                    yield StreamEvent.failed(ErrorKind.MALFORMED_EVENT, f"{malformed} malformed events in a row")
                    return
                continue
            kind = sse.kind if sse.kind != DEFAULT_EVENT_KIND else str(event.get("type") or "")
            if kind == _RESPONSES_TEXT_DELTA:
                delta = event.get("delta")
                if isinstance(delta, str) and delta:
                    yield StreamEvent.token(delta)
            elif kind == _RESPONSES_COMPLETED:
                yield StreamEvent.completed()
                return
            elif kind in _RESPONSES_FAILED:
                yield StreamEvent.failed(ErrorKind.TRANSPORT_ERROR, f"{self.name}: response failed: {sse.data}")
                return
            else:
                # Tool lifecycle (web_search_call.*, x_search_call.*) and bookkeeping events.
                logger.debug("%s responses event: %s", self.name, kind)

    @staticmethod
    def _error_message(error: Any) -> str:
        if isinstance(error, dict):
            return str(error.get("message") or error)
        return str(error)

    @staticmethod
    def _extract_delta_text(event: dict[str, Any]) -> str:
        """Extract the standard streaming text delta (choices[0].delta.content)."""
        choices = event.get("choices") or []
        if not choices or not isinstance(choices[0], dict):
            return ""
        delta = choices[0].get("delta") or {}
        content = delta.get("content") if isinstance(delta, dict) else None
        return content if isinstance(content, str) else ""

    def _extract_message_text(self, data: dict[str, Any]) -> str:
        choices = data.get("choices") or []
        if not choices:
            return ""
        first = choices[0] if isinstance(choices, list) else None
        message = first.get("message") if isinstance(first, dict) else None
        if not isinstance(message, dict):
            raise ProviderError(self.name, "unexpected response shape")
        text = message.get("content") or ""
        return text if isinstance(text, str) else ""

    def _extract_embeddings(self, data: dict[str, Any], count: int) -> list[list[float]]:
        items = data.get("data") or []
        if not isinstance(items, list) or len(items) != count:
            raise EmptyResponseError(self.name)
        try:
            items = sorted(items, key=lambda item: item.get("index", 0))
            return [[float(x) for x in item["embedding"]] for item in items]
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise ProviderError(self.name, "unexpected response shape") from exc
