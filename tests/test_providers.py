import asyncio
import json
import unittest
from collections.abc import AsyncIterator, Callable

import httpx

from inference_gateway.errors import (
    EmptyResponseError,
    ErrorKind,
    ProviderError,
    UnauthorizedError,
    UnsupportedFeatureError,
)
from inference_gateway.providers import (
    BaseProvider,
    DeepseekProvider,
    OpenAIProvider,
    OpenRouterProvider,
    XAIProvider,
)
from inference_gateway.types import Attachment, SamplingParams, StreamEvent, ToolFlags, Turn

Handler = Callable[[httpx.Request], httpx.Response]


def _sse(*payloads: object) -> bytes:
    lines = []
    for payload in payloads:
        data = payload if isinstance(payload, str) else json.dumps(payload)
        lines.append(f"data: {data}\n\n")
    return "".join(lines).encode("utf-8")


def _named(kind: str, payload: dict) -> str:
    return f"event: {kind}\ndata: {json.dumps(payload)}\n\n"


def _delta(text: str) -> dict:
    return {"choices": [{"delta": {"content": text}}]}


class _Recorder:
    """MockTransport handler that records requests and replays one response."""

    def __init__(self, respond: Handler) -> None:
        self.respond = respond
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.respond(request)

    @property
    def last_json(self) -> dict:
        return json.loads(self.requests[-1].content)


def _provider(cls: type[BaseProvider], respond: Handler, **kwargs) -> tuple[BaseProvider, _Recorder]:
    recorder = _Recorder(respond)
    return cls(transport=httpx.MockTransport(recorder), **kwargs), recorder


async def _collect(stream: AsyncIterator[StreamEvent]) -> list[StreamEvent]:
    return [event async for event in stream]


def _run_stream(provider: BaseProvider, *args, **kwargs) -> list[StreamEvent]:
    async def _go() -> list[StreamEvent]:
        try:
            return await _collect(provider.stream_complete(*args, **kwargs))
        finally:
            await provider.aclose()

    return asyncio.run(_go())


def _run(provider: BaseProvider, coro_factory):
    async def _go():
        try:
            return await coro_factory()
        finally:
            await provider.aclose()

    return asyncio.run(_go())


USER = [Turn(role="user", text="hello")]


class ChatStreamTests(unittest.TestCase):
    def test_tokens_then_completed(self) -> None:
        body = _sse(_delta("Hel"), _delta("lo"), {"choices": [{"delta": {}}]}, "[DONE]")
        provider, recorder = _provider(OpenAIProvider, lambda r: httpx.Response(200, content=body))
        events = _run_stream(provider, "sk-test", "gpt-4o", USER, SamplingParams(temperature=0.3, max_tokens=50))

        self.assertEqual([e.type for e in events], ["token", "token", "completed"])
        self.assertEqual("".join(e.text for e in events if e.type == "token"), "Hello")

        request = recorder.requests[0]
        self.assertEqual(request.url.path, "/v1/chat/completions")
        self.assertEqual(request.headers["Authorization"], "Bearer sk-test")
        payload = recorder.last_json
        self.assertEqual(payload["model"], "gpt-4o")
        self.assertTrue(payload["stream"])
        self.assertEqual(payload["messages"], [{"role": "user", "content": "hello"}])
        self.assertEqual(payload["temperature"], 0.3)
        self.assertEqual(payload["max_tokens"], 50)

    def test_bad_json_line_does_not_end_stream(self) -> None:
        body = b"data: {not json\n\n" + _sse(_delta("Hi"), "[DONE]")
        provider, _ = _provider(DeepseekProvider, lambda r: httpx.Response(200, content=body))
        events = _run_stream(provider, "key", "deepseek-chat", USER)
        self.assertEqual(events, [StreamEvent.token("Hi"), StreamEvent.completed()])

    def test_clean_eof_without_sentinel_completes(self) -> None:
        provider, _ = _provider(DeepseekProvider, lambda r: httpx.Response(200, content=_sse(_delta("a"))))
        events = _run_stream(provider, "key", "deepseek-chat", USER)
        self.assertEqual([e.type for e in events], ["token", "completed"])

    def test_reasoning_model_omits_sampling_fields(self) -> None:
        provider, recorder = _provider(OpenAIProvider, lambda r: httpx.Response(200, content=_sse("[DONE]")))
        _run_stream(provider, "key", "o3-mini", USER, SamplingParams(temperature=0.9, top_p=0.5, max_tokens=64))
        payload = recorder.last_json
        self.assertNotIn("temperature", payload)
        self.assertNotIn("top_p", payload)
        self.assertNotIn("max_tokens", payload)
        self.assertEqual(payload["max_completion_tokens"], 64)

    def test_unauthorized_status(self) -> None:
        provider, _ = _provider(OpenAIProvider, lambda r: httpx.Response(401, text="bad key"))
        events = _run_stream(provider, "key", "gpt-4o", USER)
        self.assertEqual(len(events), 1)
        self.assertEqual(events[0].type, "failed")
        self.assertEqual(events[0].error_kind, ErrorKind.UNAUTHORIZED)

    def test_server_error_status(self) -> None:
        provider, _ = _provider(DeepseekProvider, lambda r: httpx.Response(503, text="overloaded"))
        events = _run_stream(provider, "key", "deepseek-chat", USER)
        self.assertEqual(events[-1].error_kind, ErrorKind.TRANSPORT_ERROR)
        self.assertIn("503", events[-1].detail)

    def test_connection_failure(self) -> None:
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        provider, _ = _provider(DeepseekProvider, refuse)
        events = _run_stream(provider, "key", "deepseek-chat", USER)
        self.assertEqual([e.type for e in events], ["failed"])
        self.assertEqual(events[0].error_kind, ErrorKind.TRANSPORT_ERROR)

    def test_mid_stream_error_object(self) -> None:
        body = _sse(_delta("a"), {"error": {"message": "rate limited"}})
        provider, _ = _provider(OpenRouterProvider, lambda r: httpx.Response(200, content=body))
        events = _run_stream(provider, "key", "qwen/qwen3-max", USER)
        self.assertEqual([e.type for e in events], ["token", "failed"])
        self.assertIn("rate limited", events[-1].detail)

    def test_malformed_threshold_escalates(self) -> None:
        body = b"data: nope\n\ndata: still nope\n\n" + _sse(_delta("late"))
        provider, _ = _provider(
            DeepseekProvider,
            lambda r: httpx.Response(200, content=body),
            max_malformed_events=2,
        )
        events = _run_stream(provider, "key", "deepseek-chat", USER)
        self.assertEqual([e.type for e in events], ["failed"])
        self.assertEqual(events[0].error_kind, ErrorKind.MALFORMED_EVENT)

    def test_unsupported_attachment_fails_before_network(self) -> None:
        provider, recorder = _provider(DeepseekProvider, lambda r: httpx.Response(200, content=_sse("[DONE]")))
        image = Attachment(kind="image", filename="a.png", data=b"\x89PNG")
        events = _run_stream(provider, "key", "deepseek-chat", USER, attachments=[image])
        self.assertEqual(events[0].error_kind, ErrorKind.UNSUPPORTED)
        self.assertEqual(recorder.requests, [])

    def test_attachments_join_last_user_turn(self) -> None:
        provider, recorder = _provider(OpenAIProvider, lambda r: httpx.Response(200, content=_sse("[DONE]")))
        turns = [Turn(role="system", text="sys"), Turn(role="user", text="what is this?")]
        image = Attachment(kind="image", filename="a.png", data=b"\x89PNG")
        _run_stream(provider, "key", "gpt-4o", turns, attachments=[image])
        messages = recorder.last_json["messages"]
        self.assertEqual(messages[0]["content"], "sys")
        self.assertEqual([p["type"] for p in messages[1]["content"]], ["text", "image_url"])


class ResponsesStreamTests(unittest.TestCase):
    def test_openai_web_search_uses_responses_api(self) -> None:
        body = (
            _named("response.created", {"type": "response.created"})
            + _named("response.web_search_call.in_progress", {"type": "response.web_search_call.in_progress"})
            + _named("response.output_text.delta", {"type": "response.output_text.delta", "delta": "Sun"})
            + _named("response.output_text.delta", {"type": "response.output_text.delta", "delta": "ny"})
            + _named("response.completed", {"type": "response.completed"})
        ).encode("utf-8")
        provider, recorder = _provider(OpenAIProvider, lambda r: httpx.Response(200, content=body))
        turns = [Turn(role="system", text="be brief"), Turn(role="user", text="weather?")]
        events = _run_stream(
            provider,
            "key",
            "gpt-4o",
            turns,
            SamplingParams(max_tokens=100),
            tools=ToolFlags(web_search=True),
        )

        self.assertEqual(events, [StreamEvent.token("Sun"), StreamEvent.token("ny"), StreamEvent.completed()])
        self.assertEqual(recorder.requests[0].url.path, "/v1/responses")
        payload = recorder.last_json
        self.assertNotIn("messages", payload)
        self.assertEqual(payload["input"][0]["role"], "developer")
        self.assertEqual(payload["tools"], [{"type": "web_search"}])
        self.assertEqual(payload["max_output_tokens"], 100)
        self.assertNotIn("store", payload)

    def test_xai_tools_and_store_flag(self) -> None:
        # No event: lines; the payload type names the event.
        body = _sse(
            {"type": "response.x_search_call.searching"},
            {"type": "response.output_text.delta", "delta": "ok"},
            {"type": "response.completed"},
        )
        provider, recorder = _provider(XAIProvider, lambda r: httpx.Response(200, content=body))
        events = _run_stream(provider, "key", "grok-4", USER, tools=ToolFlags(web_search=True, x_search=True))

        self.assertEqual(events, [StreamEvent.token("ok"), StreamEvent.completed()])
        payload = recorder.last_json
        self.assertIs(payload["store"], False)
        self.assertEqual(payload["tools"], [{"type": "web_search"}, {"type": "x_search"}])

    def test_response_failed_event(self) -> None:
        body = _named("response.failed", {"type": "response.failed", "response": {"error": "boom"}}).encode()
        provider, _ = _provider(OpenAIProvider, lambda r: httpx.Response(200, content=body))
        events = _run_stream(provider, "key", "gpt-4o", USER, tools=ToolFlags(web_search=True))
        self.assertEqual([e.type for e in events], ["failed"])
        self.assertEqual(events[0].error_kind, ErrorKind.TRANSPORT_ERROR)

    def test_x_search_unavailable_outside_xai(self) -> None:
        provider, recorder = _provider(OpenAIProvider, lambda r: httpx.Response(200, content=b""))
        events = _run_stream(provider, "key", "gpt-4o", USER, tools=ToolFlags(x_search=True))
        self.assertEqual(events[0].error_kind, ErrorKind.UNSUPPORTED)
        self.assertEqual(recorder.requests, [])


class OpenRouterTests(unittest.TestCase):
    def test_attribution_headers_and_online_suffix(self) -> None:
        provider, recorder = _provider(
            OpenRouterProvider,
            lambda r: httpx.Response(200, content=_sse(_delta("x"), "[DONE]")),
            referer="https://example.app",
            title="Example",
        )
        events = _run_stream(provider, "key", "anthropic/claude-sonnet-4", USER, tools=ToolFlags(web_search=True))

        self.assertEqual(events[-1].type, "completed")
        request = recorder.requests[0]
        self.assertEqual(request.url.path, "/api/v1/chat/completions")
        self.assertEqual(request.headers["HTTP-Referer"], "https://example.app")
        self.assertEqual(request.headers["X-Title"], "Example")
        self.assertEqual(recorder.last_json["model"], "anthropic/claude-sonnet-4:online")

    def test_no_suffix_without_web_search(self) -> None:
        provider, recorder = _provider(OpenRouterProvider, lambda r: httpx.Response(200, content=_sse("[DONE]")))
        _run_stream(provider, "key", "qwen/qwen3-max", USER)
        self.assertEqual(recorder.last_json["model"], "qwen/qwen3-max")
        self.assertNotIn("X-Title", recorder.requests[0].headers)


class OneShotTests(unittest.TestCase):
    def test_list_models(self) -> None:
        data = {"data": [{"id": "gpt-4o"}, {"id": "o3-mini"}, {"object": "junk"}]}
        provider, recorder = _provider(OpenAIProvider, lambda r: httpx.Response(200, json=data))
        models = _run(provider, lambda: provider.list_models("key"))
        self.assertEqual(models, ["gpt-4o", "o3-mini"])
        self.assertEqual(recorder.requests[0].method, "GET")
        self.assertEqual(recorder.requests[0].url.path, "/v1/models")

    def test_list_models_error_status(self) -> None:
        provider, _ = _provider(XAIProvider, lambda r: httpx.Response(500, text="down"))
        with self.assertRaises(ProviderError) as ctx:
            _run(provider, lambda: provider.list_models("key"))
        self.assertEqual(ctx.exception.status_code, 500)
        self.assertEqual(ctx.exception.body, "down")

    def test_complete_returns_text(self) -> None:
        data = {"choices": [{"message": {"role": "assistant", "content": "Hello there"}}]}
        provider, recorder = _provider(DeepseekProvider, lambda r: httpx.Response(200, json=data))
        text = _run(provider, lambda: provider.complete("key", "deepseek-chat", USER))
        self.assertEqual(text, "Hello there")
        self.assertFalse(recorder.last_json["stream"])

    def test_complete_empty_text(self) -> None:
        data = {"choices": [{"message": {"role": "assistant", "content": ""}}]}
        provider, _ = _provider(DeepseekProvider, lambda r: httpx.Response(200, json=data))
        with self.assertRaises(EmptyResponseError):
            _run(provider, lambda: provider.complete("key", "deepseek-chat", USER))

    def test_complete_unexpected_shape(self) -> None:
        for data in ({"choices": ["x"]}, {"choices": [{"message": "hi"}]}, {"choices": {"0": {}}}):
            provider, _ = _provider(OpenAIProvider, lambda r, data=data: httpx.Response(200, json=data))
            with self.assertRaises(ProviderError, msg=str(data)):
                _run(provider, lambda: provider.complete("key", "gpt-4o", USER))

    def test_complete_forbidden(self) -> None:
        provider, _ = _provider(OpenAIProvider, lambda r: httpx.Response(403, text="nope"))
        with self.assertRaises(UnauthorizedError):
            _run(provider, lambda: provider.complete("key", "gpt-4o", USER))

    def test_embeddings_are_ordered_by_index(self) -> None:
        data = {"data": [{"index": 1, "embedding": [0.0, 1.0]}, {"index": 0, "embedding": [1.0, 0.0]}]}
        provider, recorder = _provider(OpenAIProvider, lambda r: httpx.Response(200, json=data))
        vectors = _run(provider, lambda: provider.create_embeddings("key", "text-embedding-3-small", ["a", "b"]))
        self.assertEqual(vectors, [[1.0, 0.0], [0.0, 1.0]])
        self.assertEqual(recorder.last_json["input"], ["a", "b"])
        self.assertEqual(recorder.requests[0].url.path, "/v1/embeddings")

    def test_embeddings_unexpected_shape(self) -> None:
        bodies = (
            {"data": [{"index": 0}]},
            {"data": ["oops"]},
            {"data": [{"index": 0, "embedding": ["x"]}]},
        )
        for data in bodies:
            provider, _ = _provider(OpenAIProvider, lambda r, data=data: httpx.Response(200, json=data))
            with self.assertRaises(ProviderError, msg=str(data)):
                _run(provider, lambda: provider.create_embeddings("key", "text-embedding-3-small", ["a"]))

    def test_embeddings_count_mismatch(self) -> None:
        provider, _ = _provider(OpenAIProvider, lambda r: httpx.Response(200, json={"data": []}))
        with self.assertRaises(EmptyResponseError):
            _run(provider, lambda: provider.create_embeddings("key", "m", ["a"]))

    def test_embeddings_unsupported_on_deepseek(self) -> None:
        provider, recorder = _provider(DeepseekProvider, lambda r: httpx.Response(200, json={}))
        with self.assertRaises(UnsupportedFeatureError):
            _run(provider, lambda: provider.create_embeddings("key", "m", ["a"]))
        self.assertEqual(recorder.requests, [])


if __name__ == "__main__":
    unittest.main()
