"""
unillm - Streaming Transport Tests

Uses httpx.MockTransport as the fake provider server.
Verifies:
- Request is POSTed with the given payload and headers
- Successful bodies are normalized by the pipeline
- HTTP errors before streaming become one ErrorEvent
- Transport failures before the body is read become one ErrorEvent
"""

import json
import os

import httpx
import pytest

from unillm import ProviderDialect, collect_stream, stream_chat
from unillm.core.errors import (
    AuthenticationError,
    ConnectionTimeoutError,
    RateLimitedError,
    TransportError,
)
from unillm.core.models import FinishReason, Usage
from unillm.streaming.events import ContentDelta, ErrorEvent


def sse_body(*payloads) -> bytes:
    return "".join(
        f"data: {p if isinstance(p, str) else json.dumps(p)}\n\n" for p in payloads
    ).encode("utf-8")


def client_for(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="https://api.test")


async def events_of(stream):
    return [event async for event in stream]


# ============================================================
# Successful Streams
# ============================================================

class TestStreamChat:
    """Test streaming over a mocked HTTP transport."""

    @pytest.mark.asyncio
    async def test_request_is_posted(self, metrics, tracing):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["path"] = request.url.path
            seen["auth"] = request.headers.get("authorization")
            seen["payload"] = json.loads(request.content)
            return httpx.Response(200, content=sse_body({"delta": "ok"}, "[DONE]"))

        async with client_for(handler) as client:
            events = await events_of(stream_chat(
                client,
                "/v1/responses",
                {"model": "gpt-4.1", "stream": True},
                ProviderDialect.OPENAI_RESPONSES,
                headers={"Authorization": "Bearer sk-test"},
                metrics=metrics,
                tracing=tracing,
            ))

        assert events == [ContentDelta("ok")]
        assert seen == {
            "method": "POST",
            "path": "/v1/responses",
            "auth": "Bearer sk-test",
            "payload": {"model": "gpt-4.1", "stream": True},
        }

    @pytest.mark.asyncio
    async def test_collect_openai_stream(self, metrics, tracing):
        body = sse_body(
            {"id": "chatcmpl-7", "model": "gpt-4o", "choices": [{"index": 0, "delta": {"role": "assistant"}}]},
            {"choices": [{"index": 0, "delta": {"content": "Hello"}}]},
            {"choices": [{"index": 0, "delta": {"content": " there"}, "finish_reason": "stop"}]},
            {"choices": [], "usage": {"prompt_tokens": 3, "completion_tokens": 2, "total_tokens": 5}},
            "[DONE]",
        )

        def handler(request):
            return httpx.Response(200, content=body, headers={"content-type": "text/event-stream"})

        async with client_for(handler) as client:
            response = await collect_stream(stream_chat(
                client, "/v1/chat/completions", {"stream": True}, ProviderDialect.OPENAI,
                model="gpt-4o", metrics=metrics, tracing=tracing,
            ))

        assert response.content == "Hello there"
        assert response.id == "chatcmpl-7"
        assert response.finish_reason == FinishReason.STOP
        assert response.usage == Usage(3, 2, 5)

    @pytest.mark.asyncio
    async def test_metadata_when_first_chunk_has_text(self, metrics, tracing):
        body = sse_body(
            {"id": "chatcmpl-9", "model": "llama-3.3-70b", "choices": [
                {"index": 0, "delta": {"role": "assistant", "content": "Hi"}},
            ]},
            {"id": "chatcmpl-9", "choices": [{"index": 0, "delta": {}, "finish_reason": "stop"}]},
            "[DONE]",
        )

        async with client_for(lambda request: httpx.Response(200, content=body)) as client:
            response = await collect_stream(stream_chat(
                client, "/openai/v1/chat/completions", {"stream": True}, ProviderDialect.OPENAI,
                provider="groq", metrics=metrics, tracing=tracing,
            ))

        assert response.content == "Hi"
        assert response.id == "chatcmpl-9"
        assert response.model == "llama-3.3-70b"
        assert response.provider == "groq"
        assert response.finish_reason == FinishReason.STOP

    @pytest.mark.asyncio
    async def test_ollama_stream(self, metrics, tracing):
        body = (
            b'{"model":"llama3","message":{"role":"assistant","content":"Hi"},"done":false}\n'
            b'{"model":"llama3","done":true,"done_reason":"stop","prompt_eval_count":5,"eval_count":7}\n'
        )

        async with client_for(lambda request: httpx.Response(200, content=body)) as client:
            response = await collect_stream(stream_chat(
                client, "/api/chat", {"model": "llama3"}, ProviderDialect.OLLAMA,
                metrics=metrics, tracing=tracing,
            ))

        assert response.content == "Hi"
        assert response.usage == Usage(5, 7, 12)
        assert response.finish_reason == FinishReason.STOP


# ============================================================
# Failures Before Streaming
# ============================================================

class TestStreamChatErrors:
    """Test failures that happen before any body is streamed."""

    @pytest.mark.asyncio
    async def test_http_error_status(self, metrics, tracing):
        def handler(request):
            return httpx.Response(
                429,
                json={"error": {"message": "Rate limit reached", "type": "rate_limit_error"}},
                headers={"retry-after": "12"},
            )

        async with client_for(handler) as client:
            events = await events_of(stream_chat(
                client, "/v1/chat/completions", {}, ProviderDialect.OPENAI,
                request_id="req_429", metrics=metrics, tracing=tracing,
            ))

        assert len(events) == 1
        assert isinstance(events[0], ErrorEvent)
        error = events[0].error
        assert isinstance(error, RateLimitedError)
        assert error.error.retry_after == 12
        assert error.error.request_id == "req_429"

    @pytest.mark.asyncio
    async def test_http_error_raises_from_collect(self, metrics, tracing):
        def handler(request):
            return httpx.Response(
                401,
                json={"type": "error", "error": {"type": "authentication_error", "message": "invalid x-api-key"}},
            )

        async with client_for(handler) as client:
            with pytest.raises(AuthenticationError) as exc_info:
                await collect_stream(stream_chat(
                    client, "/v1/messages", {}, ProviderDialect.ANTHROPIC,
                    metrics=metrics, tracing=tracing,
                ))

        assert exc_info.value.error.provider == "anthropic"
        assert exc_info.value.partial_response.incomplete is True

    @pytest.mark.asyncio
    async def test_connect_error(self, metrics, tracing):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        async with client_for(handler) as client:
            events = await events_of(stream_chat(
                client, "/v1/chat/completions", {}, ProviderDialect.OPENAI,
                provider="groq", metrics=metrics, tracing=tracing,
            ))

        assert len(events) == 1
        assert isinstance(events[0].error, ConnectionTimeoutError)
        assert events[0].error.error.provider == "groq"

    @pytest.mark.asyncio
    async def test_server_disconnect_before_response(self, metrics, tracing):
        def handler(request):
            raise httpx.RemoteProtocolError("Server disconnected without sending a response.", request=request)

        async with client_for(handler) as client:
            events = await events_of(stream_chat(
                client, "/v1/messages", {}, ProviderDialect.ANTHROPIC,
                request_id="req_rp", metrics=metrics, tracing=tracing,
            ))

        assert len(events) == 1
        error = events[0].error
        assert isinstance(error, TransportError)
        assert "RemoteProtocolError" in error.error.message
        assert error.error.request_id == "req_rp"

    @pytest.mark.asyncio
    async def test_socket_error_before_response(self, metrics, tracing):
        def handler(request):
            raise OSError("network unreachable")

        async with client_for(handler) as client:
            events = await events_of(stream_chat(
                client, "/api/chat", {}, ProviderDialect.OLLAMA,
                metrics=metrics, tracing=tracing,
            ))

        assert len(events) == 1
        assert isinstance(events[0].error, TransportError)

    @pytest.mark.asyncio
    async def test_error_body_read_failure(self, metrics, tracing):
        class BrokenBody(httpx.AsyncByteStream):
            async def __aiter__(self):
                yield b'{"error": '
                raise httpx.ReadError("connection reset")

        def handler(request):
            return httpx.Response(503, stream=BrokenBody())

        async with client_for(handler) as client:
            events = await events_of(stream_chat(
                client, "/v1/chat/completions", {}, ProviderDialect.OPENAI,
                metrics=metrics, tracing=tracing,
            ))

        assert len(events) == 1
        assert isinstance(events[0].error, TransportError)


# ============================================================
# Live Providers
# ============================================================

@pytest.mark.integration
class TestLiveOllama:
    """Streams against a local Ollama server (RUN_INTEGRATION=1)."""

    @pytest.mark.asyncio
    async def test_stream_chat(self):
        base_url = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
        model = os.getenv("OLLAMA_MODEL", "llama3.2")

        async with httpx.AsyncClient(base_url=base_url, timeout=60.0) as client:
            response = await collect_stream(stream_chat(
                client,
                "/api/chat",
                {"model": model, "messages": [{"role": "user", "content": "Say hi"}], "stream": True},
                ProviderDialect.OLLAMA,
                model=model,
            ))

        assert response.content
        assert response.usage is not None
