"""
unillm - Streaming Transport

HTTP boundary of the streaming pipeline: opens a streaming request with
httpx and yields normalized events from the response body.

Request construction, authentication, retry and failover are the caller's
responsibility; a failed attempt surfaces as a single terminal ErrorEvent
and a fresh request is needed to try again.
"""

from typing import Any, AsyncIterator, Dict, Optional

import httpx

from .core.errors import map_http_error, map_transport_exception
from .core.models import ProviderDialect
from .observability.logging import get_logger
from .streaming.events import ErrorEvent, StreamEvent
from .streaming.pipeline import StreamPipeline

logger = get_logger(__name__)

# Provider error bodies are small; do not read unbounded error responses.
MAX_ERROR_BODY_BYTES = 64 * 1024


async def stream_chat(
    client: httpx.AsyncClient,
    url: str,
    payload: Dict[str, Any],
    dialect: ProviderDialect,
    headers: Optional[Dict[str, str]] = None,
    provider: Optional[str] = None,
    model: str = "",
    request_id: str = "",
    **pipeline_kwargs: Any,
) -> AsyncIterator[StreamEvent]:
    """
    POST a streaming request and yield its normalized events.

    Closing the returned generator closes the HTTP response.
    """
    provider = provider or dialect.value
    responded = False
    try:
        async with client.stream("POST", url, json=payload, headers=headers) as response:
            if response.status_code >= 400:
                body = await _read_error_body(response)
                error = map_http_error(
                    provider,
                    response.status_code,
                    body,
                    response.headers,
                    request_id=request_id,
                )
                logger.warning(
                    "Provider rejected streaming request",
                    request_id=request_id,
                    provider=provider,
                    status_code=response.status_code,
                    error_code=error.code,
                )
                responded = True
                yield ErrorEvent(error)
                return

            responded = True
            pipeline = StreamPipeline(
                response.aiter_bytes(),
                dialect,
                provider=provider,
                model=model,
                request_id=request_id,
                **pipeline_kwargs,
            )
            async with pipeline:
                async for event in pipeline:
                    yield event
    except (httpx.HTTPError, OSError) as exc:
        # Once an event is out, failures belong to that event or the pipeline
        if responded:
            raise
        error = map_transport_exception(provider, exc, request_id)
        logger.warning(
            "Streaming request failed before the body was read",
            request_id=request_id,
            provider=provider,
            error_code=error.code,
            exception_type=type(exc).__name__,
        )
        yield ErrorEvent(error)


async def _read_error_body(response: httpx.Response) -> bytes:
    body = b""
    async for chunk in response.aiter_bytes():
        body += chunk
        if len(body) >= MAX_ERROR_BODY_BYTES:
            break
    return body[:MAX_ERROR_BODY_BYTES]
