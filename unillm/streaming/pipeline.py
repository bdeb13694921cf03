"""
unillm - Stream Pipeline

Composes byte source -> frame decoder -> event converter into one lazy,
pull-based, single-pass async sequence of stream events.

Termination, in priority order:
1. `[DONE]` or an in-band done marker -> clean end
2. the byte source closes -> clean end
3. transport, decode, parse or provider error -> one ErrorEvent, then end
4. the consumer stops iterating -> the source is closed, nothing more is read

Usage:
    pipeline = StreamPipeline.from_response(response, ProviderDialect.OPENAI, model="gpt-4o")
    async with pipeline:
        async for event in pipeline:
            ...
"""

import time
import uuid
from contextlib import nullcontext
from enum import Enum
from typing import Any, AsyncIterable, AsyncIterator, Awaitable, Callable, Iterable, List, Optional

import httpx

from ..config import get_settings
from ..core.errors import UnillmError, map_transport_exception
from ..core.models import ProviderDialect, Usage
from ..observability.logging import get_logger
from ..observability.metrics import MetricsCollector, StreamOutcome, get_metrics
from ..observability.tracing import TracingManager, get_tracing_manager
from .converters import EventConverter, create_converter
from .decoder import Frame, FrameDecoder, create_frame_decoder
from .events import ErrorEvent, StreamEnd, StreamEvent, UsageUpdate

logger = get_logger(__name__)

# Exceptions a byte source raises when the transport fails
TRANSPORT_EXCEPTIONS = (UnillmError, httpx.HTTPError, OSError, TimeoutError)


class Termination(str, Enum):
    """Why a stream stopped."""
    SENTINEL = "sentinel"
    DONE = "done"
    CLOSED = "closed"
    ERROR = "error"
    CANCELLED = "cancelled"


class StreamPipeline:
    """
    Normalized event stream over one HTTP response body.

    Not restartable: iterating a second time raises RuntimeError. Closing
    the pipeline (aclose, `async with`, or abandoning an iteration that is
    then closed) closes the byte source and releases the connection.
    """

    def __init__(
        self,
        source: AsyncIterable[bytes],
        dialect: ProviderDialect,
        provider: Optional[str] = None,
        model: str = "",
        request_id: str = "",
        on_close: Optional[Callable[[], Awaitable[Any]]] = None,
        max_frame_bytes: Optional[int] = None,
        metrics: Optional[MetricsCollector] = None,
        tracing: Optional[TracingManager] = None,
    ):
        settings = get_settings()

        self.dialect = dialect
        self.provider = provider or dialect.value
        self.model = model
        self.request_id = request_id or f"req_{uuid.uuid4().hex[:12]}"

        self._source = source
        self._source_iter: Optional[AsyncIterator[bytes]] = None
        self._on_close = on_close
        self._decoder: FrameDecoder = create_frame_decoder(dialect, max_frame_bytes)
        self._converter: EventConverter = create_converter(dialect, self.provider, self.request_id)

        if metrics is None and settings.metrics_enabled:
            metrics = get_metrics()
        if tracing is None and settings.tracing_enabled:
            tracing = get_tracing_manager()
        self._metrics = metrics
        self._tracing = tracing
        self._log_payloads = settings.log_payloads

        self._iterator: Optional[AsyncIterator[StreamEvent]] = None
        self._closed = False
        self.termination: Optional[Termination] = None
        self.events_emitted = 0
        self.usage: Optional[Usage] = None

    @classmethod
    def from_response(
        cls,
        response: httpx.Response,
        dialect: ProviderDialect,
        **kwargs,
    ) -> "StreamPipeline":
        """Stream an open httpx response; closing the pipeline closes the response."""
        return cls(response.aiter_bytes(), dialect, on_close=response.aclose, **kwargs)

    def __aiter__(self) -> AsyncIterator[StreamEvent]:
        if self._iterator is not None or self._closed:
            raise RuntimeError("StreamPipeline is single-pass; issue a new request to stream again")
        self._iterator = self._run()
        return self._iterator

    async def aclose(self):
        """Stop the pipeline and release the underlying connection."""
        if self._iterator is not None:
            await self._iterator.aclose()
        if not self._closed:
            await self._close_source()

    async def __aenter__(self) -> "StreamPipeline":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    # ============================================================
    # Iteration
    # ============================================================

    async def _run(self) -> AsyncIterator[StreamEvent]:
        started = time.perf_counter()
        span = None
        if self._tracing is not None:
            span = self._tracing.start_stream_span(
                self.provider, self.model, self.dialect.value,
                attributes={"ai.request_id": self.request_id},
            )
        tracker = self._metrics.track_active_stream(self.provider) if self._metrics else nullcontext()
        error: Optional[UnillmError] = None
        finish_reason = None

        logger.debug(
            "Stream opened",
            request_id=self.request_id,
            provider=self.provider,
            model=self.model,
            dialect=self.dialect.value,
        )

        events = self._events()
        try:
            with tracker:
                async for event in events:
                    if self.events_emitted == 0 and self._metrics is not None:
                        self._metrics.record_time_to_first_event(
                            self.provider, self.model, time.perf_counter() - started
                        )
                    self.events_emitted += 1
                    if self._metrics is not None:
                        self._metrics.record_event(self.provider, event.event_type.value)

                    if isinstance(event, UsageUpdate):
                        self._track_usage(event.usage)
                    elif isinstance(event, StreamEnd):
                        finish_reason = event.finish_reason
                        if event.usage is not None:
                            self._track_usage(event.usage)
                    elif isinstance(event, ErrorEvent):
                        error = event.error

                    yield event
        finally:
            if self.termination is None:
                self.termination = Termination.CANCELLED
            await events.aclose()
            await self._close_source()
            self._finish(started, span, error, finish_reason)

    async def _events(self) -> AsyncIterator[StreamEvent]:
        self._source_iter = self._source.__aiter__()

        while True:
            try:
                chunk = await self._source_iter.__anext__()
            except StopAsyncIteration:
                break
            except TRANSPORT_EXCEPTIONS as exc:
                yield self._fail(map_transport_exception(self.provider, exc, self.request_id))
                return

            try:
                frames = self._decoder.feed(chunk)
            except UnillmError as exc:
                yield self._fail(exc)
                return

            for event in self._convert_frames(frames):
                yield event
            if self.termination is not None:
                return
            # Frames before a bad byte were delivered; now surface the failure.
            if self._decoder.pending_error is not None:
                yield self._fail(self._decoder.pending_error)
                return

        try:
            frames = self._decoder.flush()
        except UnillmError as exc:
            yield self._fail(exc)
            return

        for event in self._convert_frames(frames):
            yield event
        if self.termination is None:
            self.termination = Termination.CLOSED
            final = self._converter.finish()
            if final is not None:
                yield final

    def _convert_frames(self, frames: List[Frame]) -> Iterable[StreamEvent]:
        for frame in frames:
            if frame.sentinel:
                self.termination = Termination.SENTINEL
                break

            if self._log_payloads:
                logger.debug("Frame received", request_id=self.request_id, payload=frame.data)

            try:
                event = self._converter.convert(frame)
            except UnillmError as exc:
                yield self._fail(exc)
                return

            if isinstance(event, ErrorEvent):
                yield self._fail(event.error)
                return
            if event is not None:
                yield event

            if self._converter.done:
                self.termination = Termination.DONE
                break

        if self.termination in (Termination.SENTINEL, Termination.DONE):
            final = self._converter.finish()
            if final is not None:
                yield final

    def _fail(self, error: UnillmError) -> ErrorEvent:
        self.termination = Termination.ERROR
        if not error.error.provider:
            error.error.provider = self.provider
        if not error.error.request_id:
            error.error.request_id = self.request_id
        return ErrorEvent(error)

    def _track_usage(self, usage: Usage):
        self.usage = usage if self.usage is None else self.usage.merge(usage)

    # ============================================================
    # Cleanup
    # ============================================================

    async def _close_source(self):
        if self._closed:
            return
        self._closed = True
        iterator_close = getattr(self._source_iter, "aclose", None)
        if iterator_close is not None:
            await iterator_close()
        if self._on_close is not None:
            await self._on_close()

    def _finish(self, started: float, span, error: Optional[UnillmError], finish_reason):
        duration = time.perf_counter() - started

        if error is not None:
            outcome = StreamOutcome.ERROR
        elif self.termination is Termination.CANCELLED:
            outcome = StreamOutcome.CANCELLED
        else:
            outcome = StreamOutcome.COMPLETED

        if self._metrics is not None:
            self._metrics.record_stream(
                self.provider,
                self.model,
                outcome,
                duration,
                error_code=error.code if error is not None else None,
            )
            if self.usage is not None:
                self._metrics.record_tokens(
                    self.provider,
                    self.model,
                    self.usage.prompt_tokens,
                    self.usage.completion_tokens,
                )

        if span is not None:
            span.set_attribute("ai.events", self.events_emitted)
            span.set_attribute("ai.termination", self.termination.value)
            if finish_reason is not None:
                span.set_attribute("ai.finish_reason", finish_reason.value)
            if error is not None:
                TracingManager.record_exception(span, error)
            span.end()

        log_fields = dict(
            request_id=self.request_id,
            provider=self.provider,
            model=self.model,
            termination=self.termination.value,
            events=self.events_emitted,
            duration_ms=round(duration * 1000, 2),
        )
        if error is not None:
            logger.warning(
                "Stream failed",
                error_code=error.code,
                error_message=str(error),
                **log_fields,
            )
        else:
            logger.info("Stream finished", **log_fields)
