"""
unillm - Stream Accumulator

Folds a stream event sequence into one ChatResponse.

- Content, thinking and reasoning are appended to separate buffers
- Tool call fragments are appended to per-call builders, in arrival order
- Usage reports are cumulative: present fields replace, absent fields keep
- A stream that ended with an error finalizes as an incomplete response
"""

from dataclasses import dataclass
from typing import AsyncIterable, Dict, Iterable, List, Optional, Union

from ..core.errors import UnillmError
from ..core.models import (
    ChatResponse,
    FinishReason,
    FunctionCall,
    ResponseMetadata,
    ToolCall,
    Usage,
)
from .events import (
    ContentDelta,
    ErrorEvent,
    ReasoningDelta,
    StreamEnd,
    StreamEvent,
    StreamEventType,
    StreamStart,
    ThinkingDelta,
    ToolCallDelta,
    UsageUpdate,
)


@dataclass(eq=False)
class ToolCallBuilder:
    """
    Accumulates one streamed tool call.

    Name and arguments grow by appending fragments; arguments are an
    opaque string until the caller parses them. `position` is the order
    the call first appeared in and names id-less calls.
    """
    id: Optional[str] = None
    index: Optional[int] = None
    name: str = ""
    arguments: str = ""
    position: int = 0

    def update(self, delta: ToolCallDelta):
        if delta.call_id and not self.id:
            self.id = delta.call_id
        if delta.name_fragment:
            self.name += delta.name_fragment
        if delta.arguments_fragment:
            self.arguments += delta.arguments_fragment

    def build(self) -> ToolCall:
        return ToolCall(
            id=self.id or f"call_{self.position}",
            function=FunctionCall(name=self.name, arguments=self.arguments),
        )


@dataclass(frozen=True)
class StreamUpdate:
    """
    Incremental view returned by `StreamAccumulator.apply`.

    `delta` is the text the event added and `accumulated` the whole buffer
    it was added to, so a UI can render either.
    """
    event_type: StreamEventType
    delta: Optional[str] = None
    accumulated: Optional[str] = None
    tool_call: Optional[ToolCall] = None
    index: Optional[int] = None
    usage: Optional[Usage] = None
    finish_reason: Optional[FinishReason] = None
    metadata: Optional[ResponseMetadata] = None
    error: Optional[UnillmError] = None


class StreamAccumulator:
    """
    Accumulator for one stream.

    Tool call routing: a fragment with a call id goes to the builder for
    that id, adopting an id-less builder at the same index if one exists.
    A fragment without an id goes to the builder last seen at its index,
    or, without an index either, to the most recent builder.
    """

    def __init__(self):
        self._content_text = ""
        self._thinking: List[str] = []
        self._reasoning: List[str] = []
        self._builders: List[ToolCallBuilder] = []
        self._by_id: Dict[str, ToolCallBuilder] = {}
        self._by_index: Dict[int, ToolCallBuilder] = {}
        self._usage: Optional[Usage] = None
        self._finish_reason: Optional[FinishReason] = None
        self._metadata = ResponseMetadata()
        self._error: Optional[UnillmError] = None
        self._finalized = False

    # ============================================================
    # Read access
    # ============================================================

    @property
    def content(self) -> str:
        return self._content_text

    @property
    def usage(self) -> Optional[Usage]:
        return self._usage

    @property
    def error(self) -> Optional[UnillmError]:
        return self._error

    @property
    def is_incomplete(self) -> bool:
        return self._error is not None

    def tool_call_count(self) -> int:
        return len(self._builders)

    # ============================================================
    # Apply
    # ============================================================

    def apply(self, event: StreamEvent) -> StreamUpdate:
        """Fold one event into the running state."""
        if self._finalized:
            raise RuntimeError("apply() called after finalize()")
        if self._error is not None:
            raise RuntimeError("apply() called after a terminal error event")

        if isinstance(event, ContentDelta):
            self._content_text += event.text
            return StreamUpdate(
                event.event_type,
                delta=event.text,
                accumulated=self._content_text,
                index=event.index,
            )

        if isinstance(event, ToolCallDelta):
            builder = self._route(event)
            builder.update(event)
            return StreamUpdate(
                event.event_type,
                delta=event.arguments_fragment,
                accumulated=builder.arguments,
                tool_call=builder.build(),
                index=builder.index,
            )

        if isinstance(event, ThinkingDelta):
            self._thinking.append(event.text)
            return StreamUpdate(event.event_type, delta=event.text, accumulated="".join(self._thinking))

        if isinstance(event, ReasoningDelta):
            self._reasoning.append(event.text)
            return StreamUpdate(event.event_type, delta=event.text, accumulated="".join(self._reasoning))

        if isinstance(event, UsageUpdate):
            self._merge_usage(event.usage)
            return StreamUpdate(event.event_type, usage=self._usage)

        if isinstance(event, StreamStart):
            self._metadata = event.metadata
            return StreamUpdate(event.event_type, metadata=event.metadata)

        if isinstance(event, StreamEnd):
            if event.finish_reason is not None:
                self._finish_reason = event.finish_reason
            if event.usage is not None:
                self._merge_usage(event.usage)
            if event.metadata is not None:
                self._metadata = event.metadata
            return StreamUpdate(
                event.event_type,
                usage=self._usage,
                finish_reason=self._finish_reason,
                metadata=event.metadata,
            )

        if isinstance(event, ErrorEvent):
            self._error = event.error
            return StreamUpdate(
                event.event_type,
                accumulated=self._content_text,
                error=event.error,
            )

        raise TypeError(f"Unknown stream event: {type(event).__name__}")

    def _merge_usage(self, usage: Usage):
        self._usage = usage if self._usage is None else self._usage.merge(usage)

    def _route(self, delta: ToolCallDelta) -> ToolCallBuilder:
        builder: Optional[ToolCallBuilder] = None

        if delta.call_id:
            builder = self._by_id.get(delta.call_id)
            if builder is None and delta.index is not None:
                candidate = self._by_index.get(delta.index)
                if candidate is not None and candidate.id is None:
                    builder = candidate
            if builder is None:
                builder = self._new_builder(delta.index)
            self._by_id[delta.call_id] = builder
        elif delta.index is not None:
            builder = self._by_index.get(delta.index)
            if builder is None:
                builder = self._new_builder(delta.index)
        elif self._builders:
            builder = self._builders[-1]
        else:
            builder = self._new_builder(None)

        if delta.index is not None:
            self._by_index[delta.index] = builder
            if builder.index is None:
                builder.index = delta.index
        return builder

    def _new_builder(self, index: Optional[int]) -> ToolCallBuilder:
        builder = ToolCallBuilder(index=index, position=len(self._builders))
        self._builders.append(builder)
        return builder

    # ============================================================
    # Finalize
    # ============================================================

    def finalize(self) -> ChatResponse:
        """
        Build the aggregate response. Call once, after the stream ends.

        If the stream ended with an error, the response holds whatever
        arrived before it and is marked incomplete.
        """
        if self._finalized:
            raise RuntimeError("finalize() called twice")
        self._finalized = True

        tool_calls = [builder.build() for builder in self._builders]
        self._builders = []
        self._by_id.clear()
        self._by_index.clear()

        thinking = "".join(self._thinking)
        reasoning = "".join(self._reasoning)
        return ChatResponse(
            content=self._content_text,
            tool_calls=tool_calls,
            thinking=thinking or None,
            reasoning=reasoning or None,
            usage=self._usage,
            finish_reason=self._finish_reason,
            id=self._metadata.id,
            model=self._metadata.model,
            provider=self._metadata.provider,
            incomplete=self._error is not None,
            error=self._error,
        )


async def collect_stream(
    events: Union[AsyncIterable[StreamEvent], Iterable[StreamEvent]],
) -> ChatResponse:
    """
    Consume a whole event stream and return the aggregate response.

    Raises the stream's terminal error instead of returning; the partial
    response is attached to it as `partial_response`.
    """
    accumulator = StreamAccumulator()
    if hasattr(events, "__aiter__"):
        async for event in events:
            accumulator.apply(event)
    else:
        for event in events:
            accumulator.apply(event)

    response = accumulator.finalize()
    if response.error is not None:
        error = response.error
        error.partial_response = response
        if response.content:
            error.error.partial_content = response.content
        raise error
    return response
