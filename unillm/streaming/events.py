"""
unillm - Stream Events

Provider-agnostic events produced by the streaming pipeline.

Events are immutable. Every provider dialect is converted into this one
vocabulary, and each event can be re-encoded as an SSE frame so that a
normalized stream can be relayed to another consumer.
"""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar, Dict, Optional

from ..core.errors import UnillmError
from ..core.models import FinishReason, ResponseMetadata, Usage


class StreamEventType(str, Enum):
    """Types of streaming events."""
    CONTENT_DELTA = "content_delta"
    TOOL_CALL_DELTA = "tool_call_delta"
    THINKING_DELTA = "thinking_delta"
    REASONING_DELTA = "reasoning_delta"
    USAGE_UPDATE = "usage_update"
    STREAM_START = "stream_start"
    STREAM_END = "stream_end"
    ERROR = "error"


@dataclass(frozen=True)
class StreamEvent:
    """Base class for all stream events."""
    event_type: ClassVar[StreamEventType]

    def to_dict(self) -> Dict[str, Any]:
        raise NotImplementedError

    def to_sse(self) -> str:
        """Convert to SSE format string."""
        return f"event: {self.event_type.value}\ndata: {json.dumps(self.to_dict(), ensure_ascii=False)}\n\n"


@dataclass(frozen=True)
class ContentDelta(StreamEvent):
    """Incremental fragment of the primary answer."""
    event_type: ClassVar[StreamEventType] = StreamEventType.CONTENT_DELTA

    text: str
    index: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"type": self.event_type.value, "text": self.text}
        if self.index is not None:
            data["index"] = self.index
        return data


@dataclass(frozen=True)
class ToolCallDelta(StreamEvent):
    """
    Incremental fragment of a tool invocation.

    Early fragments usually carry the id and name, later ones only
    argument text. Fragments without an id are routed by `index`.
    """
    event_type: ClassVar[StreamEventType] = StreamEventType.TOOL_CALL_DELTA

    call_id: Optional[str] = None
    name_fragment: Optional[str] = None
    arguments_fragment: Optional[str] = None
    index: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"type": self.event_type.value}
        if self.call_id is not None:
            data["call_id"] = self.call_id
        if self.name_fragment is not None:
            data["name"] = self.name_fragment
        if self.arguments_fragment is not None:
            data["arguments"] = self.arguments_fragment
        if self.index is not None:
            data["index"] = self.index
        return data


@dataclass(frozen=True)
class ThinkingDelta(StreamEvent):
    """Fragment of a thinking block (Anthropic, Gemini thoughts, Ollama)."""
    event_type: ClassVar[StreamEventType] = StreamEventType.THINKING_DELTA

    text: str

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.event_type.value, "text": self.text}


@dataclass(frozen=True)
class ReasoningDelta(StreamEvent):
    """Fragment of a reasoning channel (OpenAI-compatible reasoning_content)."""
    event_type: ClassVar[StreamEventType] = StreamEventType.REASONING_DELTA

    text: str

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.event_type.value, "text": self.text}


@dataclass(frozen=True)
class UsageUpdate(StreamEvent):
    """Token count report; counts are cumulative."""
    event_type: ClassVar[StreamEventType] = StreamEventType.USAGE_UPDATE

    usage: Usage

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.event_type.value, "usage": self.usage.to_dict()}


@dataclass(frozen=True)
class StreamStart(StreamEvent):
    event_type: ClassVar[StreamEventType] = StreamEventType.STREAM_START

    metadata: ResponseMetadata

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.event_type.value, "metadata": self.metadata.to_dict()}


@dataclass(frozen=True)
class StreamEnd(StreamEvent):
    """Terminal information the provider attaches to the end of a stream."""
    event_type: ClassVar[StreamEventType] = StreamEventType.STREAM_END

    finish_reason: Optional[FinishReason] = None
    usage: Optional[Usage] = None
    # Set when the opening metadata could not be sent as a StreamStart
    metadata: Optional[ResponseMetadata] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "type": self.event_type.value,
            "finish_reason": self.finish_reason.value if self.finish_reason else None,
        }
        if self.usage is not None:
            data["usage"] = self.usage.to_dict()
        if self.metadata is not None:
            data["metadata"] = self.metadata.to_dict()
        return data


@dataclass(frozen=True)
class ErrorEvent(StreamEvent):
    """Terminal failure. Nothing follows it."""
    event_type: ClassVar[StreamEventType] = StreamEventType.ERROR

    error: UnillmError

    def to_dict(self) -> Dict[str, Any]:
        data = self.error.error.to_dict()
        data["type"] = self.event_type.value
        return data


def sse_done() -> str:
    """Create the [DONE] frame."""
    return "data: [DONE]\n\n"
