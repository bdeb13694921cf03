"""
unillm - Streaming Module

Normalized streaming for all provider dialects:
- Frame decoding (SSE and JSON value streams)
- Per-dialect event conversion
- Lazy single-pass event pipeline
- Accumulation into one aggregate response
"""

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
    sse_done,
)
from .decoder import (
    Frame,
    FrameDecoder,
    JSONFrameDecoder,
    SSEFrameDecoder,
    create_frame_decoder,
)
from .converters import (
    EventConverter,
    create_converter,
)
from .pipeline import (
    StreamPipeline,
    Termination,
)
from .accumulator import (
    StreamAccumulator,
    StreamUpdate,
    ToolCallBuilder,
    collect_stream,
)

__all__ = [
    # Events
    "ContentDelta",
    "ErrorEvent",
    "ReasoningDelta",
    "StreamEnd",
    "StreamEvent",
    "StreamEventType",
    "StreamStart",
    "ThinkingDelta",
    "ToolCallDelta",
    "UsageUpdate",
    "sse_done",
    # Decoder
    "Frame",
    "FrameDecoder",
    "JSONFrameDecoder",
    "SSEFrameDecoder",
    "create_frame_decoder",
    # Converters
    "EventConverter",
    "create_converter",
    # Pipeline
    "StreamPipeline",
    "Termination",
    # Accumulator
    "StreamAccumulator",
    "StreamUpdate",
    "ToolCallBuilder",
    "collect_stream",
]
