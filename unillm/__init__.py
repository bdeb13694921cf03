"""
unillm - Unified streaming for LLM providers

Turns the incremental response formats of OpenAI-compatible, OpenAI
Responses, Anthropic, Gemini and Ollama endpoints into one ordered event
sequence, and folds that sequence into a complete response.

Usage:
    import httpx
    from unillm import ProviderDialect, collect_stream, stream_chat

    async with httpx.AsyncClient(base_url="https://api.openai.com") as client:
        events = stream_chat(client, "/v1/chat/completions", payload, ProviderDialect.OPENAI)
        response = await collect_stream(events)
"""

__version__ = "0.1.0"

from .core.errors import UnillmError
from .core.models import (
    ChatResponse,
    FinishReason,
    FinishReasonKind,
    ProviderDialect,
    ToolCall,
    Usage,
)
from .streaming import (
    ContentDelta,
    ErrorEvent,
    ReasoningDelta,
    StreamAccumulator,
    StreamEnd,
    StreamEvent,
    StreamPipeline,
    StreamStart,
    ThinkingDelta,
    ToolCallDelta,
    UsageUpdate,
    collect_stream,
)
from .transport import stream_chat

__all__ = [
    "__version__",
    "ChatResponse",
    "ContentDelta",
    "ErrorEvent",
    "FinishReason",
    "FinishReasonKind",
    "ProviderDialect",
    "ReasoningDelta",
    "StreamAccumulator",
    "StreamEnd",
    "StreamEvent",
    "StreamPipeline",
    "StreamStart",
    "ThinkingDelta",
    "ToolCall",
    "ToolCallDelta",
    "UnillmError",
    "Usage",
    "UsageUpdate",
    "collect_stream",
    "stream_chat",
]
