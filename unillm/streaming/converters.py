"""
unillm - Event Converters

Maps decoded frames from each provider dialect to canonical stream events.

Contract shared by every converter:
- at most one event per frame; structural frames (pings, block markers)
  and unknown frame types produce none
- malformed payloads raise PayloadParseError
- provider error frames are returned as an ErrorEvent
- finish reasons and usage that arrive alongside another payload are held
  and delivered by `finish()` as one StreamEnd when the stream ends cleanly

Tool-call routing per dialect:
- openai: by `index`, the id arrives on the first fragment
- openai_responses: by `output_index`, the call id arrives on output_item.added
- anthropic: by call id, resolved from the content block index
- gemini, ollama: by running call index, calls arrive complete
"""

import json
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from ..core.errors import ContentFilteredError, PayloadParseError, map_error_payload
from ..core.models import (
    FinishReason,
    FinishReasonKind,
    ProviderDialect,
    ResponseMetadata,
    Usage,
)
from .decoder import Frame
from .events import (
    ContentDelta,
    ErrorEvent,
    ReasoningDelta,
    StreamEnd,
    StreamEvent,
    StreamStart,
    ThinkingDelta,
    ToolCallDelta,
    UsageUpdate,
)


class EventConverter(ABC):
    """Base class for provider dialect converters. One instance per stream."""

    dialect: ProviderDialect
    finish_map: Dict[str, FinishReasonKind] = {}

    def __init__(self, provider: Optional[str] = None, request_id: str = ""):
        self.provider = provider or self.dialect.value
        self.request_id = request_id
        # In-band end of stream seen (Ollama done:true, Anthropic message_stop)
        self.done = False
        self._pending_finish: Optional[FinishReason] = None
        self._pending_usage: Optional[Usage] = None
        self._pending_metadata: Optional[ResponseMetadata] = None
        self._end_emitted = False

    @abstractmethod
    def convert(self, frame: Frame) -> Optional[StreamEvent]:
        """Convert one frame into zero or one event."""

    def finish(self) -> Optional[StreamEvent]:
        """Deliver held terminal information once the stream ends cleanly."""
        if self._end_emitted:
            return None
        pending = (self._pending_finish, self._pending_usage, self._pending_metadata)
        if all(value is None for value in pending):
            return None
        return self._end(self._pending_finish, self._pending_usage)

    # ============================================================
    # Helpers
    # ============================================================

    def _end(self, finish_reason: Optional[FinishReason], usage: Optional[Usage] = None) -> StreamEnd:
        self._end_emitted = True
        self._pending_finish = None
        self._pending_usage = None
        metadata, self._pending_metadata = self._pending_metadata, None
        return StreamEnd(finish_reason=finish_reason, usage=usage, metadata=metadata)

    def _hold(self, finish_reason: Optional[FinishReason] = None, usage: Optional[Usage] = None):
        if finish_reason is not None:
            self._pending_finish = finish_reason
        if usage is not None:
            self._pending_usage = usage if self._pending_usage is None else self._pending_usage.merge(usage)

    def _finish_reason(self, raw: Any) -> Optional[FinishReason]:
        if raw is not None and not isinstance(raw, str):
            raise self._schema_error("finish reason must be a string", raw)
        return FinishReason.from_provider(raw, self.finish_map)

    def _parse(self, frame: Frame) -> Dict[str, Any]:
        try:
            data = json.loads(frame.data)
        except json.JSONDecodeError as exc:
            raise PayloadParseError(
                f"Invalid JSON in {self.provider} stream frame: {exc.msg}",
                provider=self.provider,
                payload=frame.data,
                request_id=self.request_id,
            ) from exc
        if not isinstance(data, dict):
            raise PayloadParseError(
                f"Expected a JSON object in {self.provider} stream frame",
                provider=self.provider,
                payload=frame.data,
                request_id=self.request_id,
            )
        return data

    def _schema_error(self, message: str, value: Any = None) -> PayloadParseError:
        return PayloadParseError(
            f"Unexpected {self.provider} stream payload: {message}",
            provider=self.provider,
            payload=json.dumps(value, default=str) if value is not None else "",
            request_id=self.request_id,
        )

    def _obj(self, value: Any, what: str) -> Dict[str, Any]:
        if value is None:
            return {}
        if not isinstance(value, dict):
            raise self._schema_error(f"'{what}' must be an object", value)
        return value

    def _list(self, value: Any, what: str) -> List[Any]:
        if value is None:
            return []
        if not isinstance(value, list):
            raise self._schema_error(f"'{what}' must be an array", value)
        return value

    def _str(self, value: Any, what: str) -> Optional[str]:
        if value is None or isinstance(value, str):
            return value
        raise self._schema_error(f"'{what}' must be a string", value)

    def _int(self, value: Any, what: str) -> Optional[int]:
        if value is None:
            return None
        if isinstance(value, bool) or not isinstance(value, int):
            raise self._schema_error(f"'{what}' must be an integer", value)
        return value

    def _error(self, error: Any, status_code: Optional[int] = None) -> ErrorEvent:
        return ErrorEvent(map_error_payload(self.provider, error, status_code, self.request_id))


# ============================================================
# OpenAI Chat Completions (and compatible providers)
# ============================================================

class OpenAIConverter(EventConverter):
    """OpenAI Chat Completions chunks; also xAI, Groq, DeepSeek, OpenRouter."""

    dialect = ProviderDialect.OPENAI
    finish_map = {
        "stop": FinishReasonKind.STOP,
        "length": FinishReasonKind.LENGTH,
        "tool_calls": FinishReasonKind.TOOL_CALLS,
        "function_call": FinishReasonKind.TOOL_CALLS,
        "content_filter": FinishReasonKind.CONTENT_FILTER,
    }

    def __init__(self, provider: Optional[str] = None, request_id: str = ""):
        super().__init__(provider, request_id)
        self._started = False

    def convert(self, frame: Frame) -> Optional[StreamEvent]:
        data = self._parse(frame)

        if data.get("error"):
            return self._error(data["error"])

        choices = self._list(data.get("choices"), "choices")
        usage = self._usage(data.get("usage"))

        if not choices:
            if usage is not None:
                return UsageUpdate(usage)
            # Compatible gateways that flatten chunks to a bare text delta
            text = data.get("delta")
            return ContentDelta(text) if isinstance(text, str) and text else None

        choice = self._obj(choices[0], "choices[0]")
        delta = self._obj(choice.get("delta"), "delta")
        finish_reason = self._finish_reason(choice.get("finish_reason"))
        index = self._int(choice.get("index"), "index")

        event = self._delta_event(delta, index)

        first = not self._started
        self._started = True
        if first:
            metadata = self._opening_metadata(data)
            # A role-only first chunk opens the stream
            if event is None and usage is None and finish_reason is None:
                return StreamStart(metadata) if metadata is not None else None
            # Content in the first chunk; the metadata goes out with StreamEnd
            self._pending_metadata = metadata

        if event is not None:
            self._hold(finish_reason, usage)
            return event
        if usage is not None:
            self._hold(finish_reason)
            return UsageUpdate(usage)
        if finish_reason is not None:
            return self._end(finish_reason)
        return None

    def _opening_metadata(self, data: Dict[str, Any]) -> Optional[ResponseMetadata]:
        if not (data.get("id") or data.get("model")):
            return None
        return ResponseMetadata(
            id=self._str(data.get("id"), "id"),
            model=self._str(data.get("model"), "model"),
            provider=self.provider,
            created=self._int(data.get("created"), "created"),
        )

    def _delta_event(self, delta: Dict[str, Any], index: Optional[int]) -> Optional[StreamEvent]:
        content = self._str(delta.get("content"), "delta.content")
        if content:
            return ContentDelta(content, index)

        reasoning = self._str(
            delta.get("reasoning_content", delta.get("reasoning")), "delta.reasoning_content"
        )
        if reasoning:
            return ReasoningDelta(reasoning)

        thinking = self._str(delta.get("thinking"), "delta.thinking")
        if thinking:
            return ThinkingDelta(thinking)

        tool_calls = self._list(delta.get("tool_calls"), "delta.tool_calls")
        if tool_calls:
            call = self._obj(tool_calls[0], "delta.tool_calls[0]")
            function = self._obj(call.get("function"), "tool_calls[0].function")
            return ToolCallDelta(
                call_id=self._str(call.get("id"), "tool_calls[0].id") or None,
                name_fragment=self._str(function.get("name"), "function.name") or None,
                arguments_fragment=self._str(function.get("arguments"), "function.arguments") or None,
                index=self._int(call.get("index"), "tool_calls[0].index"),
            )
        return None

    def _usage(self, raw: Any) -> Optional[Usage]:
        if raw is None:
            return None
        usage = self._obj(raw, "usage")
        prompt_details = self._obj(usage.get("prompt_tokens_details"), "prompt_tokens_details")
        completion_details = self._obj(
            usage.get("completion_tokens_details"), "completion_tokens_details"
        )
        return Usage(
            prompt_tokens=self._int(usage.get("prompt_tokens"), "prompt_tokens"),
            completion_tokens=self._int(usage.get("completion_tokens"), "completion_tokens"),
            total_tokens=self._int(usage.get("total_tokens"), "total_tokens"),
            reasoning_tokens=self._int(completion_details.get("reasoning_tokens"), "reasoning_tokens"),
            cached_tokens=self._int(prompt_details.get("cached_tokens"), "cached_tokens"),
        )


# ============================================================
# OpenAI Responses API
# ============================================================

class OpenAIResponsesConverter(EventConverter):
    """OpenAI Responses API typed events."""

    dialect = ProviderDialect.OPENAI_RESPONSES

    def convert(self, frame: Frame) -> Optional[StreamEvent]:
        data = self._parse(frame)
        event_type = data.get("type") or frame.event

        if event_type is None:
            # Gateways that strip event typing send bare text deltas
            text = data.get("delta")
            if isinstance(text, str):
                return ContentDelta(text) if text else None
            if data.get("error"):
                return self._error(data["error"])
            return None

        if event_type == "response.output_text.delta":
            text = self._str(data.get("delta"), "delta")
            return ContentDelta(text, self._int(data.get("output_index"), "output_index")) if text else None

        if event_type in ("response.reasoning_summary_text.delta", "response.reasoning_text.delta"):
            text = self._str(data.get("delta"), "delta")
            return ReasoningDelta(text) if text else None

        if event_type == "response.output_item.added":
            item = self._obj(data.get("item"), "item")
            if item.get("type") != "function_call":
                return None
            return ToolCallDelta(
                call_id=self._str(item.get("call_id"), "item.call_id"),
                name_fragment=self._str(item.get("name"), "item.name") or None,
                arguments_fragment=self._str(item.get("arguments"), "item.arguments") or None,
                index=self._int(data.get("output_index"), "output_index"),
            )

        if event_type == "response.function_call_arguments.delta":
            fragment = self._str(data.get("delta"), "delta")
            if not fragment:
                return None
            return ToolCallDelta(
                arguments_fragment=fragment,
                index=self._int(data.get("output_index"), "output_index"),
            )

        if event_type == "response.created":
            response = self._obj(data.get("response"), "response")
            return StreamStart(ResponseMetadata(
                id=self._str(response.get("id"), "response.id"),
                model=self._str(response.get("model"), "response.model"),
                provider=self.provider,
                created=self._int(response.get("created_at"), "response.created_at"),
            ))

        if event_type in ("response.completed", "response.incomplete"):
            response = self._obj(data.get("response"), "response")
            return self._end(self._status_reason(response), self._usage(response.get("usage")))

        if event_type == "response.failed":
            response = self._obj(data.get("response"), "response")
            return self._error(response.get("error") or {"message": "Response failed"})

        if event_type == "error":
            return self._error(data.get("error") or data)

        return None

    def _status_reason(self, response: Dict[str, Any]) -> Optional[FinishReason]:
        status = self._str(response.get("status"), "response.status")
        if status == "completed":
            output = self._list(response.get("output"), "response.output")
            if any(isinstance(item, dict) and item.get("type") == "function_call" for item in output):
                return FinishReason.TOOL_CALLS
            return FinishReason.STOP
        if status == "incomplete":
            details = self._obj(response.get("incomplete_details"), "incomplete_details")
            reason = details.get("reason")
            if reason == "max_output_tokens":
                return FinishReason.LENGTH
            if reason == "content_filter":
                return FinishReason.CONTENT_FILTER
            return FinishReason(FinishReasonKind.OTHER, reason or status)
        if status:
            return FinishReason(FinishReasonKind.OTHER, status)
        return None

    def _usage(self, raw: Any) -> Optional[Usage]:
        if raw is None:
            return None
        usage = self._obj(raw, "usage")
        input_details = self._obj(usage.get("input_tokens_details"), "input_tokens_details")
        output_details = self._obj(usage.get("output_tokens_details"), "output_tokens_details")
        return Usage(
            prompt_tokens=self._int(usage.get("input_tokens"), "input_tokens"),
            completion_tokens=self._int(usage.get("output_tokens"), "output_tokens"),
            total_tokens=self._int(usage.get("total_tokens"), "total_tokens"),
            reasoning_tokens=self._int(output_details.get("reasoning_tokens"), "reasoning_tokens"),
            cached_tokens=self._int(input_details.get("cached_tokens"), "cached_tokens"),
        )


# ============================================================
# Anthropic Messages
# ============================================================

class AnthropicConverter(EventConverter):
    """Anthropic Messages streaming events."""

    dialect = ProviderDialect.ANTHROPIC
    finish_map = {
        "end_turn": FinishReasonKind.STOP,
        "stop_sequence": FinishReasonKind.STOP,
        "max_tokens": FinishReasonKind.LENGTH,
        "tool_use": FinishReasonKind.TOOL_CALLS,
        "refusal": FinishReasonKind.CONTENT_FILTER,
    }

    def __init__(self, provider: Optional[str] = None, request_id: str = ""):
        super().__init__(provider, request_id)
        self._block_ids: Dict[int, str] = {}
        self._input_tokens: Optional[int] = None
        self._cached_tokens: Optional[int] = None

    def convert(self, frame: Frame) -> Optional[StreamEvent]:
        data = self._parse(frame)
        event_type = data.get("type") or frame.event

        if event_type == "message_start":
            message = self._obj(data.get("message"), "message")
            usage = self._obj(message.get("usage"), "message.usage")
            self._input_tokens = self._int(usage.get("input_tokens"), "input_tokens")
            self._cached_tokens = self._int(
                usage.get("cache_read_input_tokens"), "cache_read_input_tokens"
            )
            return StreamStart(ResponseMetadata(
                id=self._str(message.get("id"), "message.id"),
                model=self._str(message.get("model"), "message.model"),
                provider=self.provider,
            ))

        if event_type == "content_block_start":
            index = self._int(data.get("index"), "index")
            block = self._obj(data.get("content_block"), "content_block")
            if block.get("type") != "tool_use":
                return None
            call_id = self._str(block.get("id"), "content_block.id")
            if index is not None and call_id:
                self._block_ids[index] = call_id
            return ToolCallDelta(
                call_id=call_id,
                name_fragment=self._str(block.get("name"), "content_block.name"),
                index=index,
            )

        if event_type == "content_block_delta":
            return self._block_delta(data)

        if event_type == "message_delta":
            delta = self._obj(data.get("delta"), "delta")
            self._hold(self._finish_reason(delta.get("stop_reason")))
            usage = self._obj(data.get("usage"), "usage")
            output_tokens = self._int(usage.get("output_tokens"), "output_tokens")
            if output_tokens is None:
                return None
            input_tokens = self._int(usage.get("input_tokens"), "input_tokens")
            if input_tokens is not None:
                self._input_tokens = input_tokens
            return UsageUpdate(Usage.from_counts(
                self._input_tokens,
                output_tokens,
                cached_tokens=self._cached_tokens,
            ))

        if event_type == "message_stop":
            self.done = True
            return self._end(self._pending_finish, self._pending_usage)

        if event_type == "error":
            return self._error(data.get("error") or data)

        # ping, content_block_stop, unknown types
        return None

    def _block_delta(self, data: Dict[str, Any]) -> Optional[StreamEvent]:
        index = self._int(data.get("index"), "index")
        delta = self._obj(data.get("delta"), "delta")
        delta_type = delta.get("type")

        if delta_type == "text_delta":
            text = self._str(delta.get("text"), "delta.text")
            return ContentDelta(text) if text else None

        if delta_type == "thinking_delta":
            text = self._str(delta.get("thinking"), "delta.thinking")
            return ThinkingDelta(text) if text else None

        if delta_type == "input_json_delta":
            fragment = self._str(delta.get("partial_json"), "delta.partial_json")
            if not fragment:
                return None
            return ToolCallDelta(
                call_id=self._block_ids.get(index) if index is not None else None,
                arguments_fragment=fragment,
                index=index,
            )

        # signature_delta and future delta types
        return None


# ============================================================
# Google Gemini
# ============================================================

class GeminiConverter(EventConverter):
    """Gemini streamGenerateContent chunks (one element of a streamed JSON array)."""

    dialect = ProviderDialect.GEMINI
    finish_map = {
        "STOP": FinishReasonKind.STOP,
        "MAX_TOKENS": FinishReasonKind.LENGTH,
        "SAFETY": FinishReasonKind.CONTENT_FILTER,
        "RECITATION": FinishReasonKind.CONTENT_FILTER,
        "BLOCKLIST": FinishReasonKind.CONTENT_FILTER,
        "PROHIBITED_CONTENT": FinishReasonKind.CONTENT_FILTER,
        "SPII": FinishReasonKind.CONTENT_FILTER,
    }

    def __init__(self, provider: Optional[str] = None, request_id: str = ""):
        super().__init__(provider, request_id)
        self._calls = 0
        self._started = False

    def convert(self, frame: Frame) -> Optional[StreamEvent]:
        data = self._parse(frame)

        if data.get("error"):
            return self._error(data["error"])

        feedback = self._obj(data.get("promptFeedback"), "promptFeedback")
        if feedback.get("blockReason"):
            return ErrorEvent(ContentFilteredError(
                self.provider, str(feedback["blockReason"]), self.request_id
            ))

        usage = self._usage(data.get("usageMetadata"))
        candidates = self._list(data.get("candidates"), "candidates")
        candidate = self._obj(candidates[0], "candidates[0]") if candidates else {}
        finish_reason = self._finish_reason(candidate.get("finishReason"))

        event = self._parts_event(candidate)
        if event is not None:
            self._hold(finish_reason, usage)
            return event
        if finish_reason is not None:
            self._hold(finish_reason)
        if usage is not None:
            return UsageUpdate(usage)
        if not self._started and data.get("modelVersion"):
            self._started = True
            return StreamStart(ResponseMetadata(
                id=data.get("responseId"),
                model=data.get("modelVersion"),
                provider=self.provider,
            ))
        return None

    def _parts_event(self, candidate: Dict[str, Any]) -> Optional[StreamEvent]:
        content = self._obj(candidate.get("content"), "candidate.content")
        parts = [self._obj(part, "parts[]") for part in self._list(content.get("parts"), "parts")]

        text = "".join(self._str(p.get("text"), "part.text") or "" for p in parts if not p.get("thought"))
        if text:
            return ContentDelta(text)

        thought = "".join(self._str(p.get("text"), "part.text") or "" for p in parts if p.get("thought"))
        if thought:
            return ThinkingDelta(thought)

        for part in parts:
            if "functionCall" in part:
                call = self._obj(part["functionCall"], "functionCall")
                index = self._calls
                self._calls += 1
                return ToolCallDelta(
                    call_id=self._str(call.get("id"), "functionCall.id"),
                    name_fragment=self._str(call.get("name"), "functionCall.name"),
                    arguments_fragment=json.dumps(call.get("args") or {}, ensure_ascii=False),
                    index=index,
                )
        return None

    def _usage(self, raw: Any) -> Optional[Usage]:
        if raw is None:
            return None
        usage = self._obj(raw, "usageMetadata")
        return Usage(
            prompt_tokens=self._int(usage.get("promptTokenCount"), "promptTokenCount"),
            completion_tokens=self._int(usage.get("candidatesTokenCount"), "candidatesTokenCount"),
            total_tokens=self._int(usage.get("totalTokenCount"), "totalTokenCount"),
            reasoning_tokens=self._int(usage.get("thoughtsTokenCount"), "thoughtsTokenCount"),
            cached_tokens=self._int(usage.get("cachedContentTokenCount"), "cachedContentTokenCount"),
        )


# ============================================================
# Ollama
# ============================================================

class OllamaConverter(EventConverter):
    """Ollama /api/chat and /api/generate JSON lines."""

    dialect = ProviderDialect.OLLAMA
    finish_map = {
        "stop": FinishReasonKind.STOP,
        "length": FinishReasonKind.LENGTH,
    }

    def __init__(self, provider: Optional[str] = None, request_id: str = ""):
        super().__init__(provider, request_id)
        self._calls = 0

    def convert(self, frame: Frame) -> Optional[StreamEvent]:
        data = self._parse(frame)

        if data.get("error"):
            return self._error(data["error"])

        if data.get("done") is True:
            self.done = True
            self._hold(self._finish_reason(data.get("done_reason")))
            prompt = self._int(data.get("prompt_eval_count"), "prompt_eval_count")
            completion = self._int(data.get("eval_count"), "eval_count")
            usage = None
            if prompt is not None or completion is not None:
                usage = Usage.from_counts(prompt, completion)
            event = self._message_event(data)
            if event is not None:
                self._hold(usage=usage)
                return event
            return UsageUpdate(usage) if usage is not None else None

        return self._message_event(data)

    def _message_event(self, data: Dict[str, Any]) -> Optional[StreamEvent]:
        message = self._obj(data.get("message"), "message")

        content = self._str(message.get("content", data.get("response")), "message.content")
        if content:
            return ContentDelta(content)

        thinking = self._str(message.get("thinking", data.get("thinking")), "message.thinking")
        if thinking:
            return ThinkingDelta(thinking)

        tool_calls = self._list(message.get("tool_calls"), "message.tool_calls")
        if tool_calls:
            call = self._obj(tool_calls[0], "tool_calls[0]")
            function = self._obj(call.get("function"), "tool_calls[0].function")
            arguments = function.get("arguments")
            if not isinstance(arguments, str):
                arguments = json.dumps(arguments or {}, ensure_ascii=False)
            index = self._calls
            self._calls += 1
            return ToolCallDelta(
                call_id=self._str(call.get("id"), "tool_calls[0].id"),
                name_fragment=self._str(function.get("name"), "function.name"),
                arguments_fragment=arguments,
                index=index,
            )
        return None


_CONVERTERS = {
    ProviderDialect.OPENAI: OpenAIConverter,
    ProviderDialect.OPENAI_RESPONSES: OpenAIResponsesConverter,
    ProviderDialect.ANTHROPIC: AnthropicConverter,
    ProviderDialect.GEMINI: GeminiConverter,
    ProviderDialect.OLLAMA: OllamaConverter,
}


def create_converter(
    dialect: ProviderDialect,
    provider: Optional[str] = None,
    request_id: str = "",
) -> EventConverter:
    """Create the converter for a dialect; chosen once per stream."""
    return _CONVERTERS[dialect](provider=provider, request_id=request_id)
