"""
unillm - Core Data Models

Provider-agnostic data models shared by the streaming pipeline and the
single-shot request path.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Literal, Mapping, Optional


# ============================================================
# Enums
# ============================================================

class ProviderDialect(str, Enum):
    """Wire dialects understood by the streaming pipeline."""
    OPENAI = "openai"
    OPENAI_RESPONSES = "openai_responses"
    ANTHROPIC = "anthropic"
    GEMINI = "gemini"
    OLLAMA = "ollama"

    @classmethod
    def for_provider(cls, provider: str) -> "ProviderDialect":
        """
        Resolve a provider name to the dialect its streaming endpoint speaks.

        OpenAI-compatible providers share the Chat Completions dialect.
        """
        key = provider.lower().strip()
        try:
            return cls(key)
        except ValueError:
            pass
        if key in _PROVIDER_ALIASES:
            return _PROVIDER_ALIASES[key]
        raise ValueError(f"Unknown provider '{provider}'")

    @property
    def framing(self) -> str:
        """Frame format used on the wire: 'sse' or 'json'."""
        if self in (ProviderDialect.GEMINI, ProviderDialect.OLLAMA):
            return "json"
        return "sse"


_PROVIDER_ALIASES: Dict[str, ProviderDialect] = {
    "xai": ProviderDialect.OPENAI,
    "groq": ProviderDialect.OPENAI,
    "deepseek": ProviderDialect.OPENAI,
    "openrouter": ProviderDialect.OPENAI,
    "openai_compatible": ProviderDialect.OPENAI,
    "claude": ProviderDialect.ANTHROPIC,
    "google": ProviderDialect.GEMINI,
}


class Role(str, Enum):
    """Message roles."""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class FinishReasonKind(str, Enum):
    """Normalized completion finish reasons."""
    STOP = "stop"
    LENGTH = "length"
    TOOL_CALLS = "tool_calls"
    CONTENT_FILTER = "content_filter"
    OTHER = "other"


@dataclass(frozen=True)
class FinishReason:
    """
    Finish reason normalized into a closed set.

    Unrecognized provider strings are kept verbatim in `other`.
    """
    kind: FinishReasonKind
    other: Optional[str] = None

    @classmethod
    def from_provider(
        cls,
        raw: Optional[str],
        mapping: Mapping[str, FinishReasonKind],
    ) -> Optional["FinishReason"]:
        """Normalize a provider finish string with the provider's mapping."""
        if raw is None or raw == "":
            return None
        kind = mapping.get(raw)
        if kind is None:
            return cls(FinishReasonKind.OTHER, raw)
        return cls(kind)

    @property
    def value(self) -> str:
        if self.kind is FinishReasonKind.OTHER:
            return self.other or ""
        return self.kind.value

    def __str__(self) -> str:
        return self.value


FinishReason.STOP = FinishReason(FinishReasonKind.STOP)
FinishReason.LENGTH = FinishReason(FinishReasonKind.LENGTH)
FinishReason.TOOL_CALLS = FinishReason(FinishReasonKind.TOOL_CALLS)
FinishReason.CONTENT_FILTER = FinishReason(FinishReasonKind.CONTENT_FILTER)


# ============================================================
# Usage
# ============================================================

@dataclass(frozen=True)
class Usage:
    """
    Token usage counters.

    A field left as None was not reported. Provider counts are cumulative,
    so merging replaces present fields instead of adding them.
    """
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    total_tokens: Optional[int] = None
    reasoning_tokens: Optional[int] = None
    cached_tokens: Optional[int] = None

    @classmethod
    def from_counts(
        cls,
        prompt_tokens: Optional[int],
        completion_tokens: Optional[int],
        **extra: Optional[int],
    ) -> "Usage":
        """Build usage for providers that report no total of their own."""
        total = None
        if prompt_tokens is not None and completion_tokens is not None:
            total = prompt_tokens + completion_tokens
        return cls(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=total,
            **extra,
        )

    def merge(self, update: "Usage") -> "Usage":
        """Return a copy with every field present in `update` replaced."""
        return Usage(
            prompt_tokens=_pick(update.prompt_tokens, self.prompt_tokens),
            completion_tokens=_pick(update.completion_tokens, self.completion_tokens),
            total_tokens=_pick(update.total_tokens, self.total_tokens),
            reasoning_tokens=_pick(update.reasoning_tokens, self.reasoning_tokens),
            cached_tokens=_pick(update.cached_tokens, self.cached_tokens),
        )

    def is_empty(self) -> bool:
        return all(value is None for value in self.to_dict().values())

    def to_dict(self) -> Dict[str, Optional[int]]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
            "reasoning_tokens": self.reasoning_tokens,
            "cached_tokens": self.cached_tokens,
        }


def _pick(new: Optional[int], old: Optional[int]) -> Optional[int]:
    return old if new is None else new


# ============================================================
# Tool Calling
# ============================================================

@dataclass
class FunctionCall:
    """Function call made by the model."""
    name: str
    arguments: str  # JSON string, not validated


@dataclass
class ToolCall:
    """Tool call in response."""
    id: str
    type: Literal["function"] = "function"
    function: FunctionCall = field(default_factory=lambda: FunctionCall("", ""))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "function": {
                "name": self.function.name,
                "arguments": self.function.arguments,
            },
        }


# ============================================================
# Responses
# ============================================================

@dataclass(frozen=True)
class ResponseMetadata:
    """Identifying information a provider attaches when a stream opens."""
    id: Optional[str] = None
    model: Optional[str] = None
    provider: Optional[str] = None
    created: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            key: value
            for key, value in (
                ("id", self.id),
                ("model", self.model),
                ("provider", self.provider),
                ("created", self.created),
            )
            if value is not None
        }


@dataclass
class ChatResponse:
    """
    Aggregate chat response.

    Produced by the stream accumulator and by the single-shot request path,
    so both are interchangeable downstream. `incomplete` is set when the
    stream failed before finishing; `error` then holds the failure.
    """
    content: str = ""
    tool_calls: List[ToolCall] = field(default_factory=list)
    thinking: Optional[str] = None
    reasoning: Optional[str] = None
    usage: Optional[Usage] = None
    finish_reason: Optional[FinishReason] = None
    id: Optional[str] = None
    model: Optional[str] = None
    provider: Optional[str] = None
    incomplete: bool = False
    error: Optional[Exception] = None

    @property
    def role(self) -> Role:
        return Role.ASSISTANT

    def has_tool_calls(self) -> bool:
        return len(self.tool_calls) > 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to an OpenAI-style completion dictionary."""
        message: Dict[str, Any] = {
            "role": self.role.value,
            "content": self.content,
        }
        if self.tool_calls:
            message["tool_calls"] = [tc.to_dict() for tc in self.tool_calls]
        if self.thinking:
            message["thinking"] = self.thinking
        if self.reasoning:
            message["reasoning"] = self.reasoning

        result: Dict[str, Any] = {
            "id": self.id,
            "model": self.model,
            "provider": self.provider,
            "message": message,
            "finish_reason": self.finish_reason.value if self.finish_reason else None,
            "usage": self.usage.to_dict() if self.usage else None,
        }
        if self.incomplete:
            result["incomplete"] = True
        return result
