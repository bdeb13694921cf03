"""
unillm - Error Definitions

Error taxonomy with infra vs semantic classification.

Every failure the streaming pipeline can hit is one of these exceptions:
- Transport failures raised by the byte source
- Frame decode failures (bad UTF-8, unterminated frames)
- Payload parse failures (frame does not match the dialect's schema)
- Provider-reported errors, either as an HTTP status before streaming or
  as an error frame inside an otherwise successful stream
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Mapping, Optional

import httpx

if TYPE_CHECKING:
    from .models import ChatResponse


class ErrorType(str, Enum):
    """Error classification."""
    INFRA = "infra_error"
    SEMANTIC = "semantic_error"


class ErrorCategory(str, Enum):
    """Caller-visible error categories."""
    NETWORK = "network"
    AUTHENTICATION = "authentication"
    RATE_LIMIT = "rate_limit"
    CLIENT = "client"
    SERVER = "server"
    PARSING = "parsing"
    STREAM = "stream"
    CONTENT_FILTER = "content_filter"
    UNKNOWN = "unknown"


@dataclass
class ErrorDetails:
    """Full error information."""
    # Core fields (always present)
    code: str
    message: str
    type: ErrorType
    category: ErrorCategory = ErrorCategory.UNKNOWN

    # Context fields
    provider: Optional[str] = None

    # Trace fields
    request_id: str = ""
    provider_request_id: Optional[str] = None

    # Recovery fields
    retryable: bool = False
    retry_after: Optional[int] = None
    partial_content: Optional[str] = None

    # Debug fields
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "code": self.code,
            "message": self.message,
            "type": self.type.value,
            "category": self.category.value,
            "request_id": self.request_id,
            "retryable": self.retryable,
        }

        if self.provider:
            result["provider"] = self.provider
        if self.provider_request_id:
            result["provider_request_id"] = self.provider_request_id
        if self.retry_after is not None:
            result["retry_after"] = self.retry_after
        if self.partial_content:
            result["partial_content"] = self.partial_content
        if self.details:
            result["details"] = self.details

        return {"error": result}


class UnillmError(Exception):
    """Base exception for all unillm errors."""

    def __init__(self, error: ErrorDetails, status_code: int = 500):
        self.error = error
        self.status_code = status_code
        self.partial_response: Optional["ChatResponse"] = None
        super().__init__(error.message)

    @property
    def code(self) -> str:
        return self.error.code

    @property
    def category(self) -> ErrorCategory:
        return self.error.category

    @property
    def retryable(self) -> bool:
        return self.error.retryable


# ============================================================
# Infra Errors
# ============================================================

class InfraError(UnillmError):
    """Base class for infrastructure errors."""
    pass


class TransportError(InfraError):
    """The byte source failed while the stream was being read."""

    def __init__(self, provider: str, message: str = "", request_id: str = ""):
        super().__init__(
            ErrorDetails(
                code="transport_error",
                message=message or f"Connection to {provider} failed during streaming",
                type=ErrorType.INFRA,
                category=ErrorCategory.NETWORK,
                provider=provider,
                request_id=request_id,
                retryable=True,
            ),
            status_code=502
        )


class ConnectionTimeoutError(InfraError):
    """Failed to connect to provider."""

    def __init__(self, provider: str, request_id: str = ""):
        super().__init__(
            ErrorDetails(
                code="connection_timeout",
                message=f"Failed to connect to {provider} API within timeout",
                type=ErrorType.INFRA,
                category=ErrorCategory.NETWORK,
                provider=provider,
                request_id=request_id,
                retryable=True,
                retry_after=5
            ),
            status_code=504
        )


class ReadTimeoutError(InfraError):
    """Provider stopped sending bytes within the read timeout."""

    def __init__(self, provider: str, request_id: str = ""):
        super().__init__(
            ErrorDetails(
                code="read_timeout",
                message=f"{provider} did not respond within timeout",
                type=ErrorType.INFRA,
                category=ErrorCategory.NETWORK,
                provider=provider,
                request_id=request_id,
                retryable=True,
                retry_after=10
            ),
            status_code=504
        )


class FrameDecodeError(InfraError):
    """Bytes could not be assembled into a valid frame."""

    def __init__(self, message: str, provider: str = "", request_id: str = ""):
        super().__init__(
            ErrorDetails(
                code="frame_decode_error",
                message=message,
                type=ErrorType.INFRA,
                category=ErrorCategory.PARSING,
                provider=provider or None,
                request_id=request_id,
                retryable=False,
            ),
            status_code=502
        )


class PayloadParseError(InfraError):
    """A frame payload does not match the provider dialect's schema."""

    def __init__(
        self,
        message: str,
        provider: str = "",
        payload: str = "",
        request_id: str = ""
    ):
        details = {"payload": payload[:200]} if payload else {}
        super().__init__(
            ErrorDetails(
                code="payload_parse_error",
                message=message,
                type=ErrorType.INFRA,
                category=ErrorCategory.PARSING,
                provider=provider or None,
                request_id=request_id,
                retryable=False,
                details=details,
            ),
            status_code=502
        )


class UpstreamError(InfraError):
    """Provider reported a server-side failure."""

    def __init__(
        self,
        provider: str,
        status_code: int,
        message: str = "",
        request_id: str = "",
        provider_request_id: str = ""
    ):
        code_map = {
            500: "upstream_500",
            502: "upstream_502",
            503: "upstream_503",
            504: "upstream_504",
            529: "upstream_overloaded",
        }
        super().__init__(
            ErrorDetails(
                code=code_map.get(status_code, "upstream_error"),
                message=message or f"{provider} returned error {status_code}",
                type=ErrorType.INFRA,
                category=ErrorCategory.SERVER,
                provider=provider,
                request_id=request_id,
                provider_request_id=provider_request_id or None,
                retryable=True,
                retry_after=30
            ),
            status_code=502 if status_code == 500 else status_code
        )


class RateLimitedError(InfraError):
    """Rate limit exceeded."""

    def __init__(
        self,
        provider: str,
        retry_after: int = 60,
        message: str = "",
        request_id: str = ""
    ):
        super().__init__(
            ErrorDetails(
                code="rate_limited",
                message=message or f"{provider} rate limit exceeded. Retry after {retry_after} seconds.",
                type=ErrorType.INFRA,
                category=ErrorCategory.RATE_LIMIT,
                provider=provider,
                request_id=request_id,
                retryable=True,
                retry_after=retry_after,
            ),
            status_code=429
        )


# ============================================================
# Semantic Errors (Not Retryable)
# ============================================================

class SemanticError(UnillmError):
    """Base class for semantic errors (client must fix request)."""
    pass


class AuthenticationError(SemanticError):
    """Provider rejected the credentials."""

    def __init__(self, provider: str, message: str = "", status_code: int = 401, request_id: str = ""):
        super().__init__(
            ErrorDetails(
                code="provider_auth_error" if status_code == 401 else "permission_denied",
                message=message or f"{provider} authentication failed",
                type=ErrorType.SEMANTIC,
                category=ErrorCategory.AUTHENTICATION,
                provider=provider,
                request_id=request_id,
                retryable=False
            ),
            status_code=status_code
        )


class InvalidRequestError(SemanticError):
    """Provider rejected the request."""

    def __init__(
        self,
        provider: str,
        message: str,
        code: str = "",
        status_code: int = 400,
        request_id: str = ""
    ):
        super().__init__(
            ErrorDetails(
                code=code or "invalid_request",
                message=message,
                type=ErrorType.SEMANTIC,
                category=ErrorCategory.CLIENT,
                provider=provider,
                request_id=request_id,
                retryable=False
            ),
            status_code=status_code
        )


class ModelNotFoundError(SemanticError):
    """Requested model does not exist."""

    def __init__(self, provider: str, message: str, request_id: str = ""):
        super().__init__(
            ErrorDetails(
                code="model_not_found",
                message=message,
                type=ErrorType.SEMANTIC,
                category=ErrorCategory.CLIENT,
                provider=provider,
                request_id=request_id,
                retryable=False,
            ),
            status_code=404
        )


class ContentFilteredError(SemanticError):
    """Content was filtered by safety systems."""

    def __init__(
        self,
        provider: str,
        reason: str = "",
        request_id: str = ""
    ):
        super().__init__(
            ErrorDetails(
                code="content_filtered",
                message="Your request was flagged by content moderation",
                type=ErrorType.SEMANTIC,
                category=ErrorCategory.CONTENT_FILTER,
                provider=provider,
                request_id=request_id,
                retryable=False,
                details={"filter_reason": reason} if reason else {}
            ),
            status_code=400
        )


class ContextLengthExceededError(SemanticError):
    """Input exceeds model's context window."""

    def __init__(self, provider: str, message: str, request_id: str = ""):
        super().__init__(
            ErrorDetails(
                code="context_length_exceeded",
                message=message,
                type=ErrorType.SEMANTIC,
                category=ErrorCategory.CLIENT,
                provider=provider,
                request_id=request_id,
                retryable=False,
            ),
            status_code=400
        )


# ============================================================
# Error Factory
# ============================================================

# Provider error type strings that carry a known status.
_TYPE_STATUS = {
    # OpenAI
    "invalid_request_error": 400,
    "authentication_error": 401,
    "permission_error": 403,
    "insufficient_quota": 429,
    "rate_limit_error": 429,
    "server_error": 500,
    # Anthropic
    "not_found_error": 404,
    "request_too_large": 413,
    "api_error": 500,
    "overloaded_error": 529,
    # Gemini (google.rpc status names)
    "INVALID_ARGUMENT": 400,
    "FAILED_PRECONDITION": 400,
    "UNAUTHENTICATED": 401,
    "PERMISSION_DENIED": 403,
    "NOT_FOUND": 404,
    "RESOURCE_EXHAUSTED": 429,
    "INTERNAL": 500,
    "UNAVAILABLE": 503,
    "DEADLINE_EXCEEDED": 504,
}


def classify_provider_error(
    provider: str,
    status_code: Optional[int],
    error_type: str = "",
    message: str = "",
    code: str = "",
    retry_after: Optional[int] = None,
    request_id: str = "",
    provider_request_id: str = "",
) -> UnillmError:
    """
    Map a provider-reported error to the caller-visible taxonomy.

    Used for HTTP error responses and for error frames embedded in a
    stream. When the provider gives no status (error frames usually do
    not), the status is inferred from the error type string.
    """
    if not status_code:
        status_code = _TYPE_STATUS.get(error_type) or _TYPE_STATUS.get(code) or 0

    message = message or f"{provider} reported an error"
    lowered = message.lower()

    if status_code in (401, 403):
        return AuthenticationError(provider, message, status_code, request_id)

    if status_code == 429:
        return RateLimitedError(
            provider,
            retry_after=retry_after if retry_after is not None else 60,
            message=message,
            request_id=request_id,
        )

    if status_code >= 500:
        return UpstreamError(provider, status_code, message, request_id, provider_request_id)

    if code in ("content_filter", "content_policy_violation") or "safety" in error_type.lower():
        return ContentFilteredError(provider, message, request_id)

    if "context_length" in code or "maximum context" in lowered or "too long" in lowered:
        return ContextLengthExceededError(provider, message, request_id)

    if status_code == 404 and "model" in lowered:
        return ModelNotFoundError(provider, message, request_id)

    if 400 <= status_code < 500:
        return InvalidRequestError(
            provider, message, code or error_type, status_code, request_id
        )

    # Unknown error frame without any status hint
    return InfraError(
        ErrorDetails(
            code=code or error_type or "provider_error",
            message=message,
            type=ErrorType.INFRA,
            category=ErrorCategory.STREAM,
            provider=provider,
            request_id=request_id,
            provider_request_id=provider_request_id or None,
            retryable=False,
        ),
        status_code=502
    )


def _parse_retry_after(headers: Mapping[str, str]) -> Optional[int]:
    value = headers.get("retry-after")
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def map_http_error(
    provider: str,
    status_code: int,
    body: bytes,
    headers: Mapping[str, str],
    request_id: str = "",
) -> UnillmError:
    """
    Convert an HTTP error response received before streaming started.

    Understands the error bodies of all supported providers:
        OpenAI:    {"error": {"message", "type", "code"}}
        Anthropic: {"type": "error", "error": {"type", "message"}}
        Gemini:    {"error": {"code", "status", "message"}}
        Ollama:    {"error": "message"}
    """
    message = ""
    error_type = ""
    code = ""
    try:
        data = json.loads(body.decode("utf-8")) if body else {}
    except (UnicodeDecodeError, json.JSONDecodeError):
        data = {}
        message = body.decode("utf-8", errors="replace")[:500]

    if isinstance(data, dict):
        error_type, message, code = _error_fields(data.get("error"), message)

    return classify_provider_error(
        provider,
        status_code,
        error_type=error_type,
        message=message or f"{provider} returned HTTP {status_code}",
        code=code,
        retry_after=_parse_retry_after(headers),
        request_id=request_id,
        provider_request_id=headers.get("x-request-id") or headers.get("request-id") or "",
    )


def _error_fields(error: Any, fallback_message: str = ""):
    """Extract (type, message, code) from a provider error object."""
    if isinstance(error, str):
        return "", error, ""
    if not isinstance(error, dict):
        return "", fallback_message, ""
    error_type = error.get("type") or error.get("status") or ""
    code = error.get("code")
    code = "" if code is None or isinstance(code, int) else str(code)
    return str(error_type), str(error.get("message") or fallback_message), code


def map_error_payload(
    provider: str,
    error: Any,
    status_code: Optional[int] = None,
    request_id: str = "",
) -> UnillmError:
    """Convert an error object found inside a stream frame."""
    error_type, message, code = _error_fields(error)
    if status_code is None and isinstance(error, dict) and isinstance(error.get("code"), int):
        status_code = error["code"]
    return classify_provider_error(
        provider,
        status_code,
        error_type=error_type,
        message=message,
        code=code,
        request_id=request_id,
    )


def map_transport_exception(
    provider: str,
    error: BaseException,
    request_id: str = "",
) -> UnillmError:
    """Convert an exception raised by the byte source."""
    if isinstance(error, UnillmError):
        return error

    if isinstance(error, httpx.TimeoutException):
        if isinstance(error, httpx.ConnectTimeout):
            return ConnectionTimeoutError(provider, request_id)
        return ReadTimeoutError(provider, request_id)

    if isinstance(error, httpx.ConnectError):
        return ConnectionTimeoutError(provider, request_id)

    if isinstance(error, TimeoutError):
        return ReadTimeoutError(provider, request_id)

    return TransportError(provider, f"{type(error).__name__}: {error}", request_id)
