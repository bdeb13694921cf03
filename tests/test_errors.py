"""
unillm - Error Taxonomy Tests

Verifies:
- Infra vs semantic classification
- HTTP error bodies of every provider map to the right error
- Error frames inside a stream map without an HTTP status
- Transport exceptions map to network errors
"""

import json

import httpx
import pytest

from unillm.core.errors import (
    AuthenticationError,
    ConnectionTimeoutError,
    ContentFilteredError,
    ContextLengthExceededError,
    ErrorCategory,
    ErrorType,
    FrameDecodeError,
    InfraError,
    InvalidRequestError,
    ModelNotFoundError,
    PayloadParseError,
    RateLimitedError,
    ReadTimeoutError,
    SemanticError,
    TransportError,
    UpstreamError,
    classify_provider_error,
    map_error_payload,
    map_http_error,
    map_transport_exception,
)


def body(payload) -> bytes:
    return json.dumps(payload).encode("utf-8")


# ============================================================
# Error Classification Tests
# ============================================================

class TestErrorClassification:
    """Test infra vs semantic error classification."""

    def test_transport_error_is_infra_and_retryable(self):
        error = TransportError("openai", request_id="req_1")
        assert isinstance(error, InfraError)
        assert error.error.type == ErrorType.INFRA
        assert error.category is ErrorCategory.NETWORK
        assert error.retryable is True

    def test_decode_errors_are_not_retryable(self):
        """A malformed stream is not fixed by sending the same request again."""
        for error in (FrameDecodeError("bad frame"), PayloadParseError("bad payload")):
            assert isinstance(error, InfraError)
            assert error.category is ErrorCategory.PARSING
            assert error.retryable is False

    def test_payload_is_truncated_in_details(self):
        error = PayloadParseError("bad", payload="x" * 1000)

        assert len(error.error.details["payload"]) == 200

    def test_auth_error_is_semantic(self):
        error = AuthenticationError("anthropic")
        assert isinstance(error, SemanticError)
        assert error.error.type == ErrorType.SEMANTIC
        assert error.retryable is False

    def test_to_dict_envelope(self):
        error = RateLimitedError("openai", 30, request_id="req_9")

        data = error.error.to_dict()

        assert data["error"]["code"] == "rate_limited"
        assert data["error"]["category"] == "rate_limit"
        assert data["error"]["retry_after"] == 30
        assert data["error"]["request_id"] == "req_9"


# ============================================================
# HTTP Error Mapping Tests
# ============================================================

class TestMapHttpError:
    """Test mapping of HTTP error responses."""

    def test_openai_invalid_key(self):
        error = map_http_error(
            "openai", 401,
            body({"error": {"message": "Incorrect API key", "type": "invalid_request_error",
                            "code": "invalid_api_key"}}),
            {},
        )

        assert isinstance(error, AuthenticationError)
        assert error.code == "provider_auth_error"

    def test_openai_rate_limit_uses_retry_after_header(self):
        error = map_http_error(
            "openai", 429,
            body({"error": {"message": "Slow down", "type": "rate_limit_error"}}),
            {"retry-after": "17"},
        )

        assert isinstance(error, RateLimitedError)
        assert error.error.retry_after == 17

    def test_openai_context_length(self):
        error = map_http_error(
            "openai", 400,
            body({"error": {"message": "This model's maximum context length is 8192 tokens",
                            "type": "invalid_request_error", "code": "context_length_exceeded"}}),
            {},
        )

        assert isinstance(error, ContextLengthExceededError)

    def test_openai_content_policy(self):
        error = map_http_error(
            "openai", 400,
            body({"error": {"message": "flagged", "code": "content_policy_violation"}}),
            {},
        )

        assert isinstance(error, ContentFilteredError)

    def test_anthropic_overloaded(self):
        error = map_http_error(
            "anthropic", 529,
            body({"type": "error", "error": {"type": "overloaded_error", "message": "Overloaded"}}),
            {"request-id": "req_provider"},
        )

        assert isinstance(error, UpstreamError)
        assert error.code == "upstream_overloaded"
        assert error.error.provider_request_id == "req_provider"

    def test_gemini_model_not_found(self):
        error = map_http_error(
            "gemini", 404,
            body({"error": {"code": 404, "message": "models/gemini-9 is not found", "status": "NOT_FOUND"}}),
            {},
        )

        assert isinstance(error, ModelNotFoundError)

    def test_ollama_string_error(self):
        error = map_http_error("ollama", 400, body({"error": "invalid options"}), {})

        assert isinstance(error, InvalidRequestError)
        assert error.error.message == "invalid options"

    def test_non_json_body(self):
        error = map_http_error("openai", 502, b"<html>Bad Gateway</html>", {})

        assert isinstance(error, UpstreamError)
        assert "Bad Gateway" in error.error.message

    def test_empty_body(self):
        error = map_http_error("openai", 500, b"", {})

        assert error.error.message == "openai returned HTTP 500"


# ============================================================
# Stream Error Frame Tests
# ============================================================

class TestMapErrorPayload:
    """Test error objects found inside a stream."""

    def test_status_inferred_from_type(self):
        error = map_error_payload("anthropic", {"type": "rate_limit_error", "message": "slow"})

        assert isinstance(error, RateLimitedError)
        assert error.error.retry_after == 60

    def test_gemini_numeric_code(self):
        error = map_error_payload("gemini", {"code": 503, "message": "busy", "status": "UNAVAILABLE"})

        assert isinstance(error, UpstreamError)
        assert error.code == "upstream_503"

    def test_unknown_error_is_stream_category(self):
        error = map_error_payload("ollama", "something odd happened", request_id="req_2")

        assert isinstance(error, InfraError)
        assert error.category is ErrorCategory.STREAM
        assert error.code == "provider_error"
        assert error.error.request_id == "req_2"

    def test_explicit_status_wins(self):
        error = classify_provider_error("openai", 403, error_type="server_error", message="no")

        assert isinstance(error, AuthenticationError)
        assert error.code == "permission_denied"


# ============================================================
# Transport Exception Tests
# ============================================================

class TestMapTransportException:
    """Test mapping of byte source exceptions."""

    def test_read_timeout(self):
        error = map_transport_exception("openai", httpx.ReadTimeout("slow"))
        assert isinstance(error, ReadTimeoutError)

    def test_connect_timeout(self):
        error = map_transport_exception("openai", httpx.ConnectTimeout("slow"))
        assert isinstance(error, ConnectionTimeoutError)

    def test_builtin_timeout(self):
        error = map_transport_exception("openai", TimeoutError())
        assert isinstance(error, ReadTimeoutError)

    def test_connection_reset(self):
        error = map_transport_exception("openai", ConnectionResetError("reset by peer"), "req_3")

        assert isinstance(error, TransportError)
        assert "ConnectionResetError" in error.error.message
        assert error.error.request_id == "req_3"

    def test_unillm_error_passes_through(self):
        original = FrameDecodeError("bad")
        assert map_transport_exception("openai", original) is original

    @pytest.mark.parametrize("exc", [httpx.RemoteProtocolError("eof"), httpx.ReadError("reset")])
    def test_httpx_errors_are_transport(self, exc):
        assert isinstance(map_transport_exception("openai", exc), TransportError)
