"""
unillm - Core Module

Shared data models and the error taxonomy.
"""

from .models import (
    ChatResponse,
    FinishReason,
    FinishReasonKind,
    FunctionCall,
    ProviderDialect,
    ResponseMetadata,
    Role,
    ToolCall,
    Usage,
)
from .errors import (
    ErrorCategory,
    ErrorDetails,
    ErrorType,
    FrameDecodeError,
    InfraError,
    PayloadParseError,
    SemanticError,
    TransportError,
    UnillmError,
)

__all__ = [
    # Models
    "ChatResponse",
    "FinishReason",
    "FinishReasonKind",
    "FunctionCall",
    "ProviderDialect",
    "ResponseMetadata",
    "Role",
    "ToolCall",
    "Usage",
    # Errors
    "ErrorCategory",
    "ErrorDetails",
    "ErrorType",
    "FrameDecodeError",
    "InfraError",
    "PayloadParseError",
    "SemanticError",
    "TransportError",
    "UnillmError",
]
