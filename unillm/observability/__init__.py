"""
unillm - Observability Module

- Prometheus metrics for streams
- OpenTelemetry spans for provider calls
- Structured JSON logging with context injection
"""

from .metrics import (
    MetricsCollector,
    StreamOutcome,
    get_metrics,
)
from .tracing import (
    TracingManager,
    get_tracing_manager,
    setup_tracing,
)
from .logging import (
    JSONFormatter,
    LogContext,
    StructuredLogger,
    get_logger,
    setup_logging,
)

__all__ = [
    # Metrics
    "MetricsCollector",
    "StreamOutcome",
    "get_metrics",
    # Tracing
    "TracingManager",
    "get_tracing_manager",
    "setup_tracing",
    # Logging
    "JSONFormatter",
    "LogContext",
    "StructuredLogger",
    "get_logger",
    "setup_logging",
]
