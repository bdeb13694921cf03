"""
unillm - Prometheus Metrics

Stream metrics collected with the Prometheus client library.

Metrics exposed:
- unillm_streams_total: Counter of finished streams by provider and outcome
- unillm_stream_events_total: Counter of normalized events by type
- unillm_stream_errors_total: Counter of terminal stream errors by code
- unillm_time_to_first_event_seconds: Histogram of latency to the first event
- unillm_stream_duration_seconds: Histogram of whole-stream duration
- unillm_tokens_total: Counter of tokens reported by providers
- unillm_active_streams: Gauge of streams currently being consumed

Usage:
    from unillm.observability.metrics import get_metrics

    metrics = get_metrics()
    metrics.record_event(provider="openai", event_type="content_delta")
"""

from typing import Optional

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
)


class StreamOutcome:
    """Label values for unillm_streams_total."""
    COMPLETED = "completed"
    ERROR = "error"
    CANCELLED = "cancelled"


class MetricsCollector:
    """
    Stream metrics bound to one Prometheus registry.

    Collectors can only be registered once per registry, so instances are
    cached per registry; use `get_metrics(registry)` instead of calling
    the constructor directly.
    """

    def __init__(self, registry: CollectorRegistry = REGISTRY):
        self.registry = registry

        self.streams_total = Counter(
            "unillm_streams_total",
            "Total number of finished streams",
            labelnames=["provider", "outcome"],
            registry=registry,
        )

        self.events_total = Counter(
            "unillm_stream_events_total",
            "Total normalized stream events",
            labelnames=["provider", "event_type"],
            registry=registry,
        )

        self.errors_total = Counter(
            "unillm_stream_errors_total",
            "Total terminal stream errors",
            labelnames=["provider", "code"],
            registry=registry,
        )

        # Time to first event, the streaming analogue of time to first token
        self.time_to_first_event = Histogram(
            "unillm_time_to_first_event_seconds",
            "Time from stream start to the first normalized event",
            labelnames=["provider", "model"],
            buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, float("inf")),
            registry=registry,
        )

        # Streams typically range from 0.1s to several minutes
        self.stream_duration = Histogram(
            "unillm_stream_duration_seconds",
            "Stream duration in seconds",
            labelnames=["provider", "model"],
            buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 25.0, 50.0, 100.0, float("inf")),
            registry=registry,
        )

        self.tokens_total = Counter(
            "unillm_tokens_total",
            "Total tokens reported by providers",
            labelnames=["provider", "model", "type"],  # type = input/output
            registry=registry,
        )

        self.active_streams = Gauge(
            "unillm_active_streams",
            "Number of streams currently being consumed",
            labelnames=["provider"],
            registry=registry,
        )

    def record_event(self, provider: str, event_type: str):
        """Record one normalized event."""
        self.events_total.labels(provider=provider, event_type=event_type).inc()

    def record_time_to_first_event(self, provider: str, model: str, seconds: float):
        self.time_to_first_event.labels(provider=provider, model=model).observe(seconds)

    def record_stream(
        self,
        provider: str,
        model: str,
        outcome: str,
        duration_seconds: float,
        error_code: Optional[str] = None,
    ):
        """Record a finished stream."""
        self.streams_total.labels(provider=provider, outcome=outcome).inc()
        self.stream_duration.labels(provider=provider, model=model).observe(duration_seconds)
        if error_code:
            self.errors_total.labels(provider=provider, code=error_code).inc()

    def record_tokens(
        self,
        provider: str,
        model: str,
        input_tokens: Optional[int],
        output_tokens: Optional[int],
    ):
        """Record token usage."""
        if input_tokens:
            self.tokens_total.labels(provider=provider, model=model, type="input").inc(input_tokens)
        if output_tokens:
            self.tokens_total.labels(provider=provider, model=model, type="output").inc(output_tokens)

    def track_active_stream(self, provider: str) -> "ActiveStreamTracker":
        """Context manager to track active streams."""
        return ActiveStreamTracker(self, provider)


class ActiveStreamTracker:
    """Context manager for tracking active streams."""

    def __init__(self, collector: MetricsCollector, provider: str):
        self.collector = collector
        self.provider = provider

    def __enter__(self):
        self.collector.active_streams.labels(provider=self.provider).inc()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.collector.active_streams.labels(provider=self.provider).dec()


# One collector per registry
_collectors = {}


def get_metrics(registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get the metrics collector for a registry (default: the global one)."""
    registry = registry if registry is not None else REGISTRY
    key = id(registry)
    collector = _collectors.get(key)
    if collector is None or collector.registry is not registry:
        collector = MetricsCollector(registry)
        _collectors[key] = collector
    return collector
