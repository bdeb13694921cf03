"""
unillm - Pytest Configuration

Configures:
- Integration test markers (skip by default)
- Isolated metrics registry and span exporter per test
- Byte source helpers for feeding the pipeline
"""

import logging
import os
from typing import AsyncIterator, Iterable, List, Optional

import pytest
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from prometheus_client import CollectorRegistry

from unillm.config import reset_settings
from unillm.observability.metrics import MetricsCollector
from unillm.observability.tracing import TracingManager


# ============================================================
# Environment Configuration
# ============================================================

def _is_truthy(value: Optional[str]) -> bool:
    """Check if environment variable is truthy."""
    if value is None:
        return False
    return value.lower() in ("1", "true", "yes", "on")


RUN_INTEGRATION = _is_truthy(os.getenv("RUN_INTEGRATION"))


# ============================================================
# Pytest Markers
# ============================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "integration: mark test as integration test (requires RUN_INTEGRATION=1)"
    )


def pytest_collection_modifyitems(config, items):
    """Skip integration tests unless RUN_INTEGRATION=1."""
    skip_integration = pytest.mark.skip(
        reason="Integration test - set RUN_INTEGRATION=1 to run"
    )
    for item in items:
        if "integration" in item.keywords and not RUN_INTEGRATION:
            item.add_marker(skip_integration)


# ============================================================
# Settings
# ============================================================

@pytest.fixture(autouse=True)
def fresh_settings():
    """Re-read environment settings for every test."""
    reset_settings()
    yield
    reset_settings()


# ============================================================
# Observability
# ============================================================

@pytest.fixture
def registry():
    """Fresh Prometheus registry."""
    return CollectorRegistry()


@pytest.fixture
def metrics(registry):
    """Metrics collector bound to a fresh registry."""
    return MetricsCollector(registry=registry)


@pytest.fixture
def span_exporter():
    return InMemorySpanExporter()


@pytest.fixture
def tracing(span_exporter):
    """Tracing manager that records finished spans in memory."""
    manager = TracingManager(
        service_name="unillm-test",
        span_processor=SimpleSpanProcessor(span_exporter),
    )
    yield manager
    manager.shutdown()


# ============================================================
# Byte Sources
# ============================================================

class ChunkSource:
    """
    Async byte source over fixed chunks.

    Records how many chunks were read and whether it was closed, so tests
    can check that the pipeline stops reading and releases the source.
    """

    def __init__(self, chunks: Iterable[bytes], error: Optional[BaseException] = None):
        self.chunks = list(chunks)
        self.error = error
        self.reads = 0
        self.closed = False

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self._generate()

    async def _generate(self) -> AsyncIterator[bytes]:
        try:
            for chunk in self.chunks:
                self.reads += 1
                yield chunk
            if self.error is not None:
                raise self.error
        finally:
            self.closed = True


def split_every(data: bytes, size: int) -> List[bytes]:
    """Split bytes into chunks of `size` bytes."""
    return [data[i:i + size] for i in range(0, len(data), size)]


def split_at(data: bytes, offsets: Iterable[int]) -> List[bytes]:
    """Split bytes at the given offsets."""
    chunks = []
    last = 0
    for offset in sorted(offsets):
        chunks.append(data[last:offset])
        last = offset
    chunks.append(data[last:])
    return [chunk for chunk in chunks if chunk]


@pytest.fixture
def chunk_source():
    """Factory for ChunkSource instances."""
    return ChunkSource


# ============================================================
# Logging Configuration
# ============================================================

@pytest.fixture(autouse=True)
def configure_test_logging():
    """Let caplog see records from the unillm logger."""
    logger = logging.getLogger("unillm")
    previous = logger.propagate
    logger.propagate = True
    yield
    logger.propagate = previous
