"""Test fixtures for ferry-messaging."""

import pytest

from ferry_trace import InMemorySpanExporter, SimpleSpanProcessor, Tracer


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def span_exporter() -> InMemorySpanExporter:
    """Create an in-memory span exporter for testing."""
    return InMemorySpanExporter()


@pytest.fixture
def tracer(span_exporter: InMemorySpanExporter) -> Tracer:
    """Create a tracer exporting synchronously to the in-memory exporter."""
    return Tracer(SimpleSpanProcessor(span_exporter))

