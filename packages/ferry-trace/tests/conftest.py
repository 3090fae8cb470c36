"""Test fixtures for ferry-trace."""

import pytest

from ferry_trace import InMemorySpanExporter, SimpleSpanProcessor, SpanMisuse, Tracer


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def span_exporter() -> InMemorySpanExporter:
    """Create an in-memory span exporter for testing."""
    return InMemorySpanExporter()


@pytest.fixture
def misuses() -> list[SpanMisuse]:
    """Collects span misuse reports."""
    return []


@pytest.fixture
def tracer(span_exporter: InMemorySpanExporter, misuses: list[SpanMisuse]) -> Tracer:
    """Create a tracer exporting synchronously to the in-memory exporter."""
    return Tracer(SimpleSpanProcessor(span_exporter), on_misuse=misuses.append)
