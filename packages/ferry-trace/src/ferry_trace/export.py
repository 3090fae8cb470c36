"""Exporters: where finished spans leave the process."""

from __future__ import annotations

import threading
from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import Event, ReadableSpan
from opentelemetry.sdk.trace.export import SpanExporter as OTelExporter
from opentelemetry.sdk.trace.export import SpanExportResult
from opentelemetry.sdk.util.instrumentation import InstrumentationScope
from opentelemetry.trace import SpanContext, TraceFlags
from opentelemetry.trace import SpanKind as OTelSpanKind
from opentelemetry.trace.status import Status as OTelStatus
from opentelemetry.trace.status import StatusCode as OTelStatusCode

from ferry_trace.errors import ExporterError
from ferry_trace.span import FinishedSpan, SpanKind, StatusCode


@runtime_checkable
class SpanExporter(Protocol):
    """Synchronous sink for finished spans; runs off the event loop."""

    def export(self, spans: Sequence[FinishedSpan]) -> None:
        """Raises ExporterError when the backend rejects the batch."""
        ...

    def shutdown(self) -> None: ...


class InMemorySpanExporter:
    """Keeps finished spans in memory, for tests."""

    def __init__(self) -> None:
        self._spans: list[FinishedSpan] = []
        self._lock = threading.Lock()
        self._stopped = False

    def export(self, spans: Sequence[FinishedSpan]) -> None:
        if self._stopped:
            raise ExporterError("exporter is shut down")
        with self._lock:
            self._spans.extend(spans)

    def get_finished_spans(self) -> tuple[FinishedSpan, ...]:
        with self._lock:
            return tuple(self._spans)

    def clear(self) -> None:
        with self._lock:
            self._spans.clear()

    def shutdown(self) -> None:
        self._stopped = True


_KIND_MAP = {
    SpanKind.INTERNAL: OTelSpanKind.INTERNAL,
    SpanKind.PRODUCER: OTelSpanKind.PRODUCER,
    SpanKind.CONSUMER: OTelSpanKind.CONSUMER,
    SpanKind.CLIENT: OTelSpanKind.CLIENT,
    SpanKind.SERVER: OTelSpanKind.SERVER,
}

_STATUS_MAP = {
    StatusCode.UNSET: OTelStatusCode.UNSET,
    StatusCode.OK: OTelStatusCode.OK,
    StatusCode.ERROR: OTelStatusCode.ERROR,
}


class OTelSpanExporter:
    """Forwards finished spans to any OpenTelemetry SDK exporter.

    Spans are converted to ``ReadableSpan`` objects carrying a resource with
    ``service.name`` and ``service.version``, so console, OTLP or in-memory
    SDK exporters can be used as the tracing backend.

    Example:
        from opentelemetry.sdk.trace.export import ConsoleSpanExporter

        exporter = OTelSpanExporter(ConsoleSpanExporter(), "orders", "1.0.0")
    """

    def __init__(
        self,
        exporter: OTelExporter,
        service_name: str,
        service_version: str | None = None,
    ) -> None:
        self._exporter = exporter
        attributes = {SERVICE_NAME: service_name}
        if service_version:
            attributes[SERVICE_VERSION] = service_version
        self._resource = Resource.create(attributes)

    @property
    def resource(self) -> Resource:
        return self._resource

    def export(self, spans: Sequence[FinishedSpan]) -> None:
        result = self._exporter.export([self.to_readable_span(s) for s in spans])
        if result is not SpanExportResult.SUCCESS:
            raise ExporterError(f"{type(self._exporter).__name__} returned {result.name}")

    def shutdown(self) -> None:
        self._exporter.shutdown()

    def to_readable_span(self, span: FinishedSpan) -> ReadableSpan:
        flags = TraceFlags(TraceFlags.SAMPLED if span.sampled else TraceFlags.DEFAULT)
        trace_id = int(span.trace_id, 16)
        context = SpanContext(
            trace_id=trace_id,
            span_id=int(span.span_id, 16),
            is_remote=False,
            trace_flags=flags,
        )
        parent = None
        if span.parent_span_id is not None:
            parent = SpanContext(
                trace_id=trace_id,
                span_id=int(span.parent_span_id, 16),
                is_remote=span.parent_is_remote,
                trace_flags=flags,
            )
        code = _STATUS_MAP[span.status.code]
        # OpenTelemetry only keeps a description for ERROR
        description = span.status.description if code is OTelStatusCode.ERROR else None
        return ReadableSpan(
            name=span.name,
            context=context,
            parent=parent,
            resource=self._resource,
            attributes=dict(span.attributes),
            events=tuple(
                Event(name=e.name, timestamp=e.timestamp, attributes=dict(e.attributes))
                for e in span.events
            ),
            kind=_KIND_MAP[span.kind],
            status=OTelStatus(code, description),
            start_time=span.start_time,
            end_time=span.end_time,
            instrumentation_scope=InstrumentationScope(span.instrumentation_name),
        )
