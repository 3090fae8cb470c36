"""ferry-trace: trace context, baggage and spans with explicit propagation."""

from ferry_trace.baggage import Baggage, decode_baggage, encode_baggage
from ferry_trace.config import TracingConfig, build_tracer
from ferry_trace.context import Context, generate_span_id, generate_trace_id
from ferry_trace.errors import ExporterError, MalformedCarrier, SpanMisuse, TracingError
from ferry_trace.export import InMemorySpanExporter, OTelSpanExporter, SpanExporter
from ferry_trace.processor import BatchSpanProcessor, SimpleSpanProcessor, SpanProcessor
from ferry_trace.propagation import (
    BaggagePropagator,
    CompositePropagator,
    MetadataGetter,
    Propagator,
    TraceContextPropagator,
    default_propagator,
    format_traceparent,
    parse_traceparent,
)
from ferry_trace.sampling import (
    ALWAYS_OFF,
    ALWAYS_ON,
    Sampler,
    TraceIdRatioSampler,
    sampler_from_name,
)
from ferry_trace.span import (
    FinishedSpan,
    Span,
    SpanEvent,
    SpanKind,
    SpanState,
    Status,
    StatusCode,
)
from ferry_trace.tracer import Scope, Tracer

__all__ = [
    "ALWAYS_OFF",
    "ALWAYS_ON",
    "Baggage",
    "BaggagePropagator",
    "BatchSpanProcessor",
    "CompositePropagator",
    "Context",
    "ExporterError",
    "FinishedSpan",
    "InMemorySpanExporter",
    "MalformedCarrier",
    "MetadataGetter",
    "OTelSpanExporter",
    "Propagator",
    "Sampler",
    "Scope",
    "SimpleSpanProcessor",
    "Span",
    "SpanEvent",
    "SpanExporter",
    "SpanKind",
    "SpanMisuse",
    "SpanProcessor",
    "SpanState",
    "Status",
    "StatusCode",
    "TraceContextPropagator",
    "TraceIdRatioSampler",
    "Tracer",
    "TracingConfig",
    "TracingError",
    "build_tracer",
    "decode_baggage",
    "default_propagator",
    "encode_baggage",
    "format_traceparent",
    "generate_span_id",
    "generate_trace_id",
    "parse_traceparent",
    "sampler_from_name",
]
