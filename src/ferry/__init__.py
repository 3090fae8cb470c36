"""ferry: trace context propagation across message brokers.

This is a convenience package that re-exports the core components.
"""

from ferry_messaging import Delivery, Router, RouterConfig, TracingPublisher, graceful_shutdown
from ferry_pubsub import InMemoryPubSub, Message, Publisher, Subscriber
from ferry_trace import (
    Context,
    InMemorySpanExporter,
    OTelSpanExporter,
    Scope,
    SpanKind,
    Tracer,
    TracingConfig,
    build_tracer,
    default_propagator,
)

__version__ = "0.1.0"

__all__ = [
    # pubsub
    "Message",
    "Publisher",
    "Subscriber",
    "InMemoryPubSub",
    # trace
    "Context",
    "Scope",
    "SpanKind",
    "Tracer",
    "TracingConfig",
    "build_tracer",
    "default_propagator",
    "InMemorySpanExporter",
    "OTelSpanExporter",
    # messaging
    "Delivery",
    "Router",
    "RouterConfig",
    "TracingPublisher",
    "graceful_shutdown",
]
