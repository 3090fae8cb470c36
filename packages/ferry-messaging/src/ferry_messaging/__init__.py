"""ferry-messaging: trace context correlation across a message broker."""

from ferry_messaging.propagation import extract_context, inject_context
from ferry_messaging.publisher import TracingPublisher
from ferry_messaging.router import Handler, Router, RouterConfig
from ferry_messaging.shutdown import close_all, graceful_shutdown
from ferry_messaging.types import Delivery, ErrorCallback, HandlerFunc, Middleware

__all__ = [
    "Delivery",
    "ErrorCallback",
    "Handler",
    "HandlerFunc",
    "Middleware",
    "Router",
    "RouterConfig",
    "TracingPublisher",
    "close_all",
    "extract_context",
    "graceful_shutdown",
    "inject_context",
]
