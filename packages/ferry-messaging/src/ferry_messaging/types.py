"""Type definitions for the tracing router."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from ferry_pubsub import Message
from ferry_trace import Scope, Span


@dataclass(frozen=True)
class Delivery:
    """One attempt to hand a message to a handler.

    Attributes:
        message: The delivered message. The router acks or nacks it.
        scope: Ambient scope of this delivery; its context is the consumer
            span's context and carries the sender's baggage.
        span: The consumer span, still recording while the handler runs.
        handler_name: Name of the handler that receives the delivery.
    """

    message: Message
    scope: Scope
    span: Span
    handler_name: str = ""

    @property
    def attempt(self) -> int:
        return self.message.delivery_attempt


HandlerFunc = Callable[[Delivery], Awaitable[None]]
Middleware = Callable[[HandlerFunc], HandlerFunc]
ErrorCallback = Callable[[Exception, Message], None]
