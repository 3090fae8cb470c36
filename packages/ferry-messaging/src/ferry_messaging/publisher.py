"""Tracing publisher decorator."""

from collections.abc import Mapping

from ferry_messaging.propagation import inject_context
from ferry_pubsub import Message, Publisher
from ferry_trace import Context, Propagator, SpanKind, StatusCode, Tracer, default_propagator


class TracingPublisher:
    """Publisher wrapper that creates spans and injects trace context.

    Wraps a publisher to:
    1. Create a PRODUCER span ``send <topic>`` for each publish
    2. Inject the send span's context and baggage into message metadata
    3. End the span once the broker has accepted the messages

    Example:
        publisher = TracingPublisher(pubsub, tracer)
        await publisher.publish(
            "orders", Message(payload=b"..."), baggage={"Sent by": "checkout"}
        )
    """

    def __init__(
        self,
        publisher: Publisher,
        tracer: Tracer,
        propagator: Propagator | None = None,
        messaging_system: str = "ferry",
    ) -> None:
        self._publisher = publisher
        self._tracer = tracer
        self._propagator = propagator or default_propagator(tracer.sampler)
        self._system = messaging_system

    async def publish(
        self,
        topic: str,
        *messages: Message,
        context: Context | None = None,
        baggage: Mapping[str, str] | None = None,
    ) -> Context:
        """Publish messages with tracing.

        Args:
            topic: Destination topic.
            messages: Messages to send; the broker receives traced copies.
            context: Parent of the send span. None starts a new trace.
            baggage: Entries added to the propagated baggage.

        Returns:
            The context injected into the messages.
        """
        span = self._tracer.start_span(
            f"send {topic}",
            SpanKind.PRODUCER,
            parent=context,
            attributes={
                "messaging.system": self._system,
                "messaging.operation.type": "send",
                "messaging.operation.name": "send",
                "messaging.destination.name": topic,
            },
        )
        try:
            send_context = span.context.with_baggage_entries(baggage or {})
            traced_messages = tuple(
                inject_context(msg, send_context, self._propagator) for msg in messages
            )

            # Add message count if batch
            if len(traced_messages) > 1:
                span.set_attribute("messaging.batch.message_count", len(traced_messages))
            elif traced_messages:
                span.set_attribute("messaging.message.id", str(traced_messages[0].uuid))

            await self._publisher.publish(topic, *traced_messages)
            span.add_event("message sent")
            span.set_status(StatusCode.OK)
        except Exception as e:
            span.record_exception(e)
            span.set_attribute("error.type", type(e).__name__)
            raise
        finally:
            span.end()
        return send_context

    async def close(self) -> None:
        """Close the underlying publisher."""
        await self._publisher.close()

    async def __aenter__(self) -> "TracingPublisher":
        await self._publisher.__aenter__()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        await self._publisher.__aexit__(exc_type, exc_val, exc_tb)
