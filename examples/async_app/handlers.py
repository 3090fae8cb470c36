"""Sender and receiver halves of the async app."""

import logging

from ferry_messaging import Delivery, Router, TracingPublisher
from ferry_pubsub import InMemoryPubSub, Message
from ferry_trace import OTelSpanExporter, TracingConfig, build_tracer
from opentelemetry.sdk.trace.export import ConsoleSpanExporter

QUEUE = "messages"
SENDER = "AsyncApp.Sender"

logger = logging.getLogger(__name__)

config = TracingConfig.from_env()
if config.service_name == "unknown_service":
    config.service_name = "MyCompany.AsyncApp"
    config.service_version = config.service_version or "1.0.0"

tracer = build_tracer(
    config,
    OTelSpanExporter(ConsoleSpanExporter(), config.service_name, config.service_version),
)

pubsub = InMemoryPubSub()
sender = TracingPublisher(pubsub, tracer)


def log_processing_error(exc: Exception, message: Message) -> None:
    logger.error("Processing of message %s failed: %s", message.uuid, exc)


router = Router(tracer, on_error=log_processing_error)


async def send_message(text: str) -> str:
    """Send ``text`` to the queue in a new trace; returns its trace id."""
    context = await sender.publish(
        QUEUE,
        Message(payload=text.encode()),
        baggage={"Sent by": SENDER},
    )
    return context.trace_id


async def receive_message(delivery: Delivery) -> None:
    body = delivery.message.payload.decode()
    logger.info("Received: %s (sent by %s)", body, delivery.scope.baggage.get("Sent by"))
    delivery.span.add_event(f'Message "{body}" received from queue')


router.add_handler(
    name="receiver",
    subscribe_topic=QUEUE,
    subscriber=pubsub,
    handler_func=receive_message,
)
