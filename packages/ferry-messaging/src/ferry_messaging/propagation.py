"""Trace context propagation via message metadata."""

import logging

from ferry_pubsub import Message
from ferry_trace import ALWAYS_ON, Context, Propagator, Sampler, default_propagator

logger = logging.getLogger("ferry.messaging")


def inject_context(
    message: Message,
    context: Context,
    propagator: Propagator | None = None,
) -> Message:
    """Inject ``context`` into message metadata.

    Returns a new Message with the trace headers added; payload, uuid and the
    other metadata keys are untouched. If injection fails the original
    message is returned and the failure is logged.
    """
    carrier: dict[str, str] = {}
    try:
        (propagator or default_propagator()).inject(context, carrier)
    except Exception:
        logger.exception("Failed to inject trace context into message %s", message.uuid)
        return message

    if not carrier:
        return message
    return message.with_metadata(carrier)


def extract_context(
    message: Message,
    propagator: Propagator | None = None,
    sampler: Sampler = ALWAYS_ON,
) -> Context:
    """Extract the sender's context from message metadata.

    Never raises: metadata without a usable ``traceparent`` yields a fresh
    root context, and so does a propagator failure, which is logged.
    """
    try:
        return (propagator or default_propagator(sampler)).extract(message.metadata)
    except Exception:
        logger.exception("Failed to extract trace context from message %s", message.uuid)
        return Context.new_root(sampler)
