"""Router: receive loops that run every delivery inside a consumer span."""

import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field

import anyio
from anyio.abc import TaskGroup

from ferry_messaging.propagation import extract_context
from ferry_messaging.types import Delivery, ErrorCallback, HandlerFunc, Middleware
from ferry_pubsub import Message, Subscriber
from ferry_trace import Propagator, Span, SpanKind, StatusCode, Tracer, default_propagator

DEFAULT_MAX_CONCURRENCY = 10
DEFAULT_CLOSE_TIMEOUT_S = 30.0
CANCELLED_DESCRIPTION = "processing cancelled"

logger = logging.getLogger("ferry.messaging")


@dataclass
class RouterConfig:
    """Router configuration.

    Attributes:
        max_concurrency: In-flight deliveries allowed at once, across handlers.
        close_timeout_s: How long ``close()`` waits for in-flight deliveries
            before cancelling them.
        messaging_system: Value of the ``messaging.system`` span attribute.
        record_baggage: Record each baggage entry as a ``baggage.<key>``
            attribute on the consumer span.
    """

    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    close_timeout_s: float = DEFAULT_CLOSE_TIMEOUT_S
    messaging_system: str = "ferry"
    record_baggage: bool = True

    def __post_init__(self) -> None:
        if self.max_concurrency < 1:
            msg = f"max_concurrency must be at least 1, got {self.max_concurrency}"
            raise ValueError(msg)


@dataclass
class Handler:
    """Configuration for a message handler."""

    name: str
    subscriber: Subscriber
    subscribe_topic: str
    handler_func: HandlerFunc
    middlewares: list[Middleware] = field(default_factory=list)


class Router:
    """Routes messages from subscribers to handlers, one consumer span each.

    For every delivery the router extracts the sender's context from the
    message metadata, starts a CONSUMER span ``process <topic>`` as its child
    and calls the handler with a :class:`Delivery`. The message is acked when
    the handler returns and nacked when it raises; the span ends either way.
    Handler failures are logged and never stop the receive loop.

    Example:
        router = Router(tracer)
        router.add_handler("orders", "orders", pubsub, handle_order)

        async with anyio.create_task_group() as tg:
            tg.start_soon(router.run)
            ...
            await router.close()
    """

    def __init__(
        self,
        tracer: Tracer,
        propagator: Propagator | None = None,
        config: RouterConfig | None = None,
        on_error: ErrorCallback | None = None,
    ) -> None:
        self._tracer = tracer
        self._propagator = propagator or default_propagator(tracer.sampler)
        self._config = config or RouterConfig()
        self._on_error = on_error
        self._handlers: list[Handler] = []
        self._middlewares: list[Middleware] = []
        self._running = False
        self._closing = False
        self._receive_scope: anyio.CancelScope | None = None
        self._tasks: TaskGroup | None = None
        self._stopped: anyio.Event | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_closing(self) -> bool:
        return self._closing

    @property
    def handlers(self) -> list[Handler]:
        return list(self._handlers)

    def add_middleware(self, middleware: Middleware) -> None:
        """Add a middleware applied to every handler, outermost first."""
        self._middlewares.append(middleware)

    def add_handler(
        self,
        name: str,
        subscribe_topic: str,
        subscriber: Subscriber,
        handler_func: HandlerFunc,
        middlewares: list[Middleware] | None = None,
    ) -> Handler:
        """Register a handler for ``subscribe_topic``."""
        if any(h.name == name for h in self._handlers):
            msg = f"Handler {name!r} is already registered"
            raise ValueError(msg)
        handler = Handler(
            name=name,
            subscriber=subscriber,
            subscribe_topic=subscribe_topic,
            handler_func=handler_func,
            middlewares=list(middlewares or []),
        )
        self._handlers.append(handler)
        return handler

    async def run(self) -> None:
        """Receive and process messages until ``close()`` is called."""
        if self._running:
            msg = "Router is already running"
            raise RuntimeError(msg)
        self._running = True
        self._closing = False
        self._stopped = anyio.Event()
        limiter = anyio.Semaphore(self._config.max_concurrency)
        logger.info("Router starting with %d handler(s)", len(self._handlers))
        try:
            async with anyio.create_task_group() as tasks:
                self._tasks = tasks
                with anyio.CancelScope() as receive_scope:
                    self._receive_scope = receive_scope
                    async with anyio.create_task_group() as loops:
                        for handler in self._handlers:
                            loops.start_soon(self._receive, handler, tasks, limiter)
        finally:
            self._running = False
            self._tasks = None
            self._receive_scope = None
            self._stopped.set()
            logger.info("Router stopped")

    async def close(self) -> None:
        """Stop receiving and let in-flight deliveries finish.

        Deliveries still running after ``close_timeout_s`` are cancelled;
        they end their spans as cancelled and nack their messages.
        """
        if not self._running or self._closing or self._stopped is None:
            return
        self._closing = True
        logger.info("Router closing")
        if self._receive_scope is not None:
            self._receive_scope.cancel()

        with anyio.move_on_after(self._config.close_timeout_s):
            await self._stopped.wait()
            return

        logger.warning(
            "In-flight deliveries did not finish within %.1fs, cancelling",
            self._config.close_timeout_s,
        )
        if self._tasks is not None:
            self._tasks.cancel_scope.cancel()
        await self._stopped.wait()

    async def _receive(
        self,
        handler: Handler,
        tasks: TaskGroup,
        limiter: anyio.Semaphore,
    ) -> None:
        messages: AsyncIterator[Message] = handler.subscriber.subscribe(
            handler.subscribe_topic
        )
        try:
            async for message in messages:
                await limiter.acquire()
                tasks.start_soon(self._process_with_permit, handler, message, limiter)
        finally:
            aclose = getattr(messages, "aclose", None)
            if aclose is not None:
                with anyio.CancelScope(shield=True):
                    await aclose()
        logger.info("Subscription of handler %r to %r ended", handler.name, handler.subscribe_topic)

    async def _process_with_permit(
        self, handler: Handler, message: Message, limiter: anyio.Semaphore
    ) -> None:
        try:
            await self.process(handler, message)
        finally:
            limiter.release()

    async def process(self, handler: Handler, message: Message) -> None:
        """Run one delivery of ``message`` through ``handler``.

        Usable without a running receive loop, e.g. from tests or from a
        broker-specific consumer.
        """
        parent = extract_context(message, self._propagator, self._tracer.sampler)
        span = self._tracer.start_span(
            f"process {handler.subscribe_topic}",
            SpanKind.CONSUMER,
            parent=parent,
            attributes={
                "messaging.system": self._config.messaging_system,
                "messaging.operation.type": "process",
                "messaging.operation.name": "process",
                "messaging.destination.name": handler.subscribe_topic,
                "messaging.message.id": str(message.uuid),
                "messaging.message.delivery_attempt": message.delivery_attempt,
                "ferry.handler.name": handler.name,
            },
        )
        if self._config.record_baggage:
            for key, value in span.context.baggage.items():
                span.set_attribute(f"baggage.{key}", value)

        delivery = Delivery(
            message=message,
            scope=self._tracer.scope(span.context),
            span=span,
            handler_name=handler.name,
        )
        handler_func = self._wrap(handler)

        try:
            try:
                await handler_func(delivery)
            except anyio.get_cancelled_exc_class():
                span.set_status(StatusCode.ERROR, CANCELLED_DESCRIPTION)
                with anyio.CancelScope(shield=True):
                    await self._settle(message, span, ack=False)
                raise
            except Exception as e:
                span.record_exception(e)
                span.set_attribute("error.type", type(e).__name__)
                logger.exception(
                    "Handler %r failed for message %s", handler.name, message.uuid
                )
                self._report(e, message)
                await self._settle(message, span, ack=False)
            else:
                span.add_event("message processed")
                span.set_status(StatusCode.OK)
                await self._settle(message, span, ack=True)
        finally:
            span.end()

    def _wrap(self, handler: Handler) -> HandlerFunc:
        wrapped = handler.handler_func
        for middleware in reversed(self._middlewares + handler.middlewares):
            wrapped = middleware(wrapped)
        return wrapped

    async def _settle(self, message: Message, span: Span, *, ack: bool) -> None:
        if message.acked or message.nacked:
            # Handler settled the message itself
            return
        operation = "ack" if ack else "nack"
        try:
            if ack:
                await message.ack()
            else:
                await message.nack()
        except Exception as e:
            span.add_event(
                f"{operation} failed",
                {"exception.type": type(e).__name__, "exception.message": str(e)},
            )
            logger.warning("Failed to %s message %s: %s", operation, message.uuid, e)

    def _report(self, exc: Exception, message: Message) -> None:
        if self._on_error is None:
            return
        try:
            self._on_error(exc, message)
        except Exception:
            logger.exception("Error callback failed for message %s", message.uuid)
