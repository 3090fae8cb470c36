"""In-memory pub/sub for tests and single-process demos."""

import logging
from collections import defaultdict, deque
from collections.abc import AsyncIterator
from dataclasses import dataclass, field

import anyio
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream

from ferry_pubsub.errors import BrokerError
from ferry_pubsub.message import Message

DEFAULT_BUFFER_SIZE = 100

logger = logging.getLogger("ferry.pubsub")


@dataclass(eq=False)
class _Subscription:
    send_stream: MemoryObjectSendStream[Message]
    # Redeliveries that found the buffer full; yielded before the buffer
    backlog: deque[Message] = field(default_factory=deque)


class InMemoryPubSub:
    """Fan-out pub/sub backed by anyio memory object streams.

    Every subscription owns a bounded buffer; a full buffer blocks the
    publisher (backpressure, no message loss). A nacked message is redelivered
    to the same subscription with ``delivery_attempt`` incremented, which
    gives at-least-once semantics. Redelivery never waits on the buffer: when
    it is full the message goes to an unbounded backlog that the subscriber
    reads first.

    Args:
        buffer_size: Buffer size of each subscription.
        redeliver_on_nack: Put nacked messages back on the subscription.
        max_deliveries: Stop redelivering after this many attempts.
            ``None`` redelivers forever.
    """

    def __init__(
        self,
        buffer_size: int = DEFAULT_BUFFER_SIZE,
        *,
        redeliver_on_nack: bool = True,
        max_deliveries: int | None = None,
    ) -> None:
        self._buffer_size = buffer_size
        self._redeliver_on_nack = redeliver_on_nack
        self._max_deliveries = max_deliveries
        self._subscriptions: dict[str, list[_Subscription]] = defaultdict(list)
        self._closed = False

    async def publish(self, topic: str, *messages: Message) -> None:
        """Deliver messages to every current subscriber of ``topic``.

        Publishing to a topic without subscribers drops the messages.
        """
        if self._closed:
            msg = "PubSub is closed"
            raise BrokerError(msg)

        for message in messages:
            for subscription in list(self._subscriptions.get(topic, ())):
                delivery = self._delivery(topic, subscription, message, attempt=1)
                try:
                    await subscription.send_stream.send(delivery)
                except (anyio.BrokenResourceError, anyio.ClosedResourceError):
                    self._drop(topic, subscription)

    def subscribe(self, topic: str) -> AsyncIterator[Message]:
        """Subscribe to ``topic``.

        The subscription buffer exists as soon as this returns, before the
        iterator is first awaited.
        """
        if self._closed:
            msg = "PubSub is closed"
            raise BrokerError(msg)

        send_stream, receive_stream = anyio.create_memory_object_stream[Message](
            self._buffer_size
        )
        subscription = _Subscription(send_stream)
        self._subscriptions[topic].append(subscription)
        return self._iterate(topic, subscription, receive_stream)

    async def _iterate(
        self,
        topic: str,
        subscription: _Subscription,
        receive_stream: MemoryObjectReceiveStream[Message],
    ) -> AsyncIterator[Message]:
        backlog = subscription.backlog
        try:
            async with receive_stream:
                while True:
                    if backlog:
                        yield backlog.popleft()
                        continue
                    try:
                        message = await receive_stream.receive()
                    except anyio.EndOfStream:
                        break
                    yield message
                while backlog:
                    yield backlog.popleft()
        finally:
            self._drop(topic, subscription)

    def _drop(self, topic: str, subscription: _Subscription) -> None:
        subscriptions = self._subscriptions.get(topic)
        if subscriptions and subscription in subscriptions:
            subscriptions.remove(subscription)
        subscription.send_stream.close()

    def _delivery(
        self,
        topic: str,
        subscription: _Subscription,
        message: Message,
        attempt: int,
    ) -> Message:
        async def nack_func() -> None:
            if not self._should_redeliver(attempt):
                return
            logger.debug(
                "Redelivering message %s on %s (attempt %d)",
                message.uuid,
                topic,
                attempt + 1,
            )
            self._redeliver(
                topic, subscription, self._delivery(topic, subscription, message, attempt + 1)
            )

        return Message(
            payload=message.payload,
            metadata=dict(message.metadata),
            uuid=message.uuid,
            delivery_attempt=attempt,
            _nack_func=nack_func,
        )

    def _redeliver(self, topic: str, subscription: _Subscription, delivery: Message) -> None:
        try:
            subscription.send_stream.send_nowait(delivery)
        except anyio.WouldBlock:
            subscription.backlog.append(delivery)
        except (anyio.BrokenResourceError, anyio.ClosedResourceError):
            # Subscriber went away
            self._drop(topic, subscription)

    def _should_redeliver(self, attempt: int) -> bool:
        if self._closed or not self._redeliver_on_nack:
            return False
        return self._max_deliveries is None or attempt < self._max_deliveries

    async def close(self) -> None:
        """Close every subscription; iterators finish after draining."""
        self._closed = True
        for subscriptions in self._subscriptions.values():
            for subscription in subscriptions:
                subscription.send_stream.close()
        self._subscriptions.clear()

    async def __aenter__(self) -> "InMemoryPubSub":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        await self.close()
