"""Publisher protocol."""

from typing import Protocol, runtime_checkable

from ferry_pubsub.message import Message


@runtime_checkable
class Publisher(Protocol):
    """Sends messages to a topic.

    Raises ``BrokerError`` (or a backend specific error) when the broker
    refuses the send.
    """

    async def publish(self, topic: str, *messages: Message) -> None: ...

    async def close(self) -> None: ...

    async def __aenter__(self) -> "Publisher": ...

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None: ...
