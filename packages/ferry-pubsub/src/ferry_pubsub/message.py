"""Message envelope: payload plus string metadata."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from uuid import UUID, uuid4

AckFunc = Callable[[], Awaitable[None]]


@dataclass
class Message:
    """A broker message.

    The payload is opaque bytes. Metadata is the flat string map that travels
    with the payload and carries trace context; it is never mixed into the
    payload.

    Each delivery of a message is its own ``Message`` object with its own
    ack state. ``delivery_attempt`` starts at 1 and grows on redelivery.
    """

    payload: bytes
    metadata: dict[str, str] = field(default_factory=dict)
    uuid: UUID = field(default_factory=uuid4)
    delivery_attempt: int = 1
    _ack_func: AckFunc | None = field(default=None, repr=False, compare=False)
    _nack_func: AckFunc | None = field(default=None, repr=False, compare=False)
    _acked: bool = field(default=False, init=False, repr=False, compare=False)
    _nacked: bool = field(default=False, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        # Backends pass uuid=None when the envelope carried none
        if self.uuid is None:
            self.uuid = uuid4()

    @property
    def acked(self) -> bool:
        return self._acked

    @property
    def nacked(self) -> bool:
        return self._nacked

    async def ack(self) -> None:
        """Acknowledge successful processing."""
        if self._acked:
            msg = f"Message {self.uuid} already acked"
            raise ValueError(msg)
        if self._nacked:
            msg = f"Message {self.uuid} has been nacked"
            raise ValueError(msg)
        self._acked = True
        if self._ack_func is not None:
            await self._ack_func()

    async def nack(self) -> None:
        """Reject the message so the broker can redeliver it."""
        if self._nacked:
            msg = f"Message {self.uuid} already nacked"
            raise ValueError(msg)
        if self._acked:
            msg = f"Message {self.uuid} has been acked"
            raise ValueError(msg)
        self._nacked = True
        if self._nack_func is not None:
            await self._nack_func()

    def with_metadata(self, metadata: dict[str, str]) -> "Message":
        """Return an unsent copy with ``metadata`` merged over the current one."""
        return Message(
            payload=self.payload,
            metadata={**self.metadata, **metadata},
            uuid=self.uuid,
            delivery_attempt=self.delivery_attempt,
        )
