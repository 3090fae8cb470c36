"""ferry-pubsub: Broker collaborator abstractions."""

from ferry_pubsub.errors import BrokerError
from ferry_pubsub.memory import InMemoryPubSub
from ferry_pubsub.message import Message
from ferry_pubsub.publisher import Publisher
from ferry_pubsub.subscriber import Subscriber

__all__ = ["BrokerError", "InMemoryPubSub", "Message", "Publisher", "Subscriber"]
