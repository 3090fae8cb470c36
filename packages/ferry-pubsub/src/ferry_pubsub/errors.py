"""Broker collaborator errors."""


class BrokerError(RuntimeError):
    """The broker refused an operation (send, subscribe, ack)."""
