"""Tracing error taxonomy.

None of these reach message-processing code: ``MalformedCarrier`` is
recovered inside the propagators, ``SpanMisuse`` is handed to a diagnostic
callback, and ``ExporterError`` is logged by the span processors.
"""


class TracingError(Exception):
    """Base class for tracing errors."""


class MalformedCarrier(TracingError):
    """A carrier value could not be parsed."""

    def __init__(self, key: str, value: str, reason: str) -> None:
        self.key = key
        self.value = value
        self.reason = reason
        super().__init__(f"Malformed {key!r} value {value!r}: {reason}")


class SpanMisuse(TracingError):
    """A span was mutated or ended after it had already ended."""

    def __init__(self, operation: str, span_name: str, span_id: str) -> None:
        self.operation = operation
        self.span_name = span_name
        self.span_id = span_id
        super().__init__(
            f"{operation}() called on ended span {span_name!r} ({span_id})"
        )


class ExporterError(TracingError):
    """The tracing backend rejected or failed an export."""
