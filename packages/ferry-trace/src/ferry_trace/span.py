"""Span types: the mutable recording of one unit of work.

A span moves through ``CREATED -> RECORDING -> ENDED``. While recording it
collects attributes, events and a status. ``end()`` stamps the end time once,
freezes everything into a :class:`FinishedSpan` and hands that snapshot on.
Mutating an ended span is reported as :class:`SpanMisuse`; it never raises
and never changes the snapshot already handed on.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum, StrEnum
from types import MappingProxyType

from ferry_trace.context import Context
from ferry_trace.errors import SpanMisuse

AttributeValue = (
    str | bool | int | float | Sequence[str] | Sequence[bool] | Sequence[int] | Sequence[float]
)
Attributes = Mapping[str, AttributeValue]

logger = logging.getLogger("ferry.trace")


class SpanKind(StrEnum):
    """Role of a span in the trace graph."""

    INTERNAL = "internal"
    PRODUCER = "producer"
    CONSUMER = "consumer"
    CLIENT = "client"
    SERVER = "server"


class StatusCode(StrEnum):
    UNSET = "unset"
    OK = "ok"
    ERROR = "error"


class SpanState(Enum):
    CREATED = "created"
    RECORDING = "recording"
    ENDED = "ended"


@dataclass(frozen=True, slots=True)
class Status:
    code: StatusCode = StatusCode.UNSET
    description: str | None = None


@dataclass(frozen=True, slots=True)
class SpanEvent:
    """Point-in-time event within a span."""

    name: str
    timestamp: int
    attributes: Mapping[str, AttributeValue] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class FinishedSpan:
    """Read-only snapshot of an ended span, as handed to processors."""

    name: str
    trace_id: str
    span_id: str
    parent_span_id: str | None
    parent_is_remote: bool
    kind: SpanKind
    start_time: int
    end_time: int
    attributes: Mapping[str, AttributeValue]
    events: tuple[SpanEvent, ...]
    status: Status
    sampled: bool = True
    instrumentation_name: str = "ferry"

    @property
    def duration_ns(self) -> int:
        return self.end_time - self.start_time

    def to_dict(self) -> dict[str, object]:
        """Serialize span for logging or JSON export."""
        return {
            "name": self.name,
            "trace_id": self.trace_id,
            "span_id": self.span_id,
            "parent_span_id": self.parent_span_id,
            "kind": self.kind.value,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "duration_ns": self.duration_ns,
            "status": self.status.code.value,
            "status_description": self.status.description,
            "attributes": dict(self.attributes),
            "events": [
                {"name": e.name, "timestamp": e.timestamp, "attributes": dict(e.attributes)}
                for e in self.events
            ],
        }


MisuseCallback = Callable[[SpanMisuse], None]
EndCallback = Callable[["Span", FinishedSpan], None]


class Span:
    """A unit of work in a trace.

    Spans are created by :meth:`Tracer.start_span` and owned by the unit of
    work that started them until :meth:`end`. They are not safe to share
    between concurrent tasks.

    Example:
        >>> span = tracer.start_span("send orders", SpanKind.PRODUCER)
        >>> span.set_attribute("messaging.destination.name", "orders")
        >>> span.add_event("message sent")
        >>> span.end()
    """

    __slots__ = (
        "_attributes",
        "_context",
        "_end_time",
        "_events",
        "_kind",
        "_name",
        "_on_end",
        "_on_misuse",
        "_parent_is_remote",
        "_instrumentation_name",
        "_start_time",
        "_state",
        "_status",
    )

    def __init__(
        self,
        name: str,
        context: Context,
        kind: SpanKind = SpanKind.INTERNAL,
        *,
        parent_is_remote: bool = False,
        attributes: Attributes | None = None,
        start_time: int | None = None,
        on_end: EndCallback | None = None,
        on_misuse: MisuseCallback | None = None,
        instrumentation_name: str = "ferry",
    ) -> None:
        self._state = SpanState.CREATED
        self._name = name
        self._context = context
        self._kind = kind
        self._parent_is_remote = parent_is_remote
        self._start_time = start_time if start_time is not None else time.time_ns()
        self._end_time: int | None = None
        self._attributes: dict[str, AttributeValue] = {}
        self._events: list[SpanEvent] = []
        self._status = Status()
        self._on_end = on_end
        self._on_misuse = on_misuse
        self._instrumentation_name = instrumentation_name
        self._state = SpanState.RECORDING
        if attributes:
            self.set_attributes(attributes)

    def __repr__(self) -> str:
        return (
            f"Span(name={self._name!r}, span_id={self._context.span_id!r}, "
            f"kind={self._kind.value}, state={self._state.value})"
        )

    @property
    def name(self) -> str:
        return self._name

    @property
    def context(self) -> Context:
        """This span's context; valid before and after ``end()``."""
        return self._context

    @property
    def kind(self) -> SpanKind:
        return self._kind

    @property
    def state(self) -> SpanState:
        return self._state

    @property
    def is_recording(self) -> bool:
        return self._state is SpanState.RECORDING

    @property
    def start_time(self) -> int:
        return self._start_time

    @property
    def end_time(self) -> int | None:
        return self._end_time

    @property
    def status(self) -> Status:
        return self._status

    @property
    def attributes(self) -> Mapping[str, AttributeValue]:
        return MappingProxyType(self._attributes)

    @property
    def events(self) -> tuple[SpanEvent, ...]:
        return tuple(self._events)

    def set_attribute(self, key: str, value: AttributeValue) -> Span:
        """Set one attribute; returns self for chaining."""
        if not self._check_recording("set_attribute"):
            return self
        if not _is_valid_attribute(value):
            logger.warning(
                "Dropping attribute %r on span %r: unsupported value type %s",
                key,
                self._name,
                type(value).__name__,
            )
            return self
        self._attributes[key] = tuple(value) if isinstance(value, list) else value
        return self

    def set_attributes(self, attributes: Attributes) -> Span:
        if not self._check_recording("set_attributes"):
            return self
        for key, value in attributes.items():
            self.set_attribute(key, value)
        return self

    def add_event(
        self,
        name: str,
        attributes: Attributes | None = None,
        timestamp: int | None = None,
    ) -> Span:
        """Add a timestamped event."""
        if not self._check_recording("add_event"):
            return self
        valid = {k: v for k, v in (attributes or {}).items() if _is_valid_attribute(v)}
        self._events.append(
            SpanEvent(
                name=name,
                timestamp=timestamp if timestamp is not None else time.time_ns(),
                attributes=valid,
            )
        )
        return self

    def set_status(self, code: StatusCode, description: str | None = None) -> Span:
        """Set the completion status.

        Descriptions are only kept for ``ERROR``. ``OK`` is final and is not
        downgraded by a later ``ERROR``.
        """
        if not self._check_recording("set_status"):
            return self
        if self._status.code is StatusCode.OK and code is not StatusCode.OK:
            return self
        self._status = Status(code, description if code is StatusCode.ERROR else None)
        return self

    def record_exception(self, exc: BaseException) -> Span:
        """Record an ``exception`` event and set ``ERROR`` status."""
        if not self._check_recording("record_exception"):
            return self
        self.add_event(
            "exception",
            {
                "exception.type": type(exc).__qualname__,
                "exception.message": str(exc),
            },
        )
        self._status = Status(StatusCode.ERROR, str(exc) or type(exc).__name__)
        return self

    def end(self, end_time: int | None = None) -> FinishedSpan | None:
        """End the span and hand the frozen record on.

        Returns the snapshot, or None when the span had already ended.
        """
        if not self._check_recording("end"):
            return None
        self._end_time = end_time if end_time is not None else time.time_ns()
        self._state = SpanState.ENDED
        finished = self._snapshot()
        if self._on_end is not None:
            self._on_end(self, finished)
        return finished

    def _snapshot(self) -> FinishedSpan:
        assert self._end_time is not None
        return FinishedSpan(
            name=self._name,
            trace_id=self._context.trace_id,
            span_id=self._context.span_id,
            parent_span_id=self._context.parent_span_id,
            parent_is_remote=self._parent_is_remote,
            kind=self._kind,
            start_time=self._start_time,
            end_time=self._end_time,
            attributes=MappingProxyType(dict(self._attributes)),
            events=tuple(self._events),
            status=self._status,
            sampled=self._context.sampled,
            instrumentation_name=self._instrumentation_name,
        )

    def _check_recording(self, operation: str) -> bool:
        if self._state is SpanState.RECORDING:
            return True
        misuse = SpanMisuse(operation, self._name, self._context.span_id)
        logger.warning("%s", misuse)
        if self._on_misuse is not None:
            try:
                self._on_misuse(misuse)
            except Exception:
                logger.exception("Span misuse callback failed")
        return False


def _is_valid_attribute(value: object) -> bool:
    if isinstance(value, str | bool | int | float):
        return True
    if isinstance(value, Sequence) and not isinstance(value, str | bytes):
        return all(isinstance(item, str | bool | int | float) for item in value)
    return False
