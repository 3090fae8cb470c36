"""Tracer: creates spans, tracks the open ones and owns the processor."""

from __future__ import annotations

import logging
import threading
from types import TracebackType

from ferry_trace.baggage import Baggage
from ferry_trace.context import Context
from ferry_trace.processor import SpanProcessor
from ferry_trace.sampling import ALWAYS_ON, Sampler
from ferry_trace.span import (
    Attributes,
    FinishedSpan,
    MisuseCallback,
    Span,
    SpanKind,
    StatusCode,
)

TRUNCATED_ATTRIBUTE = "ferry.span.truncated"
TRUNCATED_DESCRIPTION = "span truncated by shutdown"

logger = logging.getLogger("ferry.trace")


class Tracer:
    """Explicit span factory, constructed once at startup and passed around.

    Args:
        processor: Receives every sampled span when it ends. None records
            spans without exporting them.
        sampler: Decides for new roots; children inherit their parent.
        name: Instrumentation name stamped on finished spans.
        on_misuse: Called with a ``SpanMisuse`` whenever a span is touched
            after it ended.

    Example:
        >>> tracer = Tracer(SimpleSpanProcessor(InMemorySpanExporter()))
        >>> with tracer.span("load config") as span:
        ...     span.set_attribute("config.source", "env")
    """

    def __init__(
        self,
        processor: SpanProcessor | None = None,
        *,
        sampler: Sampler = ALWAYS_ON,
        name: str = "ferry",
        on_misuse: MisuseCallback | None = None,
    ) -> None:
        self._processor = processor
        self._sampler = sampler
        self._name = name
        self._on_misuse = on_misuse
        self._open: dict[str, Span] = {}
        self._lock = threading.Lock()
        self._shutdown = False

    @property
    def sampler(self) -> Sampler:
        return self._sampler

    @property
    def processor(self) -> SpanProcessor | None:
        return self._processor

    @property
    def open_spans(self) -> list[Span]:
        with self._lock:
            return list(self._open.values())

    @property
    def is_shutdown(self) -> bool:
        return self._shutdown

    def new_root(self, baggage: dict[str, str] | None = None) -> Context:
        """Context of a fresh trace, sampled by this tracer's sampler."""
        return Context.new_root(self._sampler, baggage)

    def start_span(
        self,
        name: str,
        kind: SpanKind = SpanKind.INTERNAL,
        parent: Context | None = None,
        attributes: Attributes | None = None,
        start_time: int | None = None,
    ) -> Span:
        """Start a span; ``parent=None`` starts a new trace."""
        context = parent.child() if parent is not None else self.new_root()
        span = Span(
            name,
            context,
            kind,
            parent_is_remote=parent.is_remote if parent is not None else False,
            attributes=attributes,
            start_time=start_time,
            on_end=self._on_span_end,
            on_misuse=self._on_misuse,
            instrumentation_name=self._name,
        )
        with self._lock:
            self._open[context.span_id] = span
        return span

    def span(
        self,
        name: str,
        kind: SpanKind = SpanKind.INTERNAL,
        parent: Context | None = None,
        attributes: Attributes | None = None,
    ) -> SpanContextManager:
        """Start a span that ends when the ``with``/``async with`` block exits."""
        return SpanContextManager(self, name, kind, parent, attributes)

    def scope(self, context: Context | None = None) -> Scope:
        """Open the ambient scope of one unit of work."""
        return Scope(self, context if context is not None else self.new_root())

    def _on_span_end(self, span: Span, finished: FinishedSpan) -> None:
        with self._lock:
            self._open.pop(span.context.span_id, None)
        if not finished.sampled or self._processor is None:
            return
        try:
            self._processor.on_end(finished)
        except Exception:
            logger.exception("Span processor failed for span %r", finished.name)

    def truncate_open_spans(self) -> int:
        """End every span still recording as truncated; returns the count."""
        with self._lock:
            spans = list(self._open.values())
        for span in spans:
            span.set_attribute(TRUNCATED_ATTRIBUTE, True)
            span.set_status(StatusCode.ERROR, TRUNCATED_DESCRIPTION)
            span.end()
        if spans:
            logger.warning("Truncated %d open span(s) at shutdown", len(spans))
        return len(spans)

    async def force_flush(self) -> None:
        if self._processor is not None:
            await self._processor.force_flush()

    async def shutdown(self) -> None:
        """Truncate open spans and shut the processor down. Idempotent."""
        if self._shutdown:
            return
        self._shutdown = True
        self.truncate_open_spans()
        if self._processor is not None:
            try:
                await self._processor.shutdown()
            except Exception:
                logger.exception("Span processor shutdown failed")

    async def close(self) -> None:
        await self.shutdown()

    async def __aenter__(self) -> Tracer:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.shutdown()


class SpanContextManager:
    """Ends the span on exit, ``ERROR`` on exception, ``OK`` otherwise."""

    def __init__(
        self,
        tracer: Tracer,
        name: str,
        kind: SpanKind,
        parent: Context | None,
        attributes: Attributes | None,
    ) -> None:
        self._tracer = tracer
        self._name = name
        self._kind = kind
        self._parent = parent
        self._attributes = attributes
        self._span: Span | None = None

    def __enter__(self) -> Span:
        self._span = self._tracer.start_span(
            self._name, self._kind, self._parent, self._attributes
        )
        return self._span

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        span = self._span
        if span is None or not span.is_recording:
            return
        if exc_val is not None:
            span.record_exception(exc_val)
        elif span.status.code is StatusCode.UNSET:
            span.set_status(StatusCode.OK)
        span.end()

    async def __aenter__(self) -> Span:
        return self.__enter__()

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.__exit__(exc_type, exc_val, exc_tb)


class Scope:
    """Holder of the current Context for one unit of work.

    A scope is passed explicitly to whatever needs the current context.
    ``span()`` makes a child span current for the duration of a block and
    restores the previous context afterwards.

    Example:
        >>> scope = tracer.scope(extracted)
        >>> scope.set_baggage("tenant", "acme")
        >>> async with scope.span("charge card") as span:
        ...     assert scope.context.span_id == span.context.span_id
    """

    def __init__(self, tracer: Tracer, context: Context) -> None:
        self._tracer = tracer
        self._context = context

    def __repr__(self) -> str:
        return f"Scope(trace_id={self._context.trace_id!r}, span_id={self._context.span_id!r})"

    @property
    def tracer(self) -> Tracer:
        return self._tracer

    @property
    def context(self) -> Context:
        return self._context

    @property
    def baggage(self) -> Baggage:
        return self._context.baggage

    def set_baggage(self, key: str, value: str) -> Context:
        """Set a baggage entry on the current context."""
        self._context = self._context.with_baggage(key, value)
        return self._context

    def adopt(self, context: Context) -> Context:
        """Replace the current context, returning the previous one."""
        previous, self._context = self._context, context
        return previous

    def start_span(
        self,
        name: str,
        kind: SpanKind = SpanKind.INTERNAL,
        parent: Context | None = None,
        attributes: Attributes | None = None,
    ) -> Span:
        """Start a child of the current context (or of ``parent``)."""
        return self._tracer.start_span(
            name, kind, parent if parent is not None else self._context, attributes
        )

    def span(
        self,
        name: str,
        kind: SpanKind = SpanKind.INTERNAL,
        attributes: Attributes | None = None,
    ) -> _ScopedSpan:
        return _ScopedSpan(self, name, kind, attributes)


class _ScopedSpan:
    def __init__(
        self,
        scope: Scope,
        name: str,
        kind: SpanKind,
        attributes: Attributes | None,
    ) -> None:
        self._scope = scope
        self._name = name
        self._kind = kind
        self._attributes = attributes
        self._inner: SpanContextManager | None = None
        self._previous: Context | None = None

    def __enter__(self) -> Span:
        # Parent is whatever the scope holds when the block starts
        self._inner = SpanContextManager(
            self._scope.tracer, self._name, self._kind, self._scope.context, self._attributes
        )
        span = self._inner.__enter__()
        self._previous = self._scope.adopt(span.context)
        return span

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        try:
            if self._inner is not None:
                self._inner.__exit__(exc_type, exc_val, exc_tb)
        finally:
            if self._previous is not None:
                self._scope.adopt(self._previous)

    async def __aenter__(self) -> Span:
        return self.__enter__()

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.__exit__(exc_type, exc_val, exc_tb)
