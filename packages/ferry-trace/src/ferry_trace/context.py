"""Immutable trace identity plus baggage."""

from __future__ import annotations

import random
from collections.abc import Mapping
from dataclasses import dataclass, field, replace

from ferry_trace.baggage import EMPTY_BAGGAGE, Baggage
from ferry_trace.sampling import ALWAYS_ON, Sampler

INVALID_TRACE_ID = "0" * 32
INVALID_SPAN_ID = "0" * 16

SAMPLED_FLAG = 0x01


def generate_trace_id() -> str:
    """Random non-zero 128-bit id as 32 lowercase hex chars."""
    while True:
        value = random.getrandbits(128)
        if value:
            return f"{value:032x}"


def generate_span_id() -> str:
    """Random non-zero 64-bit id as 16 lowercase hex chars."""
    while True:
        value = random.getrandbits(64)
        if value:
            return f"{value:016x}"


@dataclass(frozen=True, slots=True)
class Context:
    """Identity needed to create a child span, plus baggage.

    Contexts are values: every change returns a new one, so they can be
    shared across concurrent units of work without locking.

    Attributes:
        trace_id: 32 lowercase hex chars, constant along one causal chain.
        span_id: 16 lowercase hex chars, the span this context belongs to.
        sampled: Whether spans in this trace are recorded and exported.
        baggage: Cross-cutting entries that do not affect trace shape.
        parent_span_id: Span id of the parent, None for a root.
        is_remote: True only when the context was extracted from a carrier.

    Example:
        >>> root = Context.new_root()
        >>> child = root.with_baggage("team", "payments").child()
        >>> child.trace_id == root.trace_id and child.parent_span_id == root.span_id
        True
    """

    trace_id: str
    span_id: str
    sampled: bool = True
    baggage: Baggage = field(default=EMPTY_BAGGAGE)
    parent_span_id: str | None = None
    is_remote: bool = False

    @classmethod
    def new_root(
        cls,
        sampler: Sampler = ALWAYS_ON,
        baggage: Mapping[str, str] | None = None,
    ) -> Context:
        """Start a new trace."""
        trace_id = generate_trace_id()
        return cls(
            trace_id=trace_id,
            span_id=generate_span_id(),
            sampled=sampler.should_sample(trace_id),
            baggage=_as_baggage(baggage),
        )

    def child(self) -> Context:
        """Context of a new span whose parent is this context's span."""
        return Context(
            trace_id=self.trace_id,
            span_id=generate_span_id(),
            sampled=self.sampled,
            baggage=self.baggage,
            parent_span_id=self.span_id,
        )

    def with_baggage(self, key: str, value: str) -> Context:
        """Copy with one baggage entry set (overwrites an existing key)."""
        return replace(self, baggage=self.baggage.set(key, value))

    def with_baggage_entries(self, entries: Mapping[str, str]) -> Context:
        """Copy with several baggage entries set, later entries win."""
        if not entries:
            return self
        return replace(self, baggage=self.baggage.merge(entries))

    @property
    def trace_flags(self) -> int:
        return SAMPLED_FLAG if self.sampled else 0


def _as_baggage(entries: Mapping[str, str] | None) -> Baggage:
    if entries is None:
        return EMPTY_BAGGAGE
    if isinstance(entries, Baggage):
        return entries
    return Baggage(entries)
