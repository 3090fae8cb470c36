"""Codec between a Context and a flat string carrier.

Two reserved keys are used:

- ``traceparent``: ``00-<32 hex trace_id>-<16 hex span_id>-<2 hex flags>``
- ``baggage``: ``k1=v1,k2=v2`` with percent-encoded keys and values

Every other carrier key is left alone. Carriers are read and written through
OpenTelemetry's ``textmap.Getter``/``textmap.Setter`` so the same propagator
works for broker metadata, HTTP headers or a plain dict in a test.

Extraction never raises: a missing or garbled ``traceparent`` degrades to a
fresh root context, and a garbled ``baggage`` loses only its bad members.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Mapping, Sequence
from typing import Any, Protocol, runtime_checkable

from opentelemetry.propagators.textmap import (
    CarrierT,
    Getter,
    Setter,
    default_setter,
)

from ferry_trace.baggage import BAGGAGE_HEADER, decode_baggage, encode_baggage
from ferry_trace.context import (
    INVALID_SPAN_ID,
    INVALID_TRACE_ID,
    SAMPLED_FLAG,
    Context,
)
from ferry_trace.errors import MalformedCarrier
from ferry_trace.sampling import ALWAYS_ON, Sampler

TRACEPARENT_HEADER = "traceparent"
SUPPORTED_VERSION = "00"

_TRACEPARENT = re.compile(
    r"^(?P<version>[0-9a-f]{2})-(?P<trace_id>[0-9a-f]{32})"
    r"-(?P<span_id>[0-9a-f]{16})-(?P<flags>[0-9a-f]{2})$"
)

logger = logging.getLogger("ferry.trace")


class MetadataGetter(Getter[Mapping[str, Any]]):
    """Reads carrier values, coercing them to strings at the boundary.

    Broker metadata is not always ``str`` valued. Scalars are converted with
    ``str()``, ``bytes`` are decoded as UTF-8 and anything undecodable counts
    as absent. Sequences yield one string per element.
    """

    def get(self, carrier: Mapping[str, Any], key: str) -> list[str] | None:
        value = carrier.get(key)
        if value is None:
            return None
        if isinstance(value, str | bytes):
            coerced = _coerce(value)
            return None if coerced is None else [coerced]
        if isinstance(value, Iterable):
            values = [c for c in (_coerce(item) for item in value) if c is not None]
            return values or None
        return [str(value)]

    def keys(self, carrier: Mapping[str, Any]) -> list[str]:
        return list(carrier.keys())


def _coerce(value: object) -> str | None:
    if isinstance(value, bytes):
        try:
            return value.decode()
        except UnicodeDecodeError:
            return None
    return str(value)


default_getter = MetadataGetter()


@runtime_checkable
class Propagator(Protocol):
    """Injects a Context into a carrier and extracts it back."""

    @property
    def fields(self) -> set[str]: ...

    def inject(
        self,
        context: Context,
        carrier: CarrierT,
        setter: Setter[CarrierT] = default_setter,
    ) -> None: ...

    def extract(
        self,
        carrier: CarrierT,
        context: Context | None = None,
        getter: Getter[CarrierT] = default_getter,
    ) -> Context: ...


def format_traceparent(context: Context) -> str:
    """Render the ``traceparent`` value of a context."""
    return (
        f"{SUPPORTED_VERSION}-{context.trace_id}"
        f"-{context.span_id}-{context.trace_flags:02x}"
    )


def parse_traceparent(value: str) -> tuple[str, str, bool]:
    """Parse a ``traceparent`` value into ``(trace_id, span_id, sampled)``.

    Raises:
        MalformedCarrier: Wrong shape or length, non-hex or uppercase hex,
            unsupported version, or an all-zero id.
    """
    match = _TRACEPARENT.match(value.strip())
    if match is None:
        raise MalformedCarrier(TRACEPARENT_HEADER, value, "not a traceparent")
    if match["version"] != SUPPORTED_VERSION:
        raise MalformedCarrier(
            TRACEPARENT_HEADER, value, f"unsupported version {match['version']}"
        )
    if match["trace_id"] == INVALID_TRACE_ID:
        raise MalformedCarrier(TRACEPARENT_HEADER, value, "all-zero trace id")
    if match["span_id"] == INVALID_SPAN_ID:
        raise MalformedCarrier(TRACEPARENT_HEADER, value, "all-zero span id")
    sampled = bool(int(match["flags"], 16) & SAMPLED_FLAG)
    return match["trace_id"], match["span_id"], sampled


class TraceContextPropagator:
    """W3C ``traceparent`` propagation of trace identity.

    Args:
        sampler: Sampler for the fresh root returned when the carrier holds
            no usable identity.
    """

    def __init__(self, sampler: Sampler = ALWAYS_ON) -> None:
        self._sampler = sampler

    @property
    def fields(self) -> set[str]:
        return {TRACEPARENT_HEADER}

    def inject(
        self,
        context: Context,
        carrier: CarrierT,
        setter: Setter[CarrierT] = default_setter,
    ) -> None:
        setter.set(carrier, TRACEPARENT_HEADER, format_traceparent(context))

    def extract(
        self,
        carrier: CarrierT,
        context: Context | None = None,
        getter: Getter[CarrierT] = default_getter,
    ) -> Context:
        baggage = context.baggage if context is not None else None
        try:
            trace_id, span_id, sampled = parse_traceparent(
                _single_value(getter.get(carrier, TRACEPARENT_HEADER))
            )
        except MalformedCarrier as e:
            logger.debug("Starting a new trace: %s", e)
            return Context.new_root(self._sampler, baggage)

        remote = Context(
            trace_id=trace_id,
            span_id=span_id,
            sampled=sampled,
            is_remote=True,
        )
        return remote.with_baggage_entries(baggage) if baggage else remote


def _single_value(values: Sequence[str] | None) -> str:
    if not values:
        raise MalformedCarrier(TRACEPARENT_HEADER, "", "missing")
    distinct = set(values)
    if len(distinct) > 1:
        raise MalformedCarrier(
            TRACEPARENT_HEADER, ",".join(values), "conflicting values"
        )
    return values[0]


class BaggagePropagator:
    """W3C ``baggage`` propagation.

    Extraction merges the carrier's entries over the incoming context's
    baggage, so entries accumulated upstream are never lost.
    """

    @property
    def fields(self) -> set[str]:
        return {BAGGAGE_HEADER}

    def inject(
        self,
        context: Context,
        carrier: CarrierT,
        setter: Setter[CarrierT] = default_setter,
    ) -> None:
        if not context.baggage:
            return
        header = encode_baggage(context.baggage)
        if header:
            setter.set(carrier, BAGGAGE_HEADER, header)

    def extract(
        self,
        carrier: CarrierT,
        context: Context | None = None,
        getter: Getter[CarrierT] = default_getter,
    ) -> Context:
        if context is None:
            context = Context.new_root()
        values = getter.get(carrier, BAGGAGE_HEADER)
        if not values:
            return context
        return context.with_baggage_entries(decode_baggage(",".join(values)))


class CompositePropagator:
    """Runs several propagators in order over one carrier."""

    def __init__(self, propagators: Sequence[Propagator]) -> None:
        self._propagators = tuple(propagators)

    @property
    def fields(self) -> set[str]:
        return {f for propagator in self._propagators for f in propagator.fields}

    def inject(
        self,
        context: Context,
        carrier: CarrierT,
        setter: Setter[CarrierT] = default_setter,
    ) -> None:
        for propagator in self._propagators:
            propagator.inject(context, carrier, setter)

    def extract(
        self,
        carrier: CarrierT,
        context: Context | None = None,
        getter: Getter[CarrierT] = default_getter,
    ) -> Context:
        for propagator in self._propagators:
            context = propagator.extract(carrier, context, getter)
        if context is None:
            context = Context.new_root()
        return context


def default_propagator(sampler: Sampler = ALWAYS_ON) -> CompositePropagator:
    """``traceparent`` followed by ``baggage``."""
    return CompositePropagator([TraceContextPropagator(sampler), BaggagePropagator()])
