"""Tests for traceparent and baggage propagation."""

import pytest

from ferry_trace import (
    ALWAYS_OFF,
    BaggagePropagator,
    Context,
    MalformedCarrier,
    MetadataGetter,
    TraceContextPropagator,
    default_propagator,
    format_traceparent,
    parse_traceparent,
)

TRACE_ID = "0123456789abcdef0123456789abcdef"
SPAN_ID = "abcdef0123456789"
TRACEPARENT = f"00-{TRACE_ID}-{SPAN_ID}-01"


@pytest.fixture
def propagator():
    return default_propagator()


class TestWireFormat:
    def test_concrete_carrier(self, propagator) -> None:
        """Injecting a known context yields exactly the documented carrier."""
        ctx = Context(trace_id=TRACE_ID, span_id=SPAN_ID, sampled=True).with_baggage(
            "team", "payments"
        )
        carrier: dict[str, str] = {}
        propagator.inject(ctx, carrier)

        assert carrier == {"traceparent": TRACEPARENT, "baggage": "team=payments"}

        extracted = propagator.extract(carrier)
        assert extracted.trace_id == TRACE_ID
        assert extracted.span_id == SPAN_ID
        assert extracted.sampled
        assert extracted.is_remote
        assert dict(extracted.baggage) == {"team": "payments"}

    def test_inject_twice_same_bytes(self, propagator) -> None:
        ctx = Context(trace_id=TRACE_ID, span_id=SPAN_ID, sampled=True).with_baggage_entries(
            {"Sent by": "a=b", "team": "payments"}
        )
        carrier: dict[str, str] = {"other": "kept"}
        propagator.inject(ctx, carrier)
        first = dict(carrier)
        propagator.inject(ctx, carrier)

        assert carrier == first
        assert carrier["other"] == "kept"

    def test_unsampled_flag(self) -> None:
        ctx = Context(trace_id=TRACE_ID, span_id=SPAN_ID, sampled=False)
        assert format_traceparent(ctx) == f"00-{TRACE_ID}-{SPAN_ID}-00"

    def test_parse_ignores_unknown_flag_bits(self) -> None:
        assert parse_traceparent(f"00-{TRACE_ID}-{SPAN_ID}-03") == (TRACE_ID, SPAN_ID, True)
        assert parse_traceparent(f"00-{TRACE_ID}-{SPAN_ID}-02")[2] is False


class TestRoundTrip:
    def test_same_context(self, propagator) -> None:
        ctx = Context.new_root().with_baggage_entries({"a": "1", "Sent by": "x=y,z"})
        extracted = propagator.extract(_injected(propagator, ctx))

        assert (extracted.trace_id, extracted.span_id, extracted.sampled) == (
            ctx.trace_id,
            ctx.span_id,
            ctx.sampled,
        )
        assert extracted.baggage == ctx.baggage

    def test_child_of_extracted_links_to_sender(self, propagator) -> None:
        sender = Context.new_root()
        receiver = propagator.extract(_injected(propagator, sender)).child()
        assert receiver.trace_id == sender.trace_id
        assert receiver.parent_span_id == sender.span_id

    def test_unrelated_keys_untouched(self, propagator) -> None:
        carrier = {"content-type": "application/json", "x-tenant": "acme"}
        propagator.inject(Context.new_root().with_baggage("k", "v"), carrier)
        assert carrier["content-type"] == "application/json"
        assert carrier["x-tenant"] == "acme"

    def test_empty_baggage_not_injected(self, propagator) -> None:
        carrier: dict[str, str] = {}
        propagator.inject(Context.new_root(), carrier)
        assert set(carrier) == {"traceparent"}


class TestDegradation:
    @pytest.mark.parametrize(
        "value",
        [
            "",
            "garbage",
            f"00-{TRACE_ID}-{SPAN_ID}",
            f"00-{TRACE_ID.upper()}-{SPAN_ID}-01",
            f"01-{TRACE_ID}-{SPAN_ID}-01",
            f"ff-{TRACE_ID}-{SPAN_ID}-01",
            f"00-{'0' * 32}-{SPAN_ID}-01",
            f"00-{TRACE_ID}-{'0' * 16}-01",
            f"00-{TRACE_ID[:-1]}-{SPAN_ID}-01",
            f"00-{TRACE_ID}-{SPAN_ID}-zz",
        ],
    )
    def test_garbled_traceparent_gives_fresh_root(self, propagator, value: str) -> None:
        ctx = propagator.extract({"traceparent": value})
        assert not ctx.is_remote
        assert ctx.parent_span_id is None
        assert ctx.trace_id != TRACE_ID

    def test_parse_raises_malformed(self) -> None:
        with pytest.raises(MalformedCarrier, match="traceparent"):
            parse_traceparent("garbage")

    def test_missing_traceparent(self, propagator) -> None:
        ctx = propagator.extract({})
        assert not ctx.is_remote
        assert len(ctx.baggage) == 0

    def test_fresh_root_keeps_baggage(self, propagator) -> None:
        """Broken identity does not lose valid baggage."""
        ctx = propagator.extract({"traceparent": "garbage", "baggage": "team=payments"})
        assert not ctx.is_remote
        assert ctx.baggage["team"] == "payments"

    def test_fresh_root_uses_sampler(self) -> None:
        ctx = default_propagator(ALWAYS_OFF).extract({})
        assert not ctx.sampled

    def test_remote_sampling_decision_wins(self) -> None:
        ctx = default_propagator(ALWAYS_OFF).extract({"traceparent": TRACEPARENT})
        assert ctx.sampled

    def test_malformed_baggage_keeps_identity(self, propagator) -> None:
        ctx = propagator.extract({"traceparent": TRACEPARENT, "baggage": "ok=1,broken,%%=2"})
        assert ctx.trace_id == TRACE_ID
        assert dict(ctx.baggage) == {"ok": "1"}

    def test_conflicting_traceparents(self) -> None:
        carrier = {"traceparent": [TRACEPARENT, f"00-{TRACE_ID}-{'1' * 16}-01"]}
        ctx = TraceContextPropagator().extract(carrier)
        assert not ctx.is_remote


class TestMetadataGetter:
    def test_coerces_values(self) -> None:
        getter = MetadataGetter()
        assert getter.get({"a": b"bytes"}, "a") == ["bytes"]
        assert getter.get({"a": 42}, "a") == ["42"]
        assert getter.get({"a": ["x", b"y"]}, "a") == ["x", "y"]
        assert getter.get({}, "a") is None

    def test_undecodable_bytes_absent(self) -> None:
        assert MetadataGetter().get({"a": b"\xff\xfe"}, "a") is None

    def test_bytes_traceparent_extracted(self, propagator) -> None:
        ctx = propagator.extract({"traceparent": TRACEPARENT.encode()})
        assert ctx.trace_id == TRACE_ID

    def test_repeated_baggage_values_joined(self) -> None:
        ctx = BaggagePropagator().extract({"baggage": ["a=1", "b=2"]})
        assert dict(ctx.baggage) == {"a": "1", "b": "2"}


def _injected(propagator, ctx: Context) -> dict[str, str]:
    carrier: dict[str, str] = {}
    propagator.inject(ctx, carrier)
    return carrier
