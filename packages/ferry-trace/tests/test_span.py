"""Tests for span lifecycle."""

import logging

import pytest

from ferry_trace import (
    InMemorySpanExporter,
    SpanKind,
    SpanMisuse,
    SpanState,
    StatusCode,
    Tracer,
)

START_NS = 1_000
END_NS = 5_000


class TestSpanRecording:
    def test_attributes_events_status(
        self, tracer: Tracer, span_exporter: InMemorySpanExporter
    ) -> None:
        span = tracer.start_span("work", SpanKind.PRODUCER, attributes={"a": 1})
        span.set_attribute("b", "two").set_attributes({"c": True, "d": [1, 2]})
        span.add_event("step", {"n": 1})
        span.set_status(StatusCode.ERROR, "boom")
        span.end()

        (finished,) = span_exporter.get_finished_spans()
        assert finished.name == "work"
        assert finished.kind is SpanKind.PRODUCER
        assert dict(finished.attributes) == {"a": 1, "b": "two", "c": True, "d": (1, 2)}
        assert [e.name for e in finished.events] == ["step"]
        assert finished.status.code is StatusCode.ERROR
        assert finished.status.description == "boom"

    def test_invalid_attribute_dropped(
        self, tracer: Tracer, caplog: pytest.LogCaptureFixture
    ) -> None:
        span = tracer.start_span("work")
        with caplog.at_level(logging.WARNING, logger="ferry.trace"):
            span.set_attribute("obj", object())  # type: ignore[arg-type]
        assert "obj" not in span.attributes
        assert "unsupported value type" in caplog.text

    def test_description_only_kept_for_error(self, tracer: Tracer) -> None:
        span = tracer.start_span("work")
        span.set_status(StatusCode.OK, "fine")
        assert span.status.description is None

    def test_ok_not_downgraded(self, tracer: Tracer) -> None:
        span = tracer.start_span("work")
        span.set_status(StatusCode.OK)
        span.set_status(StatusCode.ERROR, "late")
        assert span.status.code is StatusCode.OK

    def test_record_exception(self, tracer: Tracer) -> None:
        span = tracer.start_span("work")
        span.record_exception(ValueError("bad input"))
        assert span.status.code is StatusCode.ERROR
        assert span.status.description == "bad input"
        (event,) = span.events
        assert event.name == "exception"
        assert event.attributes["exception.type"] == "ValueError"

    def test_timestamps(self, tracer: Tracer, span_exporter: InMemorySpanExporter) -> None:
        span = tracer.start_span("work", start_time=START_NS)
        span.end(END_NS)
        (finished,) = span_exporter.get_finished_spans()
        assert finished.duration_ns == END_NS - START_NS
        assert finished.to_dict()["duration_ns"] == END_NS - START_NS


class TestSpanAfterEnd:
    def test_state_machine(self, tracer: Tracer) -> None:
        span = tracer.start_span("work")
        assert span.state is SpanState.RECORDING
        span.end()
        assert span.state is SpanState.ENDED
        assert not span.is_recording

    def test_mutation_after_end_is_reported_not_raised(
        self,
        tracer: Tracer,
        span_exporter: InMemorySpanExporter,
        misuses: list[SpanMisuse],
    ) -> None:
        """Ended spans ignore changes and report each attempt."""
        span = tracer.start_span("work")
        span.end()

        span.set_attribute("late", 1)
        span.add_event("late")
        span.set_status(StatusCode.ERROR, "late")
        span.record_exception(RuntimeError("late"))

        (finished,) = span_exporter.get_finished_spans()
        assert "late" not in finished.attributes
        assert finished.events == ()
        assert finished.status.code is StatusCode.UNSET
        assert [m.operation for m in misuses] == [
            "set_attribute",
            "add_event",
            "set_status",
            "record_exception",
        ]

    def test_double_end(
        self, tracer: Tracer, span_exporter: InMemorySpanExporter, misuses: list[SpanMisuse]
    ) -> None:
        span = tracer.start_span("work")
        first = span.end(END_NS)
        assert span.end() is None
        assert span.end_time == END_NS
        assert first is not None
        assert len(span_exporter.get_finished_spans()) == 1
        assert misuses[0].operation == "end"

    def test_misuse_logged(self, tracer: Tracer, caplog: pytest.LogCaptureFixture) -> None:
        span = tracer.start_span("work")
        span.end()
        with caplog.at_level(logging.WARNING, logger="ferry.trace"):
            span.add_event("late")
        assert "called on ended span 'work'" in caplog.text

    def test_context_available_after_end(self, tracer: Tracer) -> None:
        span = tracer.start_span("work")
        ctx = span.context
        span.end()
        assert span.context == ctx

    def test_snapshot_unaffected_by_later_changes(
        self, tracer: Tracer, span_exporter: InMemorySpanExporter
    ) -> None:
        attributes = ["x"]
        span = tracer.start_span("work", attributes={"list": attributes})
        span.end()
        attributes.append("y")
        (finished,) = span_exporter.get_finished_spans()
        assert finished.attributes["list"] == ("x",)
