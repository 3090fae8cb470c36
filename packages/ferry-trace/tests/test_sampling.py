"""Tests for samplers."""

import pytest

from ferry_trace import (
    ALWAYS_OFF,
    ALWAYS_ON,
    TraceIdRatioSampler,
    generate_trace_id,
    sampler_from_name,
)

SAMPLES = 2000
LOW_ID = "f" * 16 + "0" * 15 + "1"
HIGH_ID = "0" * 16 + "f" * 16


class TestStaticSamplers:
    def test_always_on_off(self) -> None:
        assert ALWAYS_ON.should_sample(LOW_ID)
        assert not ALWAYS_OFF.should_sample(LOW_ID)


class TestTraceIdRatioSampler:
    def test_bounds(self) -> None:
        assert TraceIdRatioSampler(1.0).should_sample(HIGH_ID)
        assert not TraceIdRatioSampler(0.0).should_sample(LOW_ID)

    def test_uses_low_bits(self) -> None:
        sampler = TraceIdRatioSampler(0.5)
        assert sampler.should_sample(LOW_ID)
        assert not sampler.should_sample(HIGH_ID)

    def test_deterministic(self) -> None:
        sampler = TraceIdRatioSampler(0.3)
        trace_id = generate_trace_id()
        assert sampler.should_sample(trace_id) == sampler.should_sample(trace_id)

    def test_roughly_proportional(self) -> None:
        sampler = TraceIdRatioSampler(0.25)
        sampled = sum(sampler.should_sample(generate_trace_id()) for _ in range(SAMPLES))
        assert 0.15 * SAMPLES < sampled < 0.35 * SAMPLES

    @pytest.mark.parametrize("ratio", [-0.1, 1.5])
    def test_invalid_ratio(self, ratio: float) -> None:
        with pytest.raises(ValueError, match="ratio"):
            TraceIdRatioSampler(ratio)


class TestSamplerFromName:
    @pytest.mark.parametrize(
        ("name", "expected"),
        [
            ("always_on", ALWAYS_ON),
            ("parentbased_always_on", ALWAYS_ON),
            ("ALWAYS_OFF", ALWAYS_OFF),
            ("parentbased_always_off", ALWAYS_OFF),
        ],
    )
    def test_static(self, name: str, expected: object) -> None:
        assert sampler_from_name(name) is expected

    def test_ratio(self) -> None:
        sampler = sampler_from_name("parentbased_traceidratio", 0.1)
        assert isinstance(sampler, TraceIdRatioSampler)
        assert sampler.ratio == 0.1

    def test_unknown(self) -> None:
        with pytest.raises(ValueError, match="Unknown sampler"):
            sampler_from_name("jaeger_remote")
