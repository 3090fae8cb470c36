"""Root sampling decisions.

Samplers only decide for new roots. Children always inherit the decision of
their parent, so one trace is either recorded end to end or not at all.
"""

from typing import Protocol, runtime_checkable

_ID_SPACE = 2**64


@runtime_checkable
class Sampler(Protocol):
    """Decides whether a new trace is recorded."""

    def should_sample(self, trace_id: str) -> bool: ...


class StaticSampler:
    """Always returns the same decision."""

    def __init__(self, decision: bool) -> None:
        self._decision = decision

    def should_sample(self, trace_id: str) -> bool:
        return self._decision

    def __repr__(self) -> str:
        return "ALWAYS_ON" if self._decision else "ALWAYS_OFF"


ALWAYS_ON = StaticSampler(True)
ALWAYS_OFF = StaticSampler(False)


class TraceIdRatioSampler:
    """Samples a deterministic fraction of traces by trace id.

    A trace is sampled when the low 64 bits of its id fall below
    ``ratio * 2**64``, so every process holding the same trace id reaches the
    same decision.
    """

    def __init__(self, ratio: float) -> None:
        if not 0.0 <= ratio <= 1.0:
            msg = f"Sampling ratio must be in [0, 1], got {ratio}"
            raise ValueError(msg)
        self.ratio = ratio
        self._bound = round(ratio * _ID_SPACE)

    def should_sample(self, trace_id: str) -> bool:
        return int(trace_id[-16:], 16) < self._bound

    def __repr__(self) -> str:
        return f"TraceIdRatioSampler({self.ratio})"


def sampler_from_name(name: str, arg: float | None = None) -> Sampler:
    """Build a sampler from its configuration name.

    Names follow ``OTEL_TRACES_SAMPLER``: ``always_on``, ``always_off`` and
    ``traceidratio`` (``arg`` is the ratio, default 1.0). The ``parentbased_``
    prefix is accepted since children always inherit their parent's decision.
    """
    normalized = name.strip().lower().removeprefix("parentbased_")
    if normalized == "always_on":
        return ALWAYS_ON
    if normalized == "always_off":
        return ALWAYS_OFF
    if normalized == "traceidratio":
        return TraceIdRatioSampler(1.0 if arg is None else arg)
    msg = f"Unknown sampler: {name!r}. Use 'always_on', 'always_off' or 'traceidratio'"
    raise ValueError(msg)
