"""Tracing configuration read from the standard OpenTelemetry variables."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass

from ferry_trace.export import SpanExporter
from ferry_trace.processor import BatchSpanProcessor
from ferry_trace.sampling import Sampler, sampler_from_name
from ferry_trace.span import MisuseCallback
from ferry_trace.tracer import Tracer

DEFAULT_SERVICE_NAME = "unknown_service"


@dataclass
class TracingConfig:
    """Configuration for a process's tracer.

    Attributes:
        service_name: ``service.name`` resource attribute.
        service_version: ``service.version`` resource attribute.
        sampler: Sampler name, see ``sampler_from_name``.
        sampler_arg: Ratio for ``traceidratio``.
        max_queue_size: Batch processor queue capacity.
        max_export_batch_size: Largest batch handed to the exporter.
        schedule_delay_s: Longest wait before a partial batch is exported.
    """

    service_name: str = DEFAULT_SERVICE_NAME
    service_version: str | None = None
    sampler: str = "parentbased_always_on"
    sampler_arg: float | None = None
    max_queue_size: int = 2048
    max_export_batch_size: int = 512
    schedule_delay_s: float = 5.0

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> TracingConfig:
        """Read ``OTEL_*`` variables; unset ones keep their defaults.

        Raises:
            ValueError: A variable holds a value that cannot be parsed.
        """
        env = os.environ if environ is None else environ
        config = cls()
        if name := env.get("OTEL_SERVICE_NAME"):
            config.service_name = name
        if version := env.get("OTEL_SERVICE_VERSION"):
            config.service_version = version
        if sampler := env.get("OTEL_TRACES_SAMPLER"):
            config.sampler = sampler
        if arg := env.get("OTEL_TRACES_SAMPLER_ARG"):
            config.sampler_arg = _parse(float, "OTEL_TRACES_SAMPLER_ARG", arg)
        if size := env.get("OTEL_BSP_MAX_QUEUE_SIZE"):
            config.max_queue_size = _parse(int, "OTEL_BSP_MAX_QUEUE_SIZE", size)
        if batch := env.get("OTEL_BSP_MAX_EXPORT_BATCH_SIZE"):
            config.max_export_batch_size = _parse(int, "OTEL_BSP_MAX_EXPORT_BATCH_SIZE", batch)
        if delay := env.get("OTEL_BSP_SCHEDULE_DELAY"):
            config.schedule_delay_s = _parse(int, "OTEL_BSP_SCHEDULE_DELAY", delay) / 1000
        return config

    def build_sampler(self) -> Sampler:
        return sampler_from_name(self.sampler, self.sampler_arg)


def _parse(kind: type[int] | type[float], name: str, raw: str) -> int | float:
    try:
        return kind(raw.strip())
    except ValueError as e:
        msg = f"{name} must be a {kind.__name__}, got {raw!r}"
        raise ValueError(msg) from e


def build_tracer(
    config: TracingConfig,
    exporter: SpanExporter,
    on_misuse: MisuseCallback | None = None,
) -> Tracer:
    """Wire a Tracer with a BatchSpanProcessor and the configured sampler.

    The processor's ``run()`` loop must be started in the application's task
    group: ``tg.start_soon(tracer.processor.run)``.
    """
    processor = BatchSpanProcessor(
        exporter,
        max_queue_size=config.max_queue_size,
        max_export_batch_size=config.max_export_batch_size,
        schedule_delay_s=config.schedule_delay_s,
    )
    return Tracer(
        processor,
        sampler=config.build_sampler(),
        name=config.service_name,
        on_misuse=on_misuse,
    )
