"""Span processors: the hand-off between ended spans and an exporter."""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

import anyio
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream

from ferry_trace.export import SpanExporter
from ferry_trace.span import FinishedSpan

logger = logging.getLogger("ferry.trace")


@runtime_checkable
class SpanProcessor(Protocol):
    """Receives spans as they end."""

    def on_end(self, span: FinishedSpan) -> None:
        """Called synchronously from ``Span.end()``; must not block."""
        ...

    async def force_flush(self) -> None: ...

    async def shutdown(self) -> None: ...


class SimpleSpanProcessor:
    """Exports every span as soon as it ends. Meant for tests and development."""

    def __init__(self, exporter: SpanExporter) -> None:
        self._exporter = exporter
        self._shutdown = False

    def on_end(self, span: FinishedSpan) -> None:
        if self._shutdown:
            return
        try:
            self._exporter.export([span])
        except Exception:
            logger.exception("Failed to export span %r", span.name)

    async def force_flush(self) -> None:
        pass

    async def shutdown(self) -> None:
        if self._shutdown:
            return
        self._shutdown = True
        self._exporter.shutdown()


class BatchSpanProcessor:
    """Queues ended spans and exports them in batches from a background task.

    ``on_end`` never waits: when the queue is full the span is dropped and
    counted in ``dropped_spans``. Exports run in a worker thread so a slow
    backend cannot stall message processing. A failed batch is logged and
    discarded.

    Example:
        async with anyio.create_task_group() as tg:
            processor = BatchSpanProcessor(exporter)
            tg.start_soon(processor.run)
            ...
            await processor.shutdown()
    """

    def __init__(
        self,
        exporter: SpanExporter,
        max_queue_size: int = 2048,
        max_export_batch_size: int = 512,
        schedule_delay_s: float = 5.0,
    ) -> None:
        if max_queue_size <= 0:
            msg = f"max_queue_size must be positive, got {max_queue_size}"
            raise ValueError(msg)
        if not 0 < max_export_batch_size <= max_queue_size:
            msg = (
                "max_export_batch_size must be positive and not exceed "
                f"max_queue_size, got {max_export_batch_size}"
            )
            raise ValueError(msg)
        self._exporter = exporter
        self._max_batch = max_export_batch_size
        self._delay = schedule_delay_s
        self._send: MemoryObjectSendStream[FinishedSpan]
        self._receive: MemoryObjectReceiveStream[FinishedSpan]
        self._send, self._receive = anyio.create_memory_object_stream[FinishedSpan](
            max_queue_size
        )
        self._shutdown = False
        self._stopped: anyio.Event | None = None
        self.dropped_spans = 0
        self.exported_spans = 0
        self.failed_batches = 0

    @property
    def queued_spans(self) -> int:
        return self._send.statistics().current_buffer_used

    def on_end(self, span: FinishedSpan) -> None:
        if self._shutdown:
            return
        try:
            self._send.send_nowait(span)
        except anyio.WouldBlock:
            self.dropped_spans += 1
            logger.warning(
                "Span queue full, dropped span %r (%d dropped so far)",
                span.name,
                self.dropped_spans,
            )
        except (anyio.ClosedResourceError, anyio.BrokenResourceError):
            self.dropped_spans += 1

    async def run(self) -> None:
        """Export loop; returns once the processor is shut down and drained."""
        self._stopped = stopped = anyio.Event()
        try:
            while True:
                batch: list[FinishedSpan] = []
                done = False
                with anyio.move_on_after(self._delay):
                    try:
                        while len(batch) < self._max_batch:
                            batch.append(await self._receive.receive())
                    except (anyio.EndOfStream, anyio.ClosedResourceError):
                        done = True
                if batch:
                    await self._export(batch)
                if done:
                    return
        finally:
            stopped.set()

    async def force_flush(self) -> None:
        """Export everything queued right now."""
        while batch := self._drain(self._max_batch):
            await self._export(batch)

    async def shutdown(self) -> None:
        """Stop accepting spans, export what is queued, shut the exporter down.

        A running ``run()`` loop exports the batch it holds and whatever is
        still queued before the exporter is shut down.
        """
        if self._shutdown:
            return
        self._shutdown = True
        self._send.close()
        if self._stopped is not None:
            await self._stopped.wait()
        await self.force_flush()
        await anyio.to_thread.run_sync(self._exporter.shutdown)
        if self.dropped_spans:
            logger.warning("Dropped %d span(s) over this processor's lifetime", self.dropped_spans)

    def _drain(self, limit: int) -> list[FinishedSpan]:
        batch: list[FinishedSpan] = []
        while len(batch) < limit:
            try:
                batch.append(self._receive.receive_nowait())
            except (anyio.WouldBlock, anyio.EndOfStream, anyio.ClosedResourceError):
                break
        return batch

    async def _export(self, batch: list[FinishedSpan]) -> None:
        try:
            await anyio.to_thread.run_sync(self._exporter.export, batch)
        except Exception:
            self.failed_batches += 1
            logger.exception("Failed to export batch of %d span(s)", len(batch))
            return
        self.exported_spans += len(batch)
